"""Run state storage interface."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Union

from specflow.storage.models import DAGRun


class RunStore(ABC):
    """Abstract base class for run state stores."""

    @abstractmethod
    def save(self, run: DAGRun) -> None:
        """Persist a run under its run id."""
        pass

    @abstractmethod
    def save_by_workflow(self, run: DAGRun) -> None:
        """Persist a run under its run id and as the current run of its workflow."""
        pass

    @abstractmethod
    def load_by_run_id(self, run_id: str) -> DAGRun:
        """Load a run by id."""
        pass

    @abstractmethod
    def load_by_workflow(self, workflow_path: Union[str, Path]) -> DAGRun:
        """Load the current run of a workflow file."""
        pass

    @abstractmethod
    def find_latest(self) -> DAGRun:
        """Return the most recently started run, whatever its status."""
        pass

    @abstractmethod
    def list_runs(self) -> List[DAGRun]:
        """All readable runs, newest first."""
        pass
