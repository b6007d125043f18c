"""Error taxonomy shared by the orchestrator and the CLI."""

from pathlib import Path
from typing import List, Optional, Union


class SpecflowError(Exception):
    """Base class for all orchestrator errors surfaced to the CLI."""
    pass


class RunResolutionError(SpecflowError):
    """Raised when a run or one of its specs cannot be resolved."""
    pass


class RunNotFound(RunResolutionError):
    """No persisted run exists with the given id."""

    def __init__(self, run_id: str, state_dir: Optional[Union[str, Path]] = None):
        self.run_id = run_id
        self.state_dir = state_dir
        message = f"run not found: {run_id}"
        if state_dir is not None:
            message += f" (state dir: {state_dir})"
        super().__init__(message)


class RunNotFoundForWorkflow(RunResolutionError):
    """No persisted state exists for the given workflow file."""

    def __init__(self, workflow_path: Union[str, Path]):
        self.workflow_path = str(workflow_path)
        super().__init__(f"no run found for workflow: {workflow_path}")


class NoRunsExist(RunResolutionError):
    """The state directory holds no run files at all."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = str(state_dir)
        super().__init__(f"no DAG runs exist in {state_dir}")


class SpecNotFound(RunResolutionError):
    """The spec id is not part of the run."""

    def __init__(self, spec_id: str, run_id: str, available: Optional[List[str]] = None):
        self.spec_id = spec_id
        self.run_id = run_id
        self.available = sorted(available or [])
        message = f"spec not found: {spec_id} (run {run_id})"
        if self.available:
            message += f"; available specs: {', '.join(self.available)}"
        super().__init__(message)


class PersistenceError(SpecflowError):
    """Run state could not be written durably."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = str(path) if path is not None else None
        super().__init__(message)


class RunLocked(SpecflowError):
    """Another live process holds a lock on the run or on some of its specs."""

    def __init__(self, run_id: str, holder_run_id: str, pid: int, specs: Optional[List[str]] = None):
        self.run_id = run_id
        self.holder_run_id = holder_run_id
        self.pid = pid
        self.specs = sorted(specs or [])
        if holder_run_id == run_id:
            message = f"run {run_id} is already being executed by PID {pid}"
        else:
            message = f"specs {', '.join(self.specs)} are locked by run {holder_run_id} (PID {pid})"
        super().__init__(message)
