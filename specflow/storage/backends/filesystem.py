"""YAML-on-disk run state store."""

import os
import tempfile
from pathlib import Path
from typing import List, Union

import structlog
import yaml
from pydantic import ValidationError

from specflow.exceptions import (
    NoRunsExist,
    PersistenceError,
    RunNotFound,
    RunNotFoundForWorkflow,
)
from specflow.storage.interface import RunStore
from specflow.storage.models import DAGRun
from specflow.utils.paths import normalize_workflow_path

logger = structlog.get_logger(__name__)

RUN_FILE_SUFFIX = ".yaml"


class RunStateStore(RunStore):
    """
    Stores each run as <state_dir>/<run_id>.yaml and keeps a per-workflow
    <state_dir>/<normalized workflow>.state copy of the workflow's current run.

    Writes go to a temporary file in the state directory which is fsynced and
    renamed over the target, so readers never see a partial file.
    """

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def run_file(self, run_id: str) -> Path:
        return self.state_dir / f"{run_id}{RUN_FILE_SUFFIX}"

    def workflow_file(self, workflow_path: Union[str, Path]) -> Path:
        return self.state_dir / normalize_workflow_path(workflow_path)

    def save(self, run: DAGRun) -> None:
        self._write(self.run_file(run.run_id), run)
        logger.debug("run_saved", run_id=run.run_id, status=run.status.value)

    def save_by_workflow(self, run: DAGRun) -> None:
        self.save(run)
        self._write(self.workflow_file(run.workflow_path), run)

    def load_by_run_id(self, run_id: str) -> DAGRun:
        path = self.run_file(run_id)
        if not path.is_file():
            raise RunNotFound(run_id, self.state_dir)
        return self._read(path)

    def load_by_workflow(self, workflow_path: Union[str, Path]) -> DAGRun:
        path = self.workflow_file(workflow_path)
        if not path.is_file():
            raise RunNotFoundForWorkflow(workflow_path)
        return self._read(path)

    def find_latest(self) -> DAGRun:
        runs = self.list_runs()
        if not runs:
            raise NoRunsExist(self.state_dir)
        return runs[0]

    def list_runs(self) -> List[DAGRun]:
        if not self.state_dir.is_dir():
            return []

        runs = []
        for path in self.state_dir.glob(f"*{RUN_FILE_SUFFIX}"):
            try:
                runs.append(self._read(path))
            except PersistenceError as e:
                logger.warning("run_file_skipped", path=str(path), error=str(e))

        runs.sort(key=lambda run: (run.started_at, run.run_id), reverse=True)
        return runs

    def _read(self, path: Path) -> DAGRun:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            if not isinstance(data, dict):
                raise PersistenceError(f"run file is not a mapping: {path}", path)
            return DAGRun.model_validate(data)
        except (OSError, yaml.YAMLError, ValidationError) as e:
            raise PersistenceError(f"failed to read run state {path}: {e}", path) from e

    def _write(self, path: Path, run: DAGRun) -> None:
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            content = yaml.safe_dump(run.model_dump(mode="json"), sort_keys=False)

            fd, tmp_name = tempfile.mkstemp(
                dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, yaml.YAMLError) as e:
            raise PersistenceError(f"failed to write run state {path}: {e}", path) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
