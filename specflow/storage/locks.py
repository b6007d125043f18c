"""
Cross-process run locks.

A run being executed is marked by <state_dir>/<run_id>.lock, a YAML record of
the owning PID and the specs it is working on. A second process refuses to
execute the same run, or any run sharing unfinished specs with it, while the
owner is alive. Locks whose PID no longer exists are stale and are removed.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from specflow.exceptions import PersistenceError, RunLocked
from specflow.storage.models import utcnow

logger = structlog.get_logger(__name__)

LOCK_SUFFIX = ".lock"


class RunLock(BaseModel):
    """Contents of a lock file."""
    run_id: str
    pid: int
    specs: List[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)


def pid_alive(pid: int) -> bool:
    """Whether a process with this PID exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by another user
        return True
    except OSError:
        return False
    return True


class RunLockManager:
    """Creates, inspects and removes the lock files of one state directory."""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def lock_file(self, run_id: str) -> Path:
        return self.state_dir / f"{run_id}{LOCK_SUFFIX}"

    def acquire(self, run_id: str, specs: Iterable[str]) -> RunLock:
        """
        Lock run_id for the current process.

        Raises RunLocked when a live process holds this run or overlapping specs.
        """
        lock = RunLock(run_id=run_id, pid=os.getpid(), specs=sorted(specs))

        for held in self.list_locks():
            if held.run_id == run_id:
                continue
            if self.is_stale(held):
                self._remove_stale(held)
                continue
            overlapping = sorted(set(held.specs) & set(lock.specs))
            if overlapping:
                raise RunLocked(run_id, held.run_id, held.pid, overlapping)

        # Second attempt only after clearing a stale lock for the same run
        for _ in range(2):
            if self._create(lock):
                logger.debug("run_lock_acquired", run_id=run_id, pid=lock.pid, specs=len(lock.specs))
                return lock
            held = self.load(run_id)
            if held is not None and not self.is_stale(held):
                raise RunLocked(run_id, run_id, held.pid)
            self._remove_stale(held, run_id)

        held = self.load(run_id)
        raise RunLocked(run_id, run_id, held.pid if held else -1)

    def release(self, run_id: str) -> None:
        try:
            self.lock_file(run_id).unlink()
        except FileNotFoundError:
            return
        logger.debug("run_lock_released", run_id=run_id)

    def load(self, run_id: str) -> Optional[RunLock]:
        """The lock for run_id, or None when it is missing or unreadable."""
        path = self.lock_file(run_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
            return RunLock.model_validate(data)
        except FileNotFoundError:
            return None
        except (OSError, yaml.YAMLError, ValidationError) as e:
            logger.warning("lock_file_unreadable", path=str(path), error=str(e))
            return None

    def list_locks(self) -> List[RunLock]:
        if not self.state_dir.is_dir():
            return []
        locks = []
        for path in sorted(self.state_dir.glob(f"*{LOCK_SUFFIX}")):
            lock = self.load(path.name[:-len(LOCK_SUFFIX)])
            if lock is not None:
                locks.append(lock)
        return locks

    @staticmethod
    def is_stale(lock: RunLock) -> bool:
        return not pid_alive(lock.pid)

    def _remove_stale(self, lock: Optional[RunLock], run_id: Optional[str] = None) -> None:
        run_id = lock.run_id if lock is not None else run_id
        logger.warning(
            "stale_lock_removed",
            run_id=run_id,
            pid=lock.pid if lock is not None else None,
        )
        self.release(run_id)

    def _create(self, lock: RunLock) -> bool:
        """Write the lock file unless one exists; the hard link makes it all-or-nothing."""
        path = self.lock_file(lock.run_id)
        tmp_name = None
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"cannot create state dir {self.state_dir}: {e}", self.state_dir) from e

        try:
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.state_dir), prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(lock.model_dump(mode="json"), f, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.link(tmp_name, path)
            return True
        except FileExistsError:
            return False
        except OSError as e:
            raise PersistenceError(f"failed to write lock file {path}: {e}", path) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
