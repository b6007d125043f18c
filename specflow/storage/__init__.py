"""Run state persistence."""

from specflow.storage.interface import RunStore
from specflow.storage.models import (
    DAGRun,
    SpecState,
    RunStatus,
    SpecStatus,
    InvalidTransitionError,
    generate_run_id,
)
from specflow.storage.backends.filesystem import RunStateStore
from specflow.storage.locks import RunLock, RunLockManager

__all__ = [
    "RunStore",
    "RunStateStore",
    "RunLock",
    "RunLockManager",
    "DAGRun",
    "SpecState",
    "RunStatus",
    "SpecStatus",
    "InvalidTransitionError",
    "generate_run_id",
]
