"""Persisted run state: DAGRun and SpecState."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from specflow.exceptions import SpecflowError


class RunStatus(str, Enum):
    """Lifecycle of a DAG run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class SpecStatus(str, Enum):
    """Lifecycle of one feature within a run."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SpecStatus.COMPLETED, SpecStatus.FAILED)


# running -> running is a re-dispatch after an interrupted run
_RUN_TRANSITIONS: Dict[RunStatus, FrozenSet[RunStatus]] = {
    RunStatus.PENDING: frozenset({RunStatus.RUNNING, RunStatus.FAILED}),
    RunStatus.RUNNING: frozenset({RunStatus.RUNNING, RunStatus.COMPLETED, RunStatus.FAILED}),
    RunStatus.COMPLETED: frozenset(),
    RunStatus.FAILED: frozenset(),
}

_SPEC_TRANSITIONS: Dict[SpecStatus, FrozenSet[SpecStatus]] = {
    SpecStatus.PENDING: frozenset({SpecStatus.RUNNING}),
    SpecStatus.RUNNING: frozenset({SpecStatus.RUNNING, SpecStatus.COMPLETED, SpecStatus.FAILED}),
    SpecStatus.COMPLETED: frozenset(),
    SpecStatus.FAILED: frozenset(),
}


class InvalidTransitionError(SpecflowError):
    """A status change would move a run or spec backwards."""

    def __init__(self, subject: str, current: str, target: str):
        self.subject = subject
        self.current = current
        self.target = target
        super().__init__(f"invalid transition for {subject}: {current} -> {target}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_run_id(now: Optional[datetime] = None) -> str:
    """Sortable run id: YYYYMMDD_HHMMSS_<8 random hex chars>."""
    now = now or datetime.now()
    return f"{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}"


class SpecState(BaseModel):
    """Execution state of a single feature."""
    spec_id: str
    layer_id: str = ""
    status: SpecStatus = SpecStatus.PENDING
    log_file: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    exit_code: Optional[int] = None
    attempts: int = 0

    def transition(self, target: SpecStatus) -> None:
        if target not in _SPEC_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"spec {self.spec_id}", self.status.value, target.value)
        self.status = target

    def mark_running(self, log_file: str = "") -> None:
        self.transition(SpecStatus.RUNNING)
        self.started_at = utcnow()
        self.completed_at = None
        self.error_message = None
        self.exit_code = None
        self.log_file = log_file
        self.attempts += 1

    def mark_finished(
        self,
        status: SpecStatus,
        error_message: Optional[str] = None,
        exit_code: Optional[int] = None,
    ) -> None:
        if not status.is_terminal:
            raise ValueError(f"not a terminal status: {status.value}")
        self.transition(status)
        self.completed_at = utcnow()
        self.error_message = error_message
        self.exit_code = exit_code

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None:
            return None
        end = self.completed_at or utcnow()
        return (end - self.started_at).total_seconds()


class DAGRun(BaseModel):
    """A single execution attempt of a DAG, persisted across resumes."""
    run_id: str
    workflow_path: str
    dag_file: str = ""
    dag_id: str = ""
    # Empty selects the legacy <state_dir>/logs layout
    log_base: str = ""
    status: RunStatus = RunStatus.PENDING
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    max_parallel: int = 0
    specs: Dict[str, SpecState] = Field(default_factory=dict)

    def transition(self, target: RunStatus) -> None:
        if target not in _RUN_TRANSITIONS[self.status]:
            raise InvalidTransitionError(f"run {self.run_id}", self.status.value, target.value)
        self.status = target
        if target.is_terminal:
            self.completed_at = utcnow()

    def get_spec(self, spec_id: str) -> Optional[SpecState]:
        return self.specs.get(spec_id)

    def specs_with_status(self, *statuses: SpecStatus) -> List[SpecState]:
        return [spec for spec in self.specs.values() if spec.status in statuses]

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in SpecStatus}
        for spec in self.specs.values():
            counts[spec.status.value] += 1
        return counts
