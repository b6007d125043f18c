"""Live status table for a run."""

import asyncio
from datetime import datetime
from typing import Callable, Optional

import structlog

from specflow.storage.interface import RunStore
from specflow.storage.models import DAGRun, SpecState, utcnow

logger = structlog.get_logger(__name__)

CLEAR_SCREEN = "\033[H\033[2J"
MAX_ERROR_WIDTH = 40

STATUS_ICONS = {
    "pending": "○",
    "running": "●",
    "completed": "✓",
    "failed": "✗",
}


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    minutes, seconds = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes}m{seconds:02d}s"
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m"


def _truncate(text: str, width: int = MAX_ERROR_WIDTH) -> str:
    text = " ".join(text.split())
    return text if len(text) <= width else text[: width - 3] + "..."


def _spec_row(spec: SpecState, now: datetime):
    if spec.started_at is None:
        duration = None
    else:
        duration = ((spec.completed_at or now) - spec.started_at).total_seconds()
    return (
        spec.spec_id,
        f"{STATUS_ICONS.get(spec.status.value, ' ')} {spec.status.value}",
        format_duration(duration),
        _truncate(spec.error_message or ""),
    )


def render_status_table(run: DAGRun, now: Optional[datetime] = None) -> str:
    """Render the run header and one row per spec."""
    now = now or utcnow()
    header = ("SPEC", "STATUS", "DURATION", "ERROR")
    rows = [_spec_row(spec, now) for spec in run.specs.values()]

    widths = [len(column) for column in header]
    for row in rows:
        widths = [max(width, len(cell)) for width, cell in zip(widths, row)]

    def line(cells) -> str:
        return "  ".join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()

    counts = run.status_counts()
    lines = [
        f"Run: {run.run_id}",
        f"DAG: {run.dag_id or run.workflow_path}",
        f"Status: {run.status.value}",
        "Progress: {completed}/{total} completed, {running} running, {failed} failed".format(
            total=len(run.specs), **counts
        ),
        "",
        line(header),
        line(["-" * width for width in widths]),
    ]
    lines.extend(line(row) for row in rows)
    return "\n".join(lines)


class StatusWatcher:
    """Re-renders a run's status table until it finishes or the task is cancelled."""

    def __init__(
        self,
        store: RunStore,
        run_id: str,
        interval: float = 2.0,
        emit: Callable[[str], None] = print,
        clear_screen: bool = False,
    ):
        self.store = store
        self.run_id = run_id
        self.interval = interval
        self.emit = emit
        self.clear_screen = clear_screen

    def render_once(self) -> DAGRun:
        run = self.store.load_by_run_id(self.run_id)
        output = render_status_table(run)
        if self.clear_screen:
            output = CLEAR_SCREEN + output
        self.emit(output)
        return run

    async def watch(self) -> DAGRun:
        logger.debug("watch_started", run_id=self.run_id, interval=self.interval)
        while True:
            run = self.render_once()
            if run.status.is_terminal:
                logger.debug("watch_finished", run_id=self.run_id, status=run.status.value)
                return run
            await asyncio.sleep(self.interval)
