"""Where a feature's log lives for a given run."""

from pathlib import Path
from typing import Optional, Union

from specflow.config import Settings
from specflow.exceptions import SpecNotFound
from specflow.storage.models import DAGRun, SpecState
from specflow.utils.paths import get_cache_base, get_project_id

LOG_SUFFIX = ".log"


class LegacyLogLayout:
    """Flat per-state-dir layout: <state_dir>/logs/<spec_id>.log"""

    def __init__(self, state_dir: Union[str, Path]):
        self.state_dir = Path(state_dir)

    def path_for(self, run: DAGRun, spec: SpecState) -> Path:
        return self.state_dir / "logs" / f"{spec.spec_id}{LOG_SUFFIX}"


class HierarchicalLogLayout:
    """Namespaced layout: <log_base>/<log_file>, log_base being <root>/<project>/<dag>."""

    def path_for(self, run: DAGRun, spec: SpecState) -> Path:
        return Path(run.log_base) / spec.log_file


def layout_for(state_dir: Union[str, Path], run: DAGRun, spec: SpecState):
    if run.log_base and spec.log_file:
        return HierarchicalLogLayout()
    return LegacyLogLayout(state_dir)


def resolve_log_path(state_dir: Union[str, Path], run: DAGRun, spec_id: str) -> Path:
    """Log file of spec_id within run; raises SpecNotFound for unknown ids."""
    spec = run.get_spec(spec_id)
    if spec is None:
        raise SpecNotFound(spec_id, run.run_id, list(run.specs))
    return layout_for(state_dir, run, spec).path_for(run, spec)


def log_file_name(spec_id: str) -> str:
    return f"{spec_id}{LOG_SUFFIX}"


def log_root(settings: Settings) -> Path:
    """Directory holding every project's hierarchical logs."""
    if settings.log_dir:
        return Path(settings.log_dir)
    return get_cache_base() / "specflow" / "dag-logs"


def hierarchical_log_base(
    settings: Settings,
    dag_id: str,
    cwd: Optional[Union[str, Path]] = None,
) -> str:
    """Log root for a new run, or "" when the legacy layout is configured."""
    if settings.legacy_logs:
        return ""
    return str(log_root(settings) / get_project_id(cwd) / dag_id)
