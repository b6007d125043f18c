"""Disk usage and removal of hierarchical DAG logs (<root>/<project>/<dag>/)."""

import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

import structlog

logger = structlog.get_logger(__name__)

_UNITS = (("GB", 1024 ** 3), ("MB", 1024 ** 2), ("KB", 1024))


def format_bytes(size: int) -> str:
    """512B, 1.5KB, 150MB"""
    for suffix, unit in _UNITS:
        if size >= unit:
            value = size / unit
            if value >= 100:
                return f"{int(value)}{suffix}"
            return f"{value:.1f}{suffix}"
    return f"{size}B"


def directory_size(path: Union[str, Path]) -> int:
    """Total size of the regular files directly inside path; 0 when unreadable."""
    total = 0
    try:
        entries = list(Path(path).iterdir())
    except OSError:
        return 0
    for entry in entries:
        try:
            if entry.is_file():
                total += entry.stat().st_size
        except OSError:
            continue
    return total


@dataclass
class DAGLogUsage:
    dag_id: str
    path: Path
    size_bytes: int


@dataclass
class ProjectLogUsage:
    project_id: str
    path: Path
    dags: List[DAGLogUsage] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(dag.size_bytes for dag in self.dags)


@dataclass
class CleanupResult:
    removed: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)
    freed_bytes: int = 0


def project_usage(root: Union[str, Path], project_id: str) -> Optional[ProjectLogUsage]:
    """Per-DAG log usage of one project, or None when it has no log directories."""
    project_dir = Path(root) / project_id
    try:
        dag_dirs = sorted(entry for entry in project_dir.iterdir() if entry.is_dir())
    except OSError:
        return None
    if not dag_dirs:
        return None

    return ProjectLogUsage(
        project_id=project_id,
        path=project_dir,
        dags=[DAGLogUsage(d.name, d, directory_size(d)) for d in dag_dirs],
    )


def all_projects_usage(root: Union[str, Path]) -> List[ProjectLogUsage]:
    """Usage of every project under root that holds any log bytes."""
    try:
        project_dirs = sorted(entry for entry in Path(root).iterdir() if entry.is_dir())
    except OSError:
        return []

    projects = []
    for project_dir in project_dirs:
        usage = project_usage(root, project_dir.name)
        if usage is not None and usage.total_bytes > 0:
            projects.append(usage)
    return projects


def remove_dag_logs(usage: ProjectLogUsage) -> CleanupResult:
    """Delete each DAG log directory of a project, keeping the project directory."""
    result = CleanupResult()
    for dag in usage.dags:
        _remove(dag.path, dag.dag_id, dag.size_bytes, result)
    return result


def remove_projects(projects: List[ProjectLogUsage]) -> CleanupResult:
    result = CleanupResult()
    for project in projects:
        _remove(project.path, project.project_id, project.total_bytes, result)
    return result


def _remove(path: Path, name: str, size: int, result: CleanupResult) -> None:
    try:
        shutil.rmtree(path)
    except OSError as e:
        logger.warning("log_cleanup_failed", path=str(path), error=str(e))
        result.failed.append((name, str(e)))
        return
    logger.info("log_directory_removed", path=str(path), size=size)
    result.removed.append(name)
    result.freed_bytes += size
