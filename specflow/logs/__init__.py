"""Log path resolution, streaming and cleanup."""

from specflow.logs.cleanup import (
    all_projects_usage,
    format_bytes,
    project_usage,
    remove_dag_logs,
    remove_projects,
)
from specflow.logs.layout import (
    HierarchicalLogLayout,
    LegacyLogLayout,
    hierarchical_log_base,
    layout_for,
    log_file_name,
    log_root,
    resolve_log_path,
)
from specflow.logs.tailer import stream_logs

__all__ = [
    "HierarchicalLogLayout",
    "LegacyLogLayout",
    "all_projects_usage",
    "format_bytes",
    "hierarchical_log_base",
    "layout_for",
    "log_file_name",
    "log_root",
    "project_usage",
    "remove_dag_logs",
    "remove_projects",
    "resolve_log_path",
    "stream_logs",
]
