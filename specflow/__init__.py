"""specflow: DAG-based multi-feature workflow orchestrator."""

__version__ = "0.1.0"

from specflow.dag.models import DAGDefinition, Layer, FeatureSpec
from specflow.dag.parser import YAMLParser
from specflow.dag.validator import DAGValidator
from specflow.dag.planner import ExecutionPlanner, ExecutionPlan
from specflow.storage.models import DAGRun, SpecState, RunStatus, SpecStatus
from specflow.storage.backends.filesystem import RunStateStore
from specflow.execution.executor import FeatureExecutor
from specflow.execution.scheduler import RunController
from specflow.logs import resolve_log_path, stream_logs

__all__ = [
    "DAGDefinition",
    "Layer",
    "FeatureSpec",
    "YAMLParser",
    "DAGValidator",
    "ExecutionPlanner",
    "ExecutionPlan",
    "DAGRun",
    "SpecState",
    "RunStatus",
    "SpecStatus",
    "RunStateStore",
    "FeatureExecutor",
    "RunController",
    "resolve_log_path",
    "stream_logs",
]
