"""Feature execution and run scheduling."""

from specflow.execution.pipeline import (
    CallablePipeline,
    FeaturePipeline,
    SubprocessPipeline,
    TimestampedWriter,
)
from specflow.execution.executor import FeatureExecutor, SpecResult
from specflow.execution.scheduler import RunController, RunNotResumable

__all__ = [
    "CallablePipeline",
    "FeaturePipeline",
    "SubprocessPipeline",
    "TimestampedWriter",
    "FeatureExecutor",
    "SpecResult",
    "RunController",
    "RunNotResumable",
]
