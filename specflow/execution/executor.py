"""Runs one feature through its pipeline with output captured to a log file."""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

import structlog

from specflow.dag.models import FeatureSpec
from specflow.execution.pipeline import FeaturePipeline, TimestampedWriter
from specflow.storage.models import SpecStatus
from specflow.utils.paths import parse_duration

logger = structlog.get_logger(__name__)


@dataclass
class SpecResult:
    """Outcome of a single feature execution."""
    status: SpecStatus
    error_message: Optional[str] = None
    exit_code: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == SpecStatus.COMPLETED


class FeatureExecutor:
    """
    Executes a feature and reports completed or failed.

    Pipeline exceptions, non-zero exit codes and timeouts all become failed
    results. Cancellation is not converted: it propagates to the caller.
    """

    def __init__(self, pipeline: FeaturePipeline, default_timeout: Optional[float] = None):
        self.pipeline = pipeline
        self.default_timeout = default_timeout

    def timeout_for(self, feature: FeatureSpec) -> Optional[float]:
        # An explicit 0 disables the default
        if feature.timeout is None or feature.timeout == "":
            return self.default_timeout
        return parse_duration(feature.timeout)

    async def execute(self, feature: FeatureSpec, log_path: Union[str, Path]) -> SpecResult:
        log_path = Path(log_path)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            stream = open(log_path, "w", encoding="utf-8")
        except OSError as e:
            message = f"cannot open log {log_path}: {e}"
            logger.error("feature_log_unavailable", feature_id=feature.id, path=str(log_path), error=str(e))
            return SpecResult(status=SpecStatus.FAILED, error_message=message)

        with stream:
            output = TimestampedWriter(stream)
            output.write_line(f"=== feature {feature.id} started at {datetime.now().isoformat(timespec='seconds')} ===")
            try:
                result = await self._run_pipeline(feature, output)
                output.write_line(f"=== feature {feature.id} {result.status.value} ===")
                return result
            finally:
                output.flush()

    async def _run_pipeline(self, feature: FeatureSpec, output: TimestampedWriter) -> SpecResult:
        try:
            timeout = self.timeout_for(feature)
        except ValueError as e:
            output.write_line(f"error: {e}")
            return SpecResult(status=SpecStatus.FAILED, error_message=str(e))

        logger.info("feature_execution_started", feature_id=feature.id, timeout=timeout)

        try:
            if timeout is None:
                exit_code = await self.pipeline.run(feature, output)
            else:
                exit_code = await asyncio.wait_for(self.pipeline.run(feature, output), timeout)
        except asyncio.TimeoutError:
            message = f"timed out after {timeout:g}s"
            output.write_line(f"error: {message}")
            logger.error("feature_execution_timeout", feature_id=feature.id, timeout=timeout)
            return SpecResult(status=SpecStatus.FAILED, error_message=message)
        except Exception as e:
            output.write_line(f"error: {e}")
            logger.error("feature_execution_failed", feature_id=feature.id, error=str(e))
            return SpecResult(status=SpecStatus.FAILED, error_message=str(e) or type(e).__name__)

        if exit_code != 0:
            message = f"pipeline exited with code {exit_code}"
            logger.error("feature_execution_failed", feature_id=feature.id, exit_code=exit_code)
            return SpecResult(status=SpecStatus.FAILED, error_message=message, exit_code=exit_code)

        logger.info("feature_execution_completed", feature_id=feature.id)
        return SpecResult(status=SpecStatus.COMPLETED, exit_code=exit_code)
