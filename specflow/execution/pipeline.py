"""Per-feature pipeline runners and the timestamped log writer they write to."""

import asyncio
import codecs
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TextIO

import structlog

from specflow.dag.models import FeatureSpec

logger = structlog.get_logger(__name__)

DEFAULT_COMMAND = ("autospec", "run", "-spti")
TERMINATE_GRACE_PERIOD = 5.0
READ_CHUNK_SIZE = 65536


class TimestampedWriter:
    """Prefixes every complete line written to ``stream`` with ``[HH:MM:SS] ``."""

    def __init__(self, stream: TextIO, clock: Callable[[], datetime] = datetime.now):
        self.stream = stream
        self.clock = clock
        self._partial = ""

    def write(self, text: str) -> int:
        data = self._partial + text
        lines = data.split("\n")
        self._partial = lines.pop()
        for line in lines:
            self._emit(line)
        return len(text)

    def write_line(self, line: str) -> None:
        self.write(line.rstrip("\n") + "\n")

    def flush(self) -> None:
        if self._partial:
            self._emit(self._partial)
            self._partial = ""
        self.stream.flush()

    def _emit(self, line: str) -> None:
        self.stream.write(f"[{self.clock():%H:%M:%S}] {line}\n")
        self.stream.flush()


class FeaturePipeline(Protocol):
    """Runs the work for one feature, writing its output; returns an exit code."""

    async def run(self, feature: FeatureSpec, output: TimestampedWriter) -> int:
        ...


class SubprocessPipeline:
    """Runs an external command per feature and streams its combined output."""

    def __init__(
        self,
        command: Optional[Sequence[str]] = None,
        cwd: Optional[str] = None,
    ):
        self.command = list(command or DEFAULT_COMMAND)
        self.cwd = cwd

    def build_args(self, feature: FeatureSpec) -> List[str]:
        args = list(self.command)
        if feature.description:
            args.extend(["-a", feature.description])
        return args

    async def run(self, feature: FeatureSpec, output: TimestampedWriter) -> int:
        args = self.build_args(feature)
        logger.debug("pipeline_process_starting", feature_id=feature.id, args=args)

        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=self.cwd,
        )

        try:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            while True:
                chunk = await process.stdout.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                output.write(decoder.decode(chunk))
            output.write(decoder.decode(b"", final=True))
            return await process.wait()
        finally:
            # Any way out of the read loop other than EOF leaves the child running
            if process.returncode is None:
                await self._terminate(process, feature.id)

    async def _terminate(self, process: asyncio.subprocess.Process, feature_id: str) -> None:
        if process.returncode is not None:
            return
        logger.info("pipeline_process_terminating", feature_id=feature_id, pid=process.pid)
        try:
            process.terminate()
            await asyncio.wait_for(process.wait(), TERMINATE_GRACE_PERIOD)
        except ProcessLookupError:
            return
        except asyncio.TimeoutError:
            logger.warning("pipeline_process_killed", feature_id=feature_id, pid=process.pid)
            process.kill()
            await process.wait()


class CallablePipeline:
    """Adapts ``async fn(feature, output) -> Optional[int]``; ``None`` counts as success."""

    def __init__(self, fn: Callable[[FeatureSpec, TimestampedWriter], Awaitable[Optional[int]]]):
        self.fn = fn

    async def run(self, feature: FeatureSpec, output: TimestampedWriter) -> int:
        result = await self.fn(feature, output)
        return 0 if result is None else int(result)
