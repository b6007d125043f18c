"""Dump or follow a feature log file."""

import asyncio
from pathlib import Path
from typing import Callable, Optional, Union

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL = 0.1


def _emit_default(line: str) -> None:
    print(line, flush=True)


async def stream_logs(
    path: Union[str, Path],
    follow: bool = False,
    emit: Callable[[str], None] = _emit_default,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    timeout: Optional[float] = None,
) -> None:
    """
    Emit every line of a log file.

    Without follow the file is read once; a missing file is treated as empty.
    With follow the file is polled for appended lines until the task is
    cancelled or ``timeout`` elapses, which raises ``asyncio.TimeoutError``.
    A file that does not exist yet is waited for.
    """
    path = Path(path)

    if not follow:
        _dump(path, emit)
        return

    if timeout is not None and timeout <= 0:
        raise asyncio.TimeoutError(f"log follow deadline expired: {path}")

    follower = _follow(path, emit, poll_interval)
    if timeout is None:
        await follower
    else:
        await asyncio.wait_for(follower, timeout)


def _dump(path: Path, emit: Callable[[str], None]) -> None:
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line in f:
                emit(line.rstrip("\n"))
    except FileNotFoundError:
        logger.debug("log_file_missing", path=str(path))


async def _follow(path: Path, emit: Callable[[str], None], poll_interval: float) -> None:
    offset = 0
    partial = b""

    while True:
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            size = None

        if size is not None:
            if size < offset:
                logger.debug("log_file_truncated", path=str(path))
                offset = 0
                partial = b""

            if size > offset:
                with open(path, "rb") as f:
                    f.seek(offset)
                    chunk = f.read()
                offset += len(chunk)

                lines = (partial + chunk).split(b"\n")
                partial = lines.pop()
                for line in lines:
                    emit(line.decode("utf-8", errors="replace"))

        await asyncio.sleep(poll_interval)
