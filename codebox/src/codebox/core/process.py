"""
Deadline-guarded process execution.

``run_with_deadline`` is the one primitive every execution path goes through
(local interpreter or ``docker exec`` client). The child is started in its own
session so that expiry or cancellation can signal the whole process group,
grandchildren included, rather than just the direct child.
"""

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from codebox.monitoring.logging import get_logger

logger = get_logger(__name__)

# Upper bound on waiting for pipe readers after the process itself has exited
READER_DRAIN_SECONDS = 2.0
REAP_SECONDS = 2.0
READ_CHUNK_BYTES = 64 * 1024
TRUNCATION_MARKER = "\n[output truncated]"


@dataclass
class ProcessOutcome:
    """What happened to one deadline-guarded process."""
    exit_code: Optional[int]
    stdout: str
    stderr: str
    timed_out: bool
    duration_ms: int
    stdout_truncated: bool = False
    stderr_truncated: bool = False


class OutputBuffer:
    """Accumulates a stream up to a byte ceiling, dropping the excess."""

    def __init__(self, limit: int):
        self.limit = limit
        self.truncated = False
        self._data = bytearray()

    def feed(self, chunk: bytes) -> None:
        remaining = self.limit - len(self._data)
        if remaining > 0:
            self._data.extend(chunk[:remaining])
        if len(chunk) > max(remaining, 0):
            self.truncated = True

    def text(self) -> str:
        decoded = self._data.decode("utf-8", errors="replace")
        if self.truncated:
            decoded += TRUNCATION_MARKER
        return decoded


async def _pump(stream: Optional[asyncio.StreamReader], buffer: OutputBuffer) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(READ_CHUNK_BYTES)
        if not chunk:
            break
        buffer.feed(chunk)


def kill_process_group(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the process group led by ``proc``; tolerate an already-dead group."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


async def _drain(readers: List["asyncio.Task[None]"]) -> None:
    _, pending = await asyncio.wait(readers, timeout=READER_DRAIN_SECONDS)
    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)


async def run_with_deadline(
    argv: Sequence[str],
    timeout_ms: int,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    max_output_bytes: int = 1024 * 1024,
    on_timeout: Optional[Callable[[], Awaitable[None]]] = None,
) -> ProcessOutcome:
    """
    Run ``argv`` to completion or until ``timeout_ms`` elapses.

    Args:
        argv: Command and arguments (no shell involved)
        timeout_ms: Hard wall-clock deadline in milliseconds
        cwd: Working directory for the child
        env: Environment for the child
        max_output_bytes: Ceiling per stream; excess output is dropped
        on_timeout: Extra teardown awaited after the process group is killed
            (e.g. killing the in-container processes behind a ``docker exec``)

    Returns:
        ProcessOutcome. Raises OSError only when the process cannot be spawned.
    """
    stdout_buffer = OutputBuffer(max_output_bytes)
    stderr_buffer = OutputBuffer(max_output_bytes)

    start = time.perf_counter()
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
        env=env,
        start_new_session=True,
    )

    readers = [
        asyncio.create_task(_pump(proc.stdout, stdout_buffer)),
        asyncio.create_task(_pump(proc.stderr, stderr_buffer)),
    ]

    timed_out = False
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout_ms / 1000)
    except asyncio.TimeoutError:
        timed_out = True
        kill_process_group(proc)
        await proc.wait()
        if on_timeout is not None:
            try:
                await on_timeout()
            except Exception as e:
                logger.warning("timeout_teardown_failed", pid=proc.pid, error=str(e))
    except asyncio.CancelledError:
        kill_process_group(proc)
        for task in readers:
            task.cancel()
        try:
            await asyncio.wait_for(proc.wait(), timeout=REAP_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("cancelled_process_not_reaped", pid=proc.pid)
        await asyncio.gather(*readers, return_exceptions=True)
        raise

    duration_ms = int((time.perf_counter() - start) * 1000)
    await _drain(readers)

    return ProcessOutcome(
        exit_code=proc.returncode,
        stdout=stdout_buffer.text(),
        stderr=stderr_buffer.text(),
        timed_out=timed_out,
        duration_ms=duration_ms,
        stdout_truncated=stdout_buffer.truncated,
        stderr_truncated=stderr_buffer.truncated,
    )
