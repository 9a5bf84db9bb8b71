"""Shutdown helpers: task draining and signal escalation for child processes."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Iterable

logger = logging.getLogger(__name__)


def format_duration(seconds: float) -> str:
    """Format a duration as '1m 22s' or '34.2s'."""
    if seconds >= 60:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs:02d}s"
    return f"{seconds:.1f}s"


async def drain_tasks(tasks: Iterable[asyncio.Task[object]], timeout: float) -> int:
    """Wait up to *timeout* seconds for *tasks*, then cancel the stragglers.

    Returns the number of tasks that had to be cancelled.
    """
    pending = [t for t in tasks if not t.done()]
    if not pending:
        return 0

    _, still_running = await asyncio.wait(pending, timeout=timeout)
    if not still_running:
        return 0

    logger.warning("Drain timeout: cancelling %d task(s)", len(still_running))
    for task in still_running:
        task.cancel()
    await asyncio.gather(*still_running, return_exceptions=True)
    return len(still_running)


async def terminate_process(
    proc: asyncio.subprocess.Process,
    timeout: float,
    name: str = "process",
) -> int:
    """Stop *proc*: SIGTERM, wait *timeout* seconds, then SIGKILL.

    Returns the process return code.  Safe on a process that has
    already exited.
    """
    if proc.returncode is not None:
        return proc.returncode

    with contextlib.suppress(ProcessLookupError):
        proc.terminate()
    try:
        await asyncio.wait_for(proc.wait(), timeout=timeout)
    except TimeoutError:
        logger.warning("%s (pid %s) ignored SIGTERM, sending SIGKILL", name, proc.pid)
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()

    logger.info("%s (pid %s) exited with code %s", name, proc.pid, proc.returncode)
    return proc.returncode if proc.returncode is not None else -1
