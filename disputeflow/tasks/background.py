"""Fire-and-forget background tasks"""

import asyncio
import traceback
from typing import Coroutine

from disputeflow.core.logging import log

_pending: set[asyncio.Task] = set()


def fire_and_forget(coro: Coroutine, label: str = "background") -> asyncio.Task:
    """Launch a coroutine without awaiting it; failures are logged, never raised."""
    async def _wrapper():
        try:
            await coro
        except Exception as e:
            log.error(f"[{label}] Background task failed: {e}")
            log.debug(f"[{label}] Traceback: {traceback.format_exc()}")

    task = asyncio.get_running_loop().create_task(_wrapper())
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task


async def drain(timeout: float | None = None) -> None:
    """Wait for outstanding background tasks (shutdown and tests)."""
    if _pending:
        await asyncio.wait(set(_pending), timeout=timeout)
