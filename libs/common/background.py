"""Fire-and-forget side effects.

Some writes (query cache stores, session turn records) must never delay or
fail the user-visible response. ``SideEffectRunner`` schedules them as
background tasks, keeps a reference to each task until it finishes, and logs
failures instead of propagating them.

Contract
- ``spawn`` never raises and never awaits the coroutine
- A failed side effect is logged with its operation name and dropped
- ``drain`` awaits everything still pending (shutdown, tests)
"""

import asyncio
from typing import Any, Awaitable, Optional, Set
import structlog

logger = structlog.get_logger("background")


class SideEffectRunner:
    """Schedules best-effort coroutines on the running event loop."""

    def __init__(self, name: str = "side_effects"):
        self.name = name
        self._pending: Set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable[Any], operation: str) -> Optional[asyncio.Task]:
        """Schedule ``coro`` without awaiting it.

        Returns the created task, or ``None`` when scheduling itself failed.
        """
        guarded = self._guard(coro, operation)
        try:
            task = asyncio.ensure_future(guarded)
        except Exception as e:
            logger.warning("Failed to schedule side effect", operation=operation, error=str(e))
            guarded.close()
            if asyncio.iscoroutine(coro):
                coro.close()
            return None

        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _guard(self, coro: Awaitable[Any], operation: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.debug("Side effect cancelled", operation=operation)
            raise
        except Exception as e:
            logger.warning("Side effect failed", operation=operation, error=str(e))

    @property
    def pending_count(self) -> int:
        """Number of side effects still running."""
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for all pending side effects to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
