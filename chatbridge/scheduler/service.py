"""Timer service for per-record expiry callbacks."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from loguru import logger


class Scheduler:
    """Keyed one-shot timers backed by asyncio tasks.

    Each ``call_later`` returns the task as a cancellable future. Pending
    timers are abandoned on ``stop``; bridge state is not durable.
    """

    def __init__(self) -> None:
        self._timers: dict[str, asyncio.Task] = {}

    @property
    def pending(self) -> list[str]:
        return [key for key, task in self._timers.items() if not task.done()]

    def call_later(
        self,
        key: str,
        delay: float,
        callback: Callable[[], Awaitable[None]],
    ) -> asyncio.Task:
        """Run callback after delay seconds. Replaces an existing timer for key."""
        self.cancel(key)
        task = asyncio.create_task(self._run_after(key, delay, callback))
        self._timers[key] = task
        return task

    def cancel(self, key: str) -> bool:
        task = self._timers.pop(key, None)
        if task and not task.done():
            task.cancel()
            return True
        return False

    async def _run_after(
        self, key: str, delay: float, callback: Callable[[], Awaitable[None]]
    ) -> None:
        try:
            await asyncio.sleep(delay)
            await callback()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Scheduled callback error ({key}): {e}")
        finally:
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]

    async def stop(self) -> None:
        """Cancel all pending timers."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()
        logger.info("Scheduler stopped")
