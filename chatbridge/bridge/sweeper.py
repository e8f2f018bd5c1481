"""Periodic safety-net cleanup of stale bridge records."""

from __future__ import annotations

import asyncio
from typing import Callable

from loguru import logger

from .store import CorrelationStore
from .transfer import AttachmentTransfer
from .types import BridgeRecord


class ExpirySweeper:
    """Reap records older than the retention ceiling.

    Independent of the per-record expiry timers; catches records whose timer
    never fired.
    """

    def __init__(
        self,
        store: CorrelationStore,
        interval: float = 3600,
        retention: float = 3600,
        transfer: AttachmentTransfer | None = None,
        on_reap: Callable[[str], None] | None = None,
    ) -> None:
        self._store = store
        self._interval = interval
        self._retention = retention
        self._transfer = transfer
        self._on_reap = on_reap
        self._running = False
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the sweep loop."""
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            f"Expiry sweeper started (interval: {self._interval:g}s, retention: {self._retention:g}s)"
        )

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Expiry sweeper stopped")

    async def _loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Sweeper error: {e}")

    async def sweep_once(self) -> list[str]:
        """Run one sweep. Returns the reaped bridge ids."""
        reaped = self._store.sweep_expired(self._retention)
        for record in reaped:
            logger.info(f"Cleaned up expired message: {record.id}")
            if self._on_reap is not None:
                self._on_reap(record.id)
            await self._discard_replies(record)
        if self._transfer is not None:
            self._transfer.purge_stale(self._retention)
        return [record.id for record in reaped]

    async def _discard_replies(self, record: BridgeRecord) -> None:
        """Drop scratch files of replies that will never be sent."""
        if self._transfer is None:
            return
        for entry in record.replies:
            await entry.wait_ready()
            for ref in entry.attachments:
                self._transfer.delete_scratch(ref.path)
