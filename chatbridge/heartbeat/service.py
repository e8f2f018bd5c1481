"""Heartbeat service: periodic liveness ping."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable

import httpx
from loguru import logger


class HeartbeatService:
    """Ping an external URL on a fixed interval to keep the host awake.

    Hosting platforms that idle a process without traffic are kept busy by
    pointing ``ping_url`` at the process's own health endpoint. Without a URL
    only ``last_ping_at`` is refreshed.
    """

    def __init__(
        self,
        interval: float = 300,  # 5 minutes
        ping_url: str = "",
        status_fn: Callable[[], Any] | None = None,
    ) -> None:
        self._interval = interval
        self._ping_url = ping_url
        self._status_fn = status_fn
        self._running = False
        self._task: asyncio.Task | None = None
        self.last_ping_at: float = time.time()

    async def start(self) -> None:
        """Start the heartbeat loop."""
        self._running = True
        self._task = asyncio.create_task(self._loop())
        if self._ping_url:
            logger.info(f"Self-ping enabled (interval: {self._interval:g}s)")
        else:
            logger.info(f"Heartbeat service started (interval: {self._interval:g}s)")

    async def stop(self) -> None:
        """Stop the heartbeat loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Heartbeat service stopped")

    async def _loop(self) -> None:
        """Main heartbeat loop."""
        while self._running:
            try:
                await asyncio.sleep(self._interval)
                await self.ping()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")

    async def ping(self) -> bool:
        """Ping once. Returns False only when a configured ping failed."""
        ok = True
        if self._ping_url:
            try:
                async with httpx.AsyncClient() as client:
                    response = await client.get(self._ping_url, timeout=5.0)
                    response.raise_for_status()
                logger.info("Self-ping successful")
            except httpx.HTTPError as e:
                logger.error(f"Self-ping failed: {e}")
                ok = False
        if ok:
            self.last_ping_at = time.time()

        if self._status_fn is not None:
            logger.debug(f"Status: {self._status_fn()}")
        return ok
