"""Async message bus with concurrent handler dispatch."""

from __future__ import annotations

import asyncio
from typing import Callable, Awaitable

from loguru import logger

from .events import InboundMessage


class MessageBus:
    """Inbound queue decoupling channels from the bridge engine.

    Every handler invocation runs in its own task: a handler waiting on a
    download or a send never delays the start of the next event.
    """

    MAX_QUEUE_SIZE = 1000  # Prevent unbounded queue growth

    def __init__(self) -> None:
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(
            maxsize=self.MAX_QUEUE_SIZE
        )
        self._inbound_handlers: list[Callable[[InboundMessage], Awaitable[None]]] = []
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    def on_inbound(self, handler: Callable[[InboundMessage], Awaitable[None]]) -> None:
        """Register a handler for inbound messages."""
        self._inbound_handlers.append(handler)

    async def publish_inbound(self, message: InboundMessage) -> bool:
        """Publish an inbound message from a channel. Returns False if queue is full."""
        if self._inbound.full():
            logger.error(f"Inbound queue full! Dropping message from {message.channel}")
            return False
        logger.debug(
            f"Inbound from {message.channel}:{message.sender_name}: {message.content[:80]}"
        )
        await self._inbound.put(message)
        return True

    @property
    def in_flight(self) -> int:
        """Number of handler invocations still running."""
        return len(self._tasks)

    async def start(self) -> None:
        """Start processing messages."""
        self._running = True
        await self._process_inbound()

    async def stop(self) -> None:
        """Stop processing messages."""
        self._running = False

    async def drain(self) -> None:
        """Wait for every running handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def dispatch(self, message: InboundMessage) -> list[asyncio.Task]:
        """Start every handler for a message in its own task."""
        tasks = []
        for handler in self._inbound_handlers:
            task = asyncio.create_task(self._run_handler(handler, message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            tasks.append(task)
        return tasks

    async def _run_handler(
        self, handler: Callable[[InboundMessage], Awaitable[None]], message: InboundMessage
    ) -> None:
        try:
            await handler(message)
        except Exception as e:
            logger.error(f"Inbound handler error ({message.channel}): {e}")

    async def _process_inbound(self) -> None:
        """Process inbound message queue."""
        while self._running:
            try:
                message = await asyncio.wait_for(self._inbound.get(), timeout=1.0)
                self.dispatch(message)
            except asyncio.TimeoutError:
                continue
            except Exception as e:
                logger.error(f"Inbound processing error: {e}")
