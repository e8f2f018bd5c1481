"""Channel manager: lifecycle and recovery of chat channels."""

from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from ..bus.queue import MessageBus
from ..config.schema import Config
from .base import BaseChannel


class ChannelManager:
    """Manages all chat channels and re-initializes the ones that drop out."""

    def __init__(self, config: Config, bus: MessageBus) -> None:
        self._config = config
        self._bus = bus
        self._channels: dict[str, BaseChannel] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._restarts: dict[str, int] = {}
        self._restart_task: asyncio.Task | None = None

    def register(self, channel: BaseChannel) -> None:
        """Register a channel."""
        self._channels[channel.name] = channel
        logger.info(f"Registered channel: {channel.name}")

    def setup_channels(self) -> None:
        """Create the Discord and WhatsApp channels."""
        from .discord import DiscordChannel
        from .whatsapp import WhatsAppChannel

        self.register(DiscordChannel(self._bus, self._config.channels.discord))
        self.register(WhatsAppChannel(self._bus, self._config.channels.whatsapp))

    def _launch(self, name: str) -> None:
        channel = self._channels[name]
        task = asyncio.create_task(channel.start())
        task.add_done_callback(lambda t, n=name: self._on_channel_exit(n, t))
        self._tasks[name] = task

    def _on_channel_exit(self, name: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Channel {name} crashed: {error}")
            self.schedule_recovery()

    async def start_all(self) -> None:
        """Start all registered channels, each in its own task."""
        for name in self._channels:
            try:
                self._launch(name)
                logger.info(f"Started channel: {name}")
            except Exception as e:
                logger.error(f"Failed to start channel {name}: {e}")

    async def stop_all(self) -> None:
        """Stop all registered channels."""
        if self._restart_task:
            self._restart_task.cancel()
        for name, channel in self._channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped channel: {name}")
            except Exception as e:
                logger.error(f"Error stopping channel {name}: {e}")
        for task in self._tasks.values():
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._tasks.clear()

    async def restart_unready(self) -> list[str]:
        """Re-initialize every channel that is not ready, within the restart budget."""
        restarted = []
        for name, channel in self._channels.items():
            if channel.ready:
                continue
            count = self._restarts.get(name, 0)
            if count >= self._config.gateway.max_restarts:
                logger.error(f"Channel {name} reached the restart limit ({count}), giving up")
                continue
            self._restarts[name] = count + 1
            logger.info(f"Restarting channel {name} (attempt {count + 1})")

            try:
                await channel.stop()
            except Exception as e:
                logger.warning(f"Error stopping channel {name} before restart: {e}")
            task = self._tasks.pop(name, None)
            if task and not task.done():
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
            self._launch(name)
            restarted.append(name)
        return restarted

    def schedule_recovery(self) -> None:
        """Restart unready channels after the configured delay (coalesced)."""
        if self._restart_task and not self._restart_task.done():
            return

        async def _recover() -> None:
            await asyncio.sleep(self._config.gateway.restart_delay)
            logger.info("Attempting to restart after uncaught exception...")
            await self.restart_unready()

        self._restart_task = asyncio.create_task(_recover())

    def handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        """asyncio exception handler: log and recover instead of exiting."""
        error = context.get("exception")
        logger.error(f"Uncaught exception: {error or context.get('message')}")
        self.schedule_recovery()

    def get_channel(self, name: str) -> BaseChannel | None:
        """Get a channel by name."""
        return self._channels.get(name)

    @property
    def active_channels(self) -> list[str]:
        """List active channel names."""
        return list(self._channels.keys())
