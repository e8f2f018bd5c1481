"""Bridge engine: wires the correlation store, relays and cleanup tasks."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass
from typing import Callable

from loguru import logger

from ..bus.events import InboundMessage
from ..bus.queue import MessageBus
from ..channels.base import BaseChannel
from ..config.schema import BridgeSettings
from ..scheduler.service import Scheduler
from .inbound import InboundRelay
from .replies import ReplyRelay
from .store import CorrelationStore
from .sweeper import ExpirySweeper
from .transfer import AttachmentTransfer


@dataclass(frozen=True)
class BridgeStatus:
    """Read-only snapshot for health reporting."""

    whatsapp_ready: bool
    discord_ready: bool
    active_message_count: int
    last_ping_at: float
    started_at: float
    uptime: float

    def to_dict(self) -> dict:
        return asdict(self)


class BridgeEngine:
    """Route WhatsApp and Discord events through the correlation engine."""

    def __init__(
        self,
        settings: BridgeSettings,
        whatsapp: BaseChannel,
        discord: BaseChannel,
        discord_channel_id: str,
        transfer: AttachmentTransfer,
        scheduler: Scheduler | None = None,
        store: CorrelationStore | None = None,
        clock: Callable[[], float] = time.time,
        last_ping_fn: Callable[[], float] | None = None,
    ) -> None:
        self._settings = settings
        self._whatsapp = whatsapp
        self._discord = discord
        self._clock = clock
        self._started_at = clock()
        self._last_ping_fn = last_ping_fn
        self.store = store or CorrelationStore(clock=clock)
        self.transfer = transfer
        self.scheduler = scheduler or Scheduler()

        self.replies = ReplyRelay(
            settings=settings,
            store=self.store,
            target=whatsapp,
            transfer=transfer,
            bridge_channel_id=discord_channel_id,
        )
        self.inbound = InboundRelay(
            settings=settings,
            store=self.store,
            source=whatsapp,
            target=discord,
            target_channel_id=discord_channel_id,
            transfer=transfer,
            scheduler=self.scheduler,
            on_expire=self.expire,
        )
        self.sweeper = ExpirySweeper(
            store=self.store,
            interval=settings.sweep_interval,
            retention=settings.retention,
            transfer=transfer,
            on_reap=self.replies.forget,
        )

    def attach(self, bus: MessageBus) -> None:
        """Subscribe to inbound events on the bus."""
        bus.on_inbound(self.handle)

    async def handle(self, message: InboundMessage) -> None:
        if message.channel == self._whatsapp.name:
            await self.inbound.handle(message)
        elif message.channel == self._discord.name:
            await self.replies.handle(message)
        else:
            logger.debug(f"Ignoring message from unknown channel {message.channel}")

    async def expire(self, bridge_id: str) -> None:
        """Window elapsed: flush collected replies, or just drop the record."""
        if self.replies.batch:
            await self.replies.flush(bridge_id)
        else:
            self.store.delete(bridge_id)
            self.replies.forget(bridge_id)

    async def start(self) -> None:
        self.transfer.purge_stale(self._settings.retention)
        await self.sweeper.start()
        logger.info(
            f"Bridge ready (trigger: {self._settings.trigger!r}, "
            f"window: {self._settings.window:g}s, mode: {self._settings.reply_mode})"
        )

    async def stop(self) -> None:
        await self.sweeper.stop()
        await self.scheduler.stop()
        await self.transfer.close()

    def snapshot(self) -> BridgeStatus:
        now = self._clock()
        return BridgeStatus(
            whatsapp_ready=self._whatsapp.ready,
            discord_ready=self._discord.ready,
            active_message_count=len(self.store),
            last_ping_at=self._last_ping_fn() if self._last_ping_fn else self._started_at,
            started_at=self._started_at,
            uptime=now - self._started_at,
        )
