"""WhatsApp -> Discord relay: admission, forwarding and record creation."""

from __future__ import annotations

import mimetypes
from typing import Awaitable, Callable

from loguru import logger

from ..bus.events import InboundMessage
from ..channels.base import BaseChannel
from ..config.schema import BridgeSettings
from ..scheduler.service import Scheduler
from .store import CorrelationStore
from .transfer import AttachmentTransfer
from .types import BridgeRecord, new_bridge_id


def admit(message: InboundMessage, settings: BridgeSettings) -> str | None:
    """Return the body to forward, or None if the message is not for the bridge."""
    body = message.content.strip()
    if not body.startswith(settings.trigger):
        return None
    if message.is_broadcast:
        return None
    if not settings.keep_trigger:
        body = body[len(settings.trigger) :].strip()
    return body or None


def format_outbound(body: str, record: BridgeRecord, settings: BridgeSettings) -> str:
    """Raw passthrough, or ``[label] sender: body`` when context labels are on."""
    if not settings.context_label:
        return body
    return f"[{record.label}] {record.sender_name}: {body}"


def _default_media_name(mimetype: str) -> str:
    return "media" + (mimetypes.guess_extension(mimetype or "") or "")


class InboundRelay:
    """Forward triggered WhatsApp messages to the Discord bridge channel."""

    def __init__(
        self,
        settings: BridgeSettings,
        store: CorrelationStore,
        source: BaseChannel,
        target: BaseChannel,
        target_channel_id: str,
        transfer: AttachmentTransfer,
        scheduler: Scheduler,
        on_expire: Callable[[str], Awaitable[None]],
    ) -> None:
        self._settings = settings
        self._store = store
        self._source = source
        self._target = target
        self._target_channel_id = target_channel_id
        self._transfer = transfer
        self._scheduler = scheduler
        self._on_expire = on_expire

    async def handle(self, message: InboundMessage) -> BridgeRecord | None:
        """Relay one WhatsApp message. Returns the created record, if any."""
        body = admit(message, self._settings)
        if body is None:
            return None

        logger.info(f"WhatsApp message received: {body[:80]}")
        conversation = await self._source.get_chat(message)

        record = BridgeRecord(
            id=new_bridge_id(self._store.now()),
            conversation_id=conversation.id,
            sender_name=message.sender_name,
            created_at=self._store.now(),
            window=self._settings.window,
            is_group=conversation.is_group,
            group_name=conversation.name,
        )
        text = format_outbound(body, record, self._settings)

        try:
            await self._forward(message, text)
        except Exception as e:
            logger.error(f"Error sending message to Discord: {e}")
            return None

        # Only a delivered message can collect replies
        self._store.put(record)
        logger.info(f"Message sent to Discord ({record.id}): {text[:80]}")
        self._scheduler.call_later(
            record.id, self._settings.window, lambda: self._on_expire(record.id)
        )
        return record

    async def _forward(self, message: InboundMessage, text: str) -> None:
        if message.media is None:
            await self._target.send(self._target_channel_id, text)
            return

        name = message.media.filename or _default_media_name(message.media.mimetype)
        path = self._transfer.write_scratch(message.media.data, name)
        try:
            await self._target.send_file(
                self._target_channel_id, path, caption=text, filename=name
            )
        finally:
            self._transfer.release_later(path)
