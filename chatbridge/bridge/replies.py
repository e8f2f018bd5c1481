"""Discord -> WhatsApp relay in immediate or batch mode."""

from __future__ import annotations

import asyncio

from loguru import logger

from ..bus.events import InboundMessage, RemoteAttachment
from ..channels.base import BaseChannel
from ..config.schema import BridgeSettings
from .store import CorrelationStore
from .transfer import AttachmentTransfer, is_inline_text
from .types import AttachmentRef, ReplyEntry


class ReplyRelay:
    """Attribute Discord replies to the first active bridge record.

    immediate: every reply is relayed as it arrives; the record stays
    matchable until its window lapses.
    batch: replies are collected on the record and sent in one go by
    ``flush`` when the window elapses.
    """

    def __init__(
        self,
        settings: BridgeSettings,
        store: CorrelationStore,
        target: BaseChannel,
        transfer: AttachmentTransfer,
        bridge_channel_id: str = "",
    ) -> None:
        self._settings = settings
        self._bridge_channel_id = str(bridge_channel_id)
        self._store = store
        self._target = target
        self._transfer = transfer
        # Keeps replies to one record in receipt order
        self._order_locks: dict[str, asyncio.Lock] = {}

    @property
    def batch(self) -> bool:
        return self._settings.reply_mode == "batch"

    async def handle(self, message: InboundMessage) -> str | None:
        """Handle one Discord message. Returns the bridge id it was attributed to."""
        if self._bridge_channel_id and message.channel_id != self._bridge_channel_id:
            return None

        record = self._store.first_active()
        if record is None:
            logger.debug("Discord message outside any active bridge window, ignored")
            return None

        logger.info(f"Discord response received for {record.id}: {message.content[:80]}")
        if self.batch:
            self._collect(record.id, message)
        else:
            await self._relay_now(record.id, record.conversation_id, message)
        return record.id

    def forget(self, bridge_id: str) -> None:
        self._order_locks.pop(bridge_id, None)

    def _decorate(self, content: str, author: str) -> str:
        if self._settings.include_author:
            content = f"{author}: {content}"
        return f"{self._settings.reply_prefix}{content}"

    def _collect(self, bridge_id: str, message: InboundMessage) -> None:
        """Append a reply entry; downloads continue in the background."""
        entry = ReplyEntry(
            content=message.content,
            author=message.sender_name,
            received_at=self._store.now(),
        )
        if not self._store.append_reply(bridge_id, entry):
            logger.warning(f"Bridge {bridge_id} closed before reply could be stored")
            return
        if message.attachments:
            entry.downloads = asyncio.create_task(
                self._download_all(entry, message.attachments)
            )

    async def _download_all(
        self, entry: ReplyEntry, attachments: list[RemoteAttachment]
    ) -> None:
        for attachment in attachments:
            try:
                ref = await self._transfer.download(
                    attachment.url, attachment.name, attachment.content_type
                )
                entry.attachments.append(ref)
            except Exception as e:
                logger.error(f"Error downloading Discord attachment {attachment.name}: {e}")
                entry.failed_attachments.append(attachment.name)

    async def _relay_now(
        self, bridge_id: str, conversation_id: str, message: InboundMessage
    ) -> None:
        lock = self._order_locks.setdefault(bridge_id, asyncio.Lock())
        async with lock:
            if message.content.strip():
                await self._send_text(
                    conversation_id, self._decorate(message.content, message.sender_name)
                )
            for attachment in message.attachments:
                try:
                    ref = await self._transfer.download(
                        attachment.url, attachment.name, attachment.content_type
                    )
                except Exception as e:
                    logger.error(f"Error downloading Discord attachment {attachment.name}: {e}")
                    await self._notify_failure(conversation_id, attachment.name)
                    continue
                await self._relay_attachment(conversation_id, ref)

    async def flush(self, bridge_id: str) -> None:
        """Send everything collected for a record, then drop it."""
        record = self._store.delete(bridge_id)
        self.forget(bridge_id)
        if record is None:
            return

        logger.info(f"Processing {len(record.replies)} response(s) for bridge ID: {bridge_id}")
        conversation_id = record.conversation_id

        if not record.replies:
            notice = self._settings.no_response_text.format(seconds=f"{record.window:g}")
            await self._send_text(conversation_id, notice)
            return

        for i, entry in enumerate(record.replies):
            await entry.wait_ready()
            if entry.content.strip():
                await self._send_text(
                    conversation_id, self._decorate(entry.content, entry.author)
                )
            for ref in entry.attachments:
                await self._relay_attachment(conversation_id, ref)
            for name in entry.failed_attachments:
                await self._notify_failure(conversation_id, name)

            if i < len(record.replies) - 1 and self._settings.send_delay > 0:
                await asyncio.sleep(self._settings.send_delay)

    async def _send_text(self, conversation_id: str, text: str) -> bool:
        try:
            await self._target.send(conversation_id, text)
            return True
        except Exception as e:
            logger.error(f"Error sending response to WhatsApp {conversation_id}: {e}")
            return False

    async def _relay_attachment(self, conversation_id: str, ref: AttachmentRef) -> None:
        """Send one downloaded attachment; .txt files go out as chat text."""
        try:
            if is_inline_text(ref.name):
                await self._target.send(conversation_id, self._transfer.read_text(ref.path))
            else:
                await self._target.send_file(conversation_id, ref.path, filename=ref.name)
        except Exception as e:
            logger.error(f"Error sending attachment {ref.name} to WhatsApp: {e}")
            await self._notify_failure(conversation_id, ref.name)
        finally:
            self._transfer.delete_scratch(ref.path)

    async def _notify_failure(self, conversation_id: str, name: str) -> None:
        await self._send_text(
            conversation_id, self._settings.attachment_error_text.format(name=name)
        )
