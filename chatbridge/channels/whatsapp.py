"""WhatsApp channel backed by a Node.js WhatsApp Web bridge over WebSocket."""

from __future__ import annotations

import asyncio
import base64
import json
import mimetypes
import time
import uuid
from pathlib import Path
from typing import Any

from loguru import logger

from ..bus.events import Conversation, InboundMedia, InboundMessage
from ..bus.queue import MessageBus
from ..config.schema import WhatsAppConfig
from .base import BaseChannel, ChannelUnavailableError


BROADCAST_CHAT_ID = "status@broadcast"
QR_TTL = 20.0
RECONNECT_DELAY = 5.0
CHAT_LOOKUP_TIMEOUT = 10.0


class WhatsAppChannel(BaseChannel):
    """WhatsApp channel talking JSON frames to the bridge process.

    Frames in: ``message``, ``status``, ``qr``, ``chat`` (answer to getChat).
    Frames out: ``send``, ``sendMedia``, ``getChat``.
    """

    def __init__(self, bus: MessageBus, config: WhatsAppConfig) -> None:
        super().__init__(bus)
        self._config = config
        self._ws: Any = None
        self._connected = False
        self._running = False
        self._self_id: str | None = None
        self._qr: str | None = None
        self._qr_at = 0.0
        self._chat_requests: dict[str, asyncio.Future] = {}

    @property
    def name(self) -> str:
        return "whatsapp"

    @property
    def ready(self) -> bool:
        return self._ws is not None and self._connected

    @property
    def current_qr(self) -> str | None:
        """Last pairing QR string, for at most 20 seconds."""
        if self._qr and time.time() - self._qr_at <= QR_TTL:
            return self._qr
        return None

    async def start(self) -> None:
        """Connect to the bridge and keep reconnecting until stopped."""
        import websockets

        logger.info(f"[WhatsApp] Connecting to bridge at {self._config.bridge_url}...")
        self._running = True

        while self._running:
            try:
                async with websockets.connect(self._config.bridge_url) as ws:
                    self._ws = ws
                    await ws.send(
                        json.dumps({"type": "hello", "session": self._config.session_name})
                    )
                    logger.info("[WhatsApp] Connected to bridge")

                    async for frame in ws:
                        try:
                            await self._handle_frame(frame)
                        except Exception as e:
                            logger.error(f"[WhatsApp] Error handling bridge frame: {e}")

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[WhatsApp] Bridge connection error: {e}")
            finally:
                self._connected = False
                self._ws = None

            if self._running:
                logger.info(f"[WhatsApp] Reconnecting in {RECONNECT_DELAY:.0f} seconds...")
                await asyncio.sleep(RECONNECT_DELAY)

    async def stop(self) -> None:
        """Stop the WhatsApp channel."""
        self._running = False
        self._connected = False
        for future in self._chat_requests.values():
            future.cancel()
        self._chat_requests.clear()

        if self._ws:
            await self._ws.close()
            self._ws = None
        logger.info("[WhatsApp] Channel stopped")

    async def send(self, channel_id: str, content: str) -> None:
        """Send a text message to a chat."""
        if not content.strip():
            logger.warning("[WhatsApp] Attempted to send empty message, skipping.")
            return
        await self._send_frame({"type": "send", "to": channel_id, "text": content})

    async def send_file(
        self,
        channel_id: str,
        path: str | Path,
        caption: str = "",
        filename: str = "",
    ) -> None:
        """Send a file inline as base64 so the caller may delete it right away."""
        p = Path(path)
        data = p.read_bytes()
        mimetype = mimetypes.guess_type(filename or p.name)[0] or "application/octet-stream"
        await self._send_frame(
            {
                "type": "sendMedia",
                "to": channel_id,
                "data": base64.b64encode(data).decode("ascii"),
                "filename": filename or p.name,
                "mimetype": mimetype,
                "caption": caption or None,
            }
        )
        logger.info(f"[WhatsApp] File sent: {filename or p.name} to {channel_id}")

    async def get_chat(self, message: InboundMessage) -> Conversation:
        """Resolve the chat of a message.

        Group messages come with the group id as chat id and the member as
        sender; the group subject is looked up from the bridge when missing.
        """
        conversation = Conversation.from_message(message)
        if not conversation.is_group or conversation.name or not self.ready:
            return conversation

        request_id = uuid.uuid4().hex[:12]
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._chat_requests[request_id] = future
        try:
            await self._send_frame(
                {"type": "getChat", "requestId": request_id, "chatId": conversation.id}
            )
            chat = await asyncio.wait_for(future, timeout=CHAT_LOOKUP_TIMEOUT)
            conversation.name = chat.get("name") or ""
            conversation.is_group = bool(chat.get("isGroup", True))
        except (asyncio.TimeoutError, ChannelUnavailableError) as e:
            logger.warning(f"[WhatsApp] Chat lookup for {conversation.id} failed: {e!r}")
        finally:
            self._chat_requests.pop(request_id, None)
        return conversation

    async def _send_frame(self, payload: dict[str, Any]) -> None:
        if not self.ready:
            raise ChannelUnavailableError("WhatsApp bridge not connected")
        await self._ws.send(json.dumps(payload))

    async def _handle_frame(self, raw: str) -> None:
        """Handle a frame from the bridge."""
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"[WhatsApp] Received malformed JSON from bridge: {e}")
            return

        frame_type = data.get("type")

        if frame_type == "message":
            await self._handle_incoming_message(data)
        elif frame_type == "status":
            self._handle_status(data)
        elif frame_type == "qr":
            self._handle_qr(data)
        elif frame_type == "chat":
            self._handle_chat(data)
        else:
            logger.debug(f"[WhatsApp] Unknown bridge frame type: {frame_type!r}")

    async def _handle_incoming_message(self, data: dict[str, Any]) -> None:
        sender = data.get("author") or data.get("from", "")
        chat_id = data.get("chatId") or data.get("from", "")
        if data.get("fromMe"):
            return

        media = None
        raw_media = data.get("media")
        if raw_media and raw_media.get("data"):
            try:
                media = InboundMedia(
                    data=base64.b64decode(raw_media["data"]),
                    filename=raw_media.get("filename") or "",
                    mimetype=raw_media.get("mimetype") or "",
                )
            except (ValueError, TypeError) as e:
                logger.warning(f"[WhatsApp] Dropping undecodable media: {e}")

        await self._bus.publish_inbound(
            InboundMessage(
                channel="whatsapp",
                channel_id=chat_id,
                sender_id=sender,
                sender_name=data.get("pushName") or sender.split("@")[0],
                content=data.get("body") or "",
                is_group=bool(data.get("isGroup", chat_id.endswith("@g.us"))),
                group_name=data.get("chatName") or "",
                is_broadcast=bool(data.get("isBroadcast"))
                or BROADCAST_CHAT_ID in (chat_id, data.get("from")),
                media=media,
                metadata={"message_id": data.get("id"), "timestamp": data.get("timestamp")},
            )
        )

    def _handle_status(self, data: dict[str, Any]) -> None:
        status = data.get("status")
        logger.info(f"[WhatsApp] Status: {status}")

        if status in ("ready", "connected"):
            self._connected = True
            self._qr = None
            self._self_id = data.get("selfId") or self._self_id
        elif status in ("disconnected", "auth_failure"):
            self._connected = False

    def _handle_qr(self, data: dict[str, Any]) -> None:
        if self._connected:
            logger.debug("[WhatsApp] Ignoring QR event, already connected.")
            return
        self._qr = data.get("qr")
        self._qr_at = time.time()
        logger.info("[WhatsApp] Scan the pairing QR code: WhatsApp → Linked devices → Link a device")
        logger.info(f"[WhatsApp] QR string: {self._qr}")

    def _handle_chat(self, data: dict[str, Any]) -> None:
        future = self._chat_requests.get(data.get("requestId", ""))
        if future and not future.done():
            future.set_result(data.get("chat") or {})
