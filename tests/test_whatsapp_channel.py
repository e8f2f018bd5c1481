"""Tests for the WhatsApp bridge channel."""

from __future__ import annotations

import asyncio
import base64
import json

import pytest

from chatbridge.bus.queue import MessageBus
from chatbridge.channels.base import ChannelUnavailableError
from chatbridge.channels.whatsapp import WhatsAppChannel
from chatbridge.config.schema import WhatsAppConfig

from conftest import whatsapp_message


class FakeWS:
    def __init__(self):
        self.sent = []

    async def send(self, payload: str):
        self.sent.append(payload)

    async def close(self):
        pass


def connected_channel() -> WhatsAppChannel:
    channel = WhatsAppChannel(MessageBus(), WhatsAppConfig())
    channel._connected = True
    channel._ws = FakeWS()
    return channel


class TestOutgoing:
    @pytest.mark.asyncio
    async def test_send_text(self) -> None:
        channel = connected_channel()
        await channel.send("123@c.us", "hello")

        payload = json.loads(channel._ws.sent[0])
        assert payload == {"type": "send", "to": "123@c.us", "text": "hello"}

    @pytest.mark.asyncio
    async def test_send_when_disconnected_raises(self) -> None:
        channel = WhatsAppChannel(MessageBus(), WhatsAppConfig())
        with pytest.raises(ChannelUnavailableError):
            await channel.send("123@c.us", "hello")

    @pytest.mark.asyncio
    async def test_send_file_inlines_data(self, tmp_path) -> None:
        channel = connected_channel()
        path = tmp_path / "scratch_photo.png"
        path.write_bytes(b"\x89PNG")

        await channel.send_file("123@c.us", path, filename="photo.png")

        payload = json.loads(channel._ws.sent[0])
        assert payload["type"] == "sendMedia"
        assert payload["to"] == "123@c.us"
        assert payload["filename"] == "photo.png"
        assert payload["mimetype"] == "image/png"
        assert base64.b64decode(payload["data"]) == b"\x89PNG"
        assert payload["caption"] is None


class TestIncoming:
    @pytest.mark.asyncio
    async def test_message_frame_published(self) -> None:
        bus = MessageBus()
        channel = WhatsAppChannel(bus, WhatsAppConfig())

        await channel._handle_frame(
            json.dumps(
                {
                    "type": "message",
                    "id": "m1",
                    "from": "4915112345678@c.us",
                    "pushName": "Anna",
                    "body": ".ping",
                }
            )
        )

        message = bus._inbound.get_nowait()
        assert message.channel == "whatsapp"
        assert message.channel_id == "4915112345678@c.us"
        assert message.sender_name == "Anna"
        assert message.content == ".ping"
        assert not message.is_group
        assert not message.is_broadcast

    @pytest.mark.asyncio
    async def test_group_message_uses_chat_id(self) -> None:
        bus = MessageBus()
        channel = WhatsAppChannel(bus, WhatsAppConfig())

        await channel._handle_frame(
            json.dumps(
                {
                    "type": "message",
                    "from": "120363@g.us",
                    "chatId": "120363@g.us",
                    "author": "4917@c.us",
                    "body": ".ping",
                    "chatName": "Family",
                }
            )
        )

        message = bus._inbound.get_nowait()
        assert message.channel_id == "120363@g.us"
        assert message.sender_id == "4917@c.us"
        assert message.sender_name == "4917"
        assert message.is_group
        assert message.group_name == "Family"

    @pytest.mark.asyncio
    async def test_status_broadcast_flagged(self) -> None:
        bus = MessageBus()
        channel = WhatsAppChannel(bus, WhatsAppConfig())

        await channel._handle_frame(
            json.dumps({"type": "message", "from": "status@broadcast", "body": ".story"})
        )
        assert bus._inbound.get_nowait().is_broadcast

    @pytest.mark.asyncio
    async def test_own_messages_skipped(self) -> None:
        bus = MessageBus()
        channel = WhatsAppChannel(bus, WhatsAppConfig())

        await channel._handle_frame(
            json.dumps({"type": "message", "from": "1@c.us", "body": ".x", "fromMe": True})
        )
        assert bus._inbound.empty()

    @pytest.mark.asyncio
    async def test_media_decoded(self) -> None:
        bus = MessageBus()
        channel = WhatsAppChannel(bus, WhatsAppConfig())

        await channel._handle_frame(
            json.dumps(
                {
                    "type": "message",
                    "from": "1@c.us",
                    "body": ".look",
                    "media": {
                        "data": base64.b64encode(b"jpeg").decode(),
                        "mimetype": "image/jpeg",
                        "filename": "pic.jpg",
                    },
                }
            )
        )
        media = bus._inbound.get_nowait().media
        assert media.data == b"jpeg"
        assert media.filename == "pic.jpg"

    @pytest.mark.asyncio
    async def test_malformed_frame_ignored(self) -> None:
        bus = MessageBus()
        channel = WhatsAppChannel(bus, WhatsAppConfig())
        await channel._handle_frame("{oops")
        assert bus._inbound.empty()

    @pytest.mark.asyncio
    async def test_status_and_qr(self) -> None:
        channel = WhatsAppChannel(MessageBus(), WhatsAppConfig())
        channel._ws = FakeWS()

        await channel._handle_frame(json.dumps({"type": "qr", "qr": "2@abc"}))
        assert channel.current_qr == "2@abc"
        assert not channel.ready

        await channel._handle_frame(json.dumps({"type": "status", "status": "ready"}))
        assert channel.ready
        assert channel.current_qr is None

        await channel._handle_frame(json.dumps({"type": "status", "status": "disconnected"}))
        assert not channel.ready


class TestGetChat:
    @pytest.mark.asyncio
    async def test_direct_chat_resolved_locally(self) -> None:
        channel = connected_channel()
        conversation = await channel.get_chat(whatsapp_message(".ping"))
        assert conversation.id == "4915112345678@c.us"
        assert not conversation.is_group
        assert channel._ws.sent == []

    @pytest.mark.asyncio
    async def test_group_name_looked_up(self) -> None:
        channel = connected_channel()
        message = whatsapp_message(".ping", channel_id="120363@g.us", is_group=True)

        lookup = asyncio.create_task(channel.get_chat(message))
        await asyncio.sleep(0.01)
        request = json.loads(channel._ws.sent[0])
        assert request["type"] == "getChat"
        assert request["chatId"] == "120363@g.us"

        await channel._handle_frame(
            json.dumps(
                {
                    "type": "chat",
                    "requestId": request["requestId"],
                    "chat": {"name": "Family", "isGroup": True},
                }
            )
        )
        conversation = await lookup
        assert conversation.is_group
        assert conversation.name == "Family"
