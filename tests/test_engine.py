"""End-to-end tests for the bridge engine with fake channels."""

from __future__ import annotations

import asyncio

import pytest

from chatbridge.bridge.engine import BridgeEngine
from chatbridge.bus.events import RemoteAttachment
from chatbridge.bus.queue import MessageBus
from chatbridge.channels.base import ChannelUnavailableError
from chatbridge.config.schema import BridgeSettings

from conftest import FakeChannel, discord_message, whatsapp_message


def make_engine(settings, whatsapp, discord_channel, transfer, clock) -> BridgeEngine:
    return BridgeEngine(
        settings=settings,
        whatsapp=whatsapp,
        discord=discord_channel,
        discord_channel_id="555",
        transfer=transfer,
        clock=clock,
    )


class TestBridgeEngine:
    @pytest.mark.asyncio
    async def test_batch_round_trip(self, whatsapp, discord_channel, transfer, clock) -> None:
        settings = BridgeSettings(window=0.1, send_delay=0)
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)

        await engine.handle(whatsapp_message(".ping"))
        await engine.handle(discord_message("pong"))
        await engine.handle(discord_message("pong again"))
        assert whatsapp.sent == []

        await asyncio.sleep(0.3)
        assert discord_channel.texts == [".ping"]
        assert whatsapp.texts == ["pong", "pong again"]
        assert len(engine.store) == 0

    @pytest.mark.asyncio
    async def test_batch_no_response_notice(
        self, whatsapp, discord_channel, transfer, clock
    ) -> None:
        settings = BridgeSettings(window=0.05, send_delay=0)
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)

        await engine.handle(whatsapp_message(".ping"))
        await asyncio.sleep(0.2)

        assert whatsapp.texts == ["⏰ *Keine Antworten in 0.05 Sekunden erhalten.*"]

    @pytest.mark.asyncio
    async def test_immediate_mode_expire_drops_record(
        self, whatsapp, discord_channel, transfer, clock
    ) -> None:
        settings = BridgeSettings(reply_mode="immediate", send_delay=0)
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)

        await engine.handle(whatsapp_message(".ping"))
        await engine.handle(discord_message("pong"))
        assert whatsapp.texts == ["pong"]

        [record_id] = engine.scheduler.pending
        await engine.expire(record_id)
        assert len(engine.store) == 0
        # no notice in immediate mode
        assert whatsapp.texts == ["pong"]
        await engine.stop()

    @pytest.mark.asyncio
    async def test_swept_record_releases_reply_state(
        self, whatsapp, discord_channel, transfer, clock
    ) -> None:
        settings = BridgeSettings(reply_mode="immediate", send_delay=0)
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)

        record = await engine.inbound.handle(whatsapp_message(".ping"))
        await engine.handle(discord_message("pong"))
        assert record.id in engine.replies._order_locks

        # expiry timer lost: only the sweeper sees the record
        engine.scheduler.cancel(record.id)
        clock.advance(settings.retention + 1)
        assert await engine.sweeper.sweep_once() == [record.id]
        assert record.id not in engine.replies._order_locks
        await engine.stop()

    @pytest.mark.asyncio
    async def test_unknown_channel_ignored(
        self, settings, whatsapp, discord_channel, transfer, clock
    ) -> None:
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)
        await engine.handle(whatsapp_message(".ping", channel="telegram"))
        assert discord_channel.sent == []

    @pytest.mark.asyncio
    async def test_attach_routes_bus_events(
        self, settings, whatsapp, discord_channel, transfer, clock
    ) -> None:
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)
        bus = MessageBus()
        engine.attach(bus)

        bus.dispatch(whatsapp_message(".ping"))
        await bus.drain()
        assert discord_channel.texts == [".ping"]
        await engine.stop()

    @pytest.mark.asyncio
    async def test_snapshot(self, settings, whatsapp, discord_channel, transfer, clock) -> None:
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)
        discord_channel.is_ready = False
        await engine.handle(whatsapp_message(".ping"))
        clock.advance(12)

        status = engine.snapshot()
        assert status.whatsapp_ready
        assert not status.discord_ready
        assert status.active_message_count == 1
        assert status.uptime == 12
        assert status.to_dict()["active_message_count"] == 1
        await engine.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(self, settings, whatsapp, discord_channel, transfer, clock) -> None:
        engine = make_engine(settings, whatsapp, discord_channel, transfer, clock)
        await engine.start()
        await engine.stop()


class StallingDiscord(FakeChannel):
    """Discord fake whose send waits for a signal and then fails."""

    def __init__(self) -> None:
        super().__init__("discord")
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def send(self, channel_id: str, content: str) -> None:
        self.entered.set()
        await self.release.wait()
        raise ChannelUnavailableError("discord down")


class TestFailedForward:
    """A reply arriving while the forward is still in flight."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", ["immediate", "batch"])
    async def test_reply_during_failed_forward_is_not_relayed(
        self, mode, whatsapp, transfer, clock
    ) -> None:
        async def fetch_bytes(url: str) -> bytes:
            return b"png"

        transfer.fetch_bytes = fetch_bytes
        discord = StallingDiscord()
        settings = BridgeSettings(reply_mode=mode, send_delay=0)
        engine = make_engine(settings, whatsapp, discord, transfer, clock)

        forward = asyncio.create_task(engine.handle(whatsapp_message(".ping")))
        await discord.entered.wait()

        reply = discord_message(
            "pong", attachments=[RemoteAttachment(url="https://cdn.example/a.png", name="a.png")]
        )
        assert await engine.replies.handle(reply) is None

        discord.release.set()
        await forward
        await asyncio.sleep(0.01)

        assert len(engine.store) == 0
        assert whatsapp.sent == []
        assert list(transfer.scratch_dir.iterdir()) == []
        assert engine.scheduler.pending == []
