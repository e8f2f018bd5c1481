"""Shared fakes for bridge tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from chatbridge.bridge.store import CorrelationStore
from chatbridge.bridge.transfer import AttachmentTransfer
from chatbridge.bus.events import InboundMessage
from chatbridge.bus.queue import MessageBus
from chatbridge.channels.base import BaseChannel, ChannelUnavailableError
from chatbridge.config.schema import BridgeSettings


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeChannel(BaseChannel):
    """Channel that records everything it is asked to send."""

    def __init__(self, name: str, fail: bool = False) -> None:
        super().__init__(MessageBus())
        self._name = name
        self.fail = fail
        self.is_ready = True
        self.sent: list[dict] = []

    @property
    def name(self) -> str:
        return self._name

    @property
    def ready(self) -> bool:
        return self.is_ready

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send(self, channel_id: str, content: str) -> None:
        if self.fail:
            raise ChannelUnavailableError(f"{self._name} down")
        self.sent.append({"kind": "text", "to": channel_id, "content": content})

    async def send_file(
        self,
        channel_id: str,
        path: str | Path,
        caption: str = "",
        filename: str = "",
    ) -> None:
        if self.fail:
            raise ChannelUnavailableError(f"{self._name} down")
        p = Path(path)
        self.sent.append(
            {
                "kind": "file",
                "to": channel_id,
                "path": p,
                "caption": caption,
                "filename": filename or p.name,
                "existed": p.exists(),
                "data": p.read_bytes() if p.exists() else None,
            }
        )

    @property
    def texts(self) -> list[str]:
        return [item["content"] for item in self.sent if item["kind"] == "text"]


def whatsapp_message(content: str, **overrides) -> InboundMessage:
    fields = {
        "channel": "whatsapp",
        "channel_id": "4915112345678@c.us",
        "sender_id": "4915112345678@c.us",
        "sender_name": "Anna",
        "content": content,
    }
    fields.update(overrides)
    return InboundMessage(**fields)


def discord_message(content: str, **overrides) -> InboundMessage:
    fields = {
        "channel": "discord",
        "channel_id": "555",
        "sender_id": "42",
        "sender_name": "helper",
        "content": content,
    }
    fields.update(overrides)
    return InboundMessage(**fields)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> CorrelationStore:
    return CorrelationStore(clock=clock)


@pytest.fixture
def transfer(tmp_path: Path) -> AttachmentTransfer:
    return AttachmentTransfer(tmp_path / "scratch", linger=0)


@pytest.fixture
def settings() -> BridgeSettings:
    return BridgeSettings(send_delay=0, scratch_linger=0)


@pytest.fixture
def whatsapp() -> FakeChannel:
    return FakeChannel("whatsapp")


@pytest.fixture
def discord_channel() -> FakeChannel:
    return FakeChannel("discord")
