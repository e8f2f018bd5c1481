"""Abstract base class for chat channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..bus.events import Conversation, InboundMessage
    from ..bus.queue import MessageBus


class ChannelUnavailableError(RuntimeError):
    """The channel cannot deliver right now (not connected, target missing)."""


class BaseChannel(ABC):
    """Base class for all chat channels.

    ``send`` and ``send_file`` raise on failure; the bridge decides whether a
    failed delivery rolls back a record or becomes a notice.
    """

    def __init__(self, bus: "MessageBus") -> None:
        self._bus = bus

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel name (e.g., 'whatsapp', 'discord')."""
        ...

    @property
    @abstractmethod
    def ready(self) -> bool:
        """True once the channel is connected and able to send."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the channel (connect, begin listening)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the channel (disconnect, clean up)."""
        ...

    @abstractmethod
    async def send(self, channel_id: str, content: str) -> None:
        """Send a text message to a specific target on this channel."""
        ...

    @abstractmethod
    async def send_file(
        self,
        channel_id: str,
        path: str | Path,
        caption: str = "",
        filename: str = "",
    ) -> None:
        """Send a file, optionally with a text caption."""
        ...

    async def get_chat(self, message: "InboundMessage") -> "Conversation":
        """Resolve the conversation a message belongs to."""
        from ..bus.events import Conversation

        return Conversation.from_message(message)
