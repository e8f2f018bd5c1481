"""Message bus event types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class InboundMedia:
    """Media payload delivered inline with a WhatsApp message."""

    data: bytes
    filename: str = ""
    mimetype: str = ""


@dataclass
class RemoteAttachment:
    """An attachment that still has to be downloaded (Discord CDN)."""

    url: str
    name: str
    content_type: str = ""


@dataclass
class InboundMessage:
    """A message received from a chat channel."""

    channel: str  # "whatsapp" or "discord"
    channel_id: str  # conversation id: WhatsApp chat id, Discord channel id
    sender_id: str  # raw sender address, differs from channel_id in groups
    sender_name: str
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_group: bool = False
    group_name: str = ""
    is_broadcast: bool = False
    media: InboundMedia | None = None
    attachments: list[RemoteAttachment] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def has_media(self) -> bool:
        return self.media is not None


@dataclass
class Conversation:
    """A resolved chat: the true conversation id plus its kind."""

    id: str
    is_group: bool = False
    name: str = ""

    @classmethod
    def from_message(cls, message: InboundMessage) -> Conversation:
        return cls(
            id=message.channel_id,
            is_group=message.is_group,
            name=message.group_name,
        )
