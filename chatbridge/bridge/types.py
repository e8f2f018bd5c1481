"""Bridge record data types."""

from __future__ import annotations

import asyncio
import random
import string
import time
from dataclasses import dataclass, field
from pathlib import Path


_ID_ALPHABET = string.digits + string.ascii_lowercase

DIRECT_LABEL = "Privat"


def new_bridge_id(now: float | None = None) -> str:
    """Time prefix plus random suffix, e.g. ``1718031230123_k3j9x0a1b``."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(random.choices(_ID_ALPHABET, k=9))
    return f"{millis}_{suffix}"


@dataclass
class AttachmentRef:
    """A downloaded attachment waiting in a scratch file."""

    name: str
    path: Path
    content_type: str = ""


@dataclass
class ReplyEntry:
    """One Discord reply collected in batch mode."""

    content: str
    author: str
    received_at: float = field(default_factory=time.time)
    attachments: list[AttachmentRef] = field(default_factory=list)
    failed_attachments: list[str] = field(default_factory=list)
    # Completes once every attachment of the reply has been downloaded
    downloads: asyncio.Task | None = field(default=None, repr=False)

    async def wait_ready(self) -> None:
        if self.downloads is not None:
            await self.downloads


@dataclass
class BridgeRecord:
    """Correlation state for one forwarded WhatsApp message."""

    id: str
    conversation_id: str
    sender_name: str
    created_at: float
    window: float
    is_group: bool = False
    group_name: str = ""
    replies: list[ReplyEntry] = field(default_factory=list)

    @property
    def label(self) -> str:
        if self.is_group:
            return self.group_name or self.conversation_id
        return DIRECT_LABEL

    def age(self, now: float) -> float:
        return now - self.created_at

    def is_active(self, now: float) -> bool:
        """Replies are attributed only while this holds."""
        return self.age(now) <= self.window
