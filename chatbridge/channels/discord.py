"""Discord channel using discord.py."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import discord
from loguru import logger

from ..bus.events import InboundMessage, RemoteAttachment
from ..bus.queue import MessageBus
from ..config.schema import DiscordConfig
from .base import BaseChannel, ChannelUnavailableError


LOGIN_RETRY_DELAY = 10.0
_MAX_MESSAGE_LEN = 2000


def _chunks(text: str) -> list[str]:
    return [text[i : i + _MAX_MESSAGE_LEN] for i in range(0, len(text), _MAX_MESSAGE_LEN)]


class DiscordChannel(BaseChannel):
    """Discord bot bound to the single bridge channel."""

    def __init__(self, bus: MessageBus, config: DiscordConfig) -> None:
        super().__init__(bus)
        self._config = config
        self._running = False
        self._ready = False
        self.client = self._build_client()

    @property
    def name(self) -> str:
        return "discord"

    @property
    def ready(self) -> bool:
        return self._ready and not self.client.is_closed()

    @property
    def user_tag(self) -> str | None:
        return str(self.client.user) if self.ready and self.client.user else None

    def _build_client(self) -> discord.Client:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.guild_messages = True
        intents.message_content = True
        intents.guild_reactions = True
        client = discord.Client(intents=intents)
        self._register_events(client)
        return client

    def _register_events(self, client: discord.Client) -> None:
        """Register discord.py event handlers."""

        @client.event
        async def on_ready():
            self._ready = True
            logger.info(f"[Discord] Logged in as {client.user} (ID: {client.user.id})")

        @client.event
        async def on_message(message: discord.Message):
            await self._on_message(message)

        @client.event
        async def on_disconnect():
            logger.warning("[Discord] Disconnected from gateway.")

        @client.event
        async def on_resumed():
            logger.info("[Discord] Session resumed.")

        @client.event
        async def on_error(event: str, *args, **kwargs):
            logger.exception(f"[Discord] Unhandled error in event '{event}'")

    async def _on_message(self, message: Any) -> None:
        """Forward messages posted in the bridge channel to the bus."""
        if str(message.channel.id) != str(self._config.channel_id):
            return

        # Our own forwarded messages land in the same channel
        if self.client.user is not None and message.author.id == self.client.user.id:
            return

        attachments = [
            RemoteAttachment(
                url=a.url,
                name=a.filename,
                content_type=a.content_type or "",
            )
            for a in message.attachments
        ]
        if not message.content and not attachments:
            return

        await self._bus.publish_inbound(
            InboundMessage(
                channel="discord",
                channel_id=str(message.channel.id),
                sender_id=str(message.author.id),
                sender_name=message.author.name,
                content=message.content or "",
                attachments=attachments,
                metadata={
                    "message_id": str(message.id),
                    "author_display": message.author.display_name,
                    "bot": bool(message.author.bot),
                },
            )
        )

    async def start(self) -> None:
        """Log in and run the client, retrying failed logins."""
        if not self._config.token:
            logger.warning("[Discord] No token configured, skipping Discord channel.")
            return

        self._running = True
        while self._running:
            logger.info("[Discord] Starting...")
            try:
                await self.client.start(self._config.token)
            except asyncio.CancelledError:
                break
            except discord.LoginFailure:
                logger.error("[Discord] Login failed, check your bot token.")
                self._running = False
                break
            except discord.PrivilegedIntentsRequired:
                logger.error(
                    "[Discord] Message content intent is not enabled in the Developer Portal."
                )
                self._running = False
                break
            except Exception as e:
                logger.exception(f"[Discord] Unexpected error: {e}")
            finally:
                self._ready = False

            if self._running:
                logger.info(f"[Discord] Retrying login in {LOGIN_RETRY_DELAY:.0f} seconds...")
                await asyncio.sleep(LOGIN_RETRY_DELAY)
                self.client = self._build_client()

    async def stop(self) -> None:
        """Stop the Discord bot gracefully."""
        self._running = False
        self._ready = False
        if not self.client.is_closed():
            await self.client.close()
            logger.info("[Discord] Client closed.")

    async def _resolve_target(self, channel_id: str) -> Any:
        if not self.ready:
            raise ChannelUnavailableError("Discord client not ready")
        try:
            channel = self.client.get_channel(int(channel_id))
            if channel is None:
                channel = await self.client.fetch_channel(int(channel_id))
        except (ValueError, discord.NotFound, discord.Forbidden) as e:
            raise ChannelUnavailableError(f"Discord channel {channel_id} not found: {e}") from e
        if channel is None:
            raise ChannelUnavailableError(f"Discord channel {channel_id} not found")
        return channel

    async def send(self, channel_id: str, content: str) -> None:
        """Send text, split into 2000-character chunks."""
        if not content.strip():
            logger.warning("[Discord] Attempted to send empty message, skipping.")
            return
        target = await self._resolve_target(channel_id)
        for chunk in _chunks(content):
            await target.send(chunk)
        logger.info(f"[Discord] Message sent to #{getattr(target, 'name', channel_id)}")

    async def send_file(
        self,
        channel_id: str,
        path: str | Path,
        caption: str = "",
        filename: str = "",
    ) -> None:
        """Send a file with the first caption chunk; the rest follows as text."""
        target = await self._resolve_target(channel_id)
        p = Path(path)
        chunks = _chunks(caption) if caption.strip() else []
        await target.send(
            content=chunks[0] if chunks else None,
            files=[discord.File(p, filename=filename or p.name)],
        )
        for chunk in chunks[1:]:
            await target.send(chunk)
        logger.info(f"[Discord] File '{filename or p.name}' sent to #{getattr(target, 'name', channel_id)}")
