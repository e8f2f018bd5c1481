"""Configuration schema for chatbridge."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_HOME = Path.home() / ".chatbridge"
CURRENT_SCHEMA_VERSION = 1


class BridgeSettings(BaseModel):
    """Correlation engine settings."""

    trigger: str = "."
    keep_trigger: bool = True  # forward ".ping" as-is, or strip to "ping"
    context_label: bool = False  # prefix "[Privat] Name: " / "[Group] Name: "
    window: float = 30.0  # seconds a bridged message accepts replies
    reply_mode: Literal["immediate", "batch"] = "batch"
    reply_prefix: str = ""
    include_author: bool = False
    send_delay: float = 1.0  # pause between flushed items
    scratch_linger: float = 5.0
    sweep_interval: float = 3600.0
    retention: float = 3600.0
    no_response_text: str = "⏰ *Keine Antworten in {seconds} Sekunden erhalten.*"
    attachment_error_text: str = "❌ Fehler beim Senden der Datei: {name}"

    @field_validator("trigger")
    @classmethod
    def _trigger_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("trigger must not be empty")
        return v.strip()

    @field_validator("window", "retention", "sweep_interval")
    @classmethod
    def _positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class WhatsAppConfig(BaseModel):
    """WhatsApp channel configuration (Node.js WhatsApp Web bridge)."""

    bridge_url: str = "ws://127.0.0.1:3001"
    session_name: str = "bridge-session"


class DiscordConfig(BaseModel):
    """Discord channel configuration."""

    token: str = ""
    channel_id: str = ""


class ChannelsConfig(BaseModel):
    """Channels configuration."""

    whatsapp: WhatsAppConfig = Field(default_factory=WhatsAppConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)


class HeartbeatConfig(BaseModel):
    """Liveness ping configuration."""

    interval: float = 300.0
    ping_url: str = ""


class GatewayConfig(BaseModel):
    """Process-level recovery configuration."""

    max_restarts: int = 5
    restart_delay: float = 5.0


class Config(BaseSettings):
    """Root configuration for chatbridge."""

    model_config = {"env_prefix": "CHATBRIDGE_", "env_nested_delimiter": "__"}

    schema_version: int = CURRENT_SCHEMA_VERSION
    bridge: BridgeSettings = Field(default_factory=BridgeSettings)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)
    heartbeat: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)

    @property
    def home_dir(self) -> Path:
        return DEFAULT_HOME

    @property
    def scratch_dir(self) -> Path:
        return self.home_dir / "scratch"
