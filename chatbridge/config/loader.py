"""Configuration file I/O."""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from .schema import CURRENT_SCHEMA_VERSION, Config, DEFAULT_HOME


CONFIG_FILE = DEFAULT_HOME / "config.json"


def _migrate_v0_to_v1(raw: dict[str, Any]) -> dict[str, Any]:
    """Move the flat legacy keys into the sectioned v1 layout."""
    raw["schema_version"] = 1
    bridge = raw.setdefault("bridge", {})
    discord = raw.setdefault("channels", {}).setdefault("discord", {})
    heartbeat = raw.setdefault("heartbeat", {})

    # Old files stored the window in minutes
    if "message_timeout_minutes" in raw:
        minutes = float(raw.pop("message_timeout_minutes"))
        bridge.setdefault("window", minutes * 60)
        logger.info(f"Migrated message_timeout_minutes={minutes:g} to bridge.window")

    renamed = {
        "trigger_character": (bridge, "trigger"),
        "discord_token": (discord, "token"),
        "discord_channel_id": (discord, "channel_id"),
        "ping_url": (heartbeat, "ping_url"),
    }
    for old_key, (section, new_key) in renamed.items():
        if old_key in raw:
            value = raw.pop(old_key)
            section.setdefault(new_key, str(value) if new_key == "channel_id" else value)
    return raw


# Registry: from_version -> migration function
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _migrate_v0_to_v1,
}


def _upgrade(raw: dict[str, Any], path: Path) -> dict[str, Any]:
    """Back up the file, apply pending migrations in order and write the result."""
    schema_version = raw.get("schema_version", 0)
    logger.info(f"Migrating config from schema v{schema_version} to v{CURRENT_SCHEMA_VERSION}")

    backup_path = path.with_suffix(".json.bak")
    shutil.copy2(path, backup_path)
    logger.info(f"Backed up config to {backup_path}")

    for version in range(schema_version, CURRENT_SCHEMA_VERSION):
        migrate = MIGRATIONS.get(version)
        if migrate is not None:
            raw = migrate(raw)
            logger.info(f"Migrated config schema v{version} → v{version + 1}")

    path.write_text(json.dumps(raw, indent=2) + "\n")
    logger.info(f"Wrote migrated config to {path}")
    return raw


def load_config(path: Path | None = None) -> Config:
    """Load configuration from file, falling back to defaults.

    Environment variables (``CHATBRIDGE_BRIDGE__WINDOW=60``) fill in whatever
    the file leaves unset.
    """
    path = path or CONFIG_FILE
    if not path.exists():
        return Config()

    try:
        raw = json.loads(path.read_text())
    except json.JSONDecodeError as e:
        logger.warning(f"Config file is corrupted: {e}, using defaults")
        return Config()
    logger.debug(f"Loaded config from {path}")

    schema_version = raw.get("schema_version", 0)
    if schema_version > CURRENT_SCHEMA_VERSION:
        logger.warning(
            f"Config schema v{schema_version} is newer than supported v{CURRENT_SCHEMA_VERSION}. "
            f"You may be running an older version of chatbridge."
        )
    elif schema_version < CURRENT_SCHEMA_VERSION:
        try:
            raw = _upgrade(raw, path)
        except Exception as e:
            logger.error(f"Config migration failed: {e}")
            logger.warning(f"Using defaults, original kept in {path.with_suffix('.json.bak')}")
            return Config()

    try:
        return Config(**raw)
    except Exception as e:
        logger.warning(f"Failed to load config: {e}, using defaults")
        return Config()


def save_config(config: Config, path: Path | None = None) -> None:
    """Save configuration to file."""
    path = path or CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="json")
    path.write_text(json.dumps(data, indent=2) + "\n")
    logger.info(f"Saved config to {path}")


def ensure_dirs(config: Config) -> None:
    """Create the home and scratch directories."""
    for d in (config.home_dir, config.scratch_dir):
        d.mkdir(parents=True, exist_ok=True)
