"""chatbridge CLI entry point."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

app = typer.Typer(
    name="chatbridge",
    no_args_is_help=True,
)


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        from . import __version__

        console.print(f"chatbridge v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """Relay triggered WhatsApp messages to Discord and route the replies back."""
    pass


console = Console()

if TYPE_CHECKING:
    from .config.schema import Config


async def _run_bridge(config: Config) -> None:
    """Run the bridge: both channels, the correlation engine and the heartbeat."""
    from .bus.queue import MessageBus
    from .bridge.engine import BridgeEngine
    from .bridge.transfer import AttachmentTransfer
    from .channels.manager import ChannelManager
    from .heartbeat.service import HeartbeatService
    from .config.loader import ensure_dirs

    ensure_dirs(config)

    # Initialize components
    bus = MessageBus()
    channel_manager = ChannelManager(config, bus)
    channel_manager.setup_channels()

    transfer = AttachmentTransfer(
        config.scratch_dir, linger=config.bridge.scratch_linger
    )
    heartbeat: HeartbeatService | None = None
    engine = BridgeEngine(
        settings=config.bridge,
        whatsapp=channel_manager.get_channel("whatsapp"),
        discord=channel_manager.get_channel("discord"),
        discord_channel_id=config.channels.discord.channel_id,
        transfer=transfer,
        last_ping_fn=lambda: heartbeat.last_ping_at,
    )
    engine.attach(bus)

    heartbeat = HeartbeatService(
        interval=config.heartbeat.interval,
        ping_url=config.heartbeat.ping_url,
        status_fn=engine.snapshot,
    )

    # Uncaught task errors restart channels instead of ending the process
    asyncio.get_running_loop().set_exception_handler(
        channel_manager.handle_loop_exception
    )

    console.print(
        Panel.fit(
            "[bold blue]chatbridge[/bold blue] is running\n"
            f"Active channels: {', '.join(channel_manager.active_channels) or 'none'}\n"
            f"Trigger: {config.bridge.trigger!r} "
            f"({'kept' if config.bridge.keep_trigger else 'stripped'})\n"
            f"Reply window: {config.bridge.window:g}s ({config.bridge.reply_mode})\n"
            f"Discord channel: {config.channels.discord.channel_id}\n"
            "Press Ctrl+C to stop",
            title="Bridge",
            border_style="blue",
        )
    )

    # Start all services
    try:
        await engine.start()
        await asyncio.gather(
            bus.start(),
            channel_manager.start_all(),
            heartbeat.start(),
        )
    except (KeyboardInterrupt, asyncio.CancelledError):
        pass
    finally:
        await heartbeat.stop()
        await bus.stop()
        await bus.drain()
        await channel_manager.stop_all()
        await engine.stop()
        console.print("[yellow]Bridge stopped.[/yellow]")


@app.command()
def run(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.chatbridge/config.json)."
    ),
):
    """Start the WhatsApp <-> Discord bridge."""
    from .config.loader import load_config

    config = load_config(config_path)

    discord = config.channels.discord
    if not discord.token or not discord.channel_id:
        console.print(
            "[red]Discord token and channel id are required. "
            "Run 'chatbridge init' and edit the config file.[/red]"
        )
        raise typer.Exit(1)

    try:
        asyncio.run(_run_bridge(config))
    except KeyboardInterrupt:
        console.print("\n[yellow]Bridge stopped.[/yellow]")


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Config file (default: ~/.chatbridge/config.json)."
    ),
):
    """Show chatbridge configuration."""
    from . import __version__
    from .config.loader import load_config, CONFIG_FILE

    config_file = config_path or CONFIG_FILE
    config = load_config(config_file)
    bridge = config.bridge
    config_exists = config_file.exists()

    console.print(
        Panel.fit(
            f"[bold]Version:[/bold] {__version__}\n"
            f"[bold]Config file:[/bold] {config_file} {'[green](exists)[/green]' if config_exists else '[red](missing)[/red]'}\n"
            f"[bold]Scratch dir:[/bold] {config.scratch_dir}\n"
            f"\n[bold]Trigger:[/bold] {bridge.trigger!r} ({'kept' if bridge.keep_trigger else 'stripped'})\n"
            f"[bold]Context label:[/bold] {'yes' if bridge.context_label else 'no'}\n"
            f"[bold]Reply window:[/bold] {bridge.window:g}s\n"
            f"[bold]Reply mode:[/bold] {bridge.reply_mode}\n"
            f"[bold]Retention:[/bold] {bridge.retention:g}s (sweep every {bridge.sweep_interval:g}s)\n"
            f"\n[bold]WhatsApp bridge:[/bold] {config.channels.whatsapp.bridge_url}\n"
            f"[bold]Discord token:[/bold] {'set' if config.channels.discord.token else '[red]missing[/red]'}\n"
            f"[bold]Discord channel:[/bold] {config.channels.discord.channel_id or '[red]missing[/red]'}\n"
            f"[bold]Self-ping:[/bold] {config.heartbeat.ping_url or 'disabled'}",
            title="chatbridge status",
            border_style="blue",
        )
    )


@app.command()
def init():
    """Write a default configuration file."""
    from .config.schema import Config
    from .config.loader import save_config, ensure_dirs, CONFIG_FILE

    if CONFIG_FILE.exists():
        if not Confirm.ask("Configuration already exists. Overwrite?", default=False):
            console.print("[yellow]Init cancelled.[/yellow]")
            raise typer.Exit()

    config = Config()
    ensure_dirs(config)
    save_config(config)
    console.print(f"[green]Wrote default configuration to {CONFIG_FILE}[/green]")
    console.print("Set channels.discord.token and channels.discord.channel_id, then run 'chatbridge run'.")


if __name__ == "__main__":
    app()
