"""CLI command that runs the bridge."""

from __future__ import annotations

import asyncio
import logging

import typer
from rich.console import Console

from ecobee_bridge.bridge import Bridge
from ecobee_bridge.config import get_config
from ecobee_bridge.utils.errors import ConfigError, handle_error

console = Console(stderr=True)
logger = logging.getLogger(__name__)


def run() -> None:
    """Poll ecobee and bridge it to MQTT until interrupted."""
    try:
        config = get_config()
    except ConfigError as e:
        handle_error(e)
        raise typer.Exit(1)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, config.settings.log_level, logging.INFO),
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )

    console.print(f"Starting ecobee bridge on [bold]{config.topic_root}[/bold]", style="yellow")
    try:
        asyncio.run(Bridge(config).run())
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
