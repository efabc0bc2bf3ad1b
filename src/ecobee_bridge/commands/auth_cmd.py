"""CLI commands for token management."""

from __future__ import annotations

import asyncio
from typing import Annotated

import typer
from rich.console import Console

from ecobee_bridge.auth import AuthManager
from ecobee_bridge.client import EcobeeClient
from ecobee_bridge.config import Config, get_config
from ecobee_bridge.token_store import TokenStore
from ecobee_bridge.utils.errors import BridgeError, StorageUnavailableError, handle_error
from ecobee_bridge.utils.output import OutputFormat, print_output

console = Console(stderr=True)
app = typer.Typer(name="auth", help="Inspect and manage stored ecobee tokens.")


def _build_auth(config: Config) -> AuthManager:
    store = TokenStore.from_settings(config.settings)
    return AuthManager(config, store, EcobeeClient(config))


@app.command()
def status(
    output: Annotated[OutputFormat, typer.Option("--output", "-o", help="Output format")] = OutputFormat.TABLE,
) -> None:
    """Show which tokens are stored."""
    try:
        auth = _build_auth(get_config())
    except BridgeError as e:
        handle_error(e)
        raise typer.Exit(1)

    async def _status():
        try:
            return await auth.get_status()
        finally:
            await auth.close()

    token_status = asyncio.run(_status())
    result = {
        "state": token_status.state.value,
        "has_access_token": token_status.has_access_token,
        "has_refresh_token": token_status.has_refresh_token,
        "store_connected": token_status.store_connected,
    }
    print_output(result, output, title="Token Status")
    if not token_status.store_connected:
        raise typer.Exit(1)


@app.command()
def refresh() -> None:
    """Rotate the token pair now using the stored refresh token."""
    try:
        auth = _build_auth(get_config())
    except BridgeError as e:
        handle_error(e)
        raise typer.Exit(1)

    async def _refresh() -> bool:
        try:
            if not await auth.store_ready():
                raise StorageUnavailableError("Token store is not connected")
            return await auth.refresh_tokens()
        finally:
            await auth.close()

    console.print("Refreshing tokens...", style="yellow")
    try:
        refreshed = asyncio.run(_refresh())
    except BridgeError as e:
        handle_error(e)
        raise typer.Exit(1)

    if not refreshed:
        console.print("[red]Token refresh failed.[/red] See the log above for details.")
        raise typer.Exit(1)
    console.print("[green]Tokens refreshed.[/green]")


@app.command()
def reset(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Delete both stored tokens so the next run pairs with a new PIN."""
    if not yes:
        typer.confirm("Delete the stored ecobee tokens?", abort=True)

    try:
        auth = _build_auth(get_config())
    except BridgeError as e:
        handle_error(e)
        raise typer.Exit(1)

    async def _reset() -> None:
        try:
            if not await auth.store_ready():
                raise StorageUnavailableError("Token store is not connected")
            await auth.reset()
        finally:
            await auth.close()

    try:
        asyncio.run(_reset())
    except BridgeError as e:
        handle_error(e)
        raise typer.Exit(1)
    console.print("[green]Tokens cleared.[/green] The next run will request a new PIN.")
