"""ecobee MQTT bridge — entry point.

Polls the ecobee cloud API, republishes thermostat and sensor state to
MQTT, and relays mode commands back.
"""

from __future__ import annotations

import logging

import typer

from ecobee_bridge.commands.auth_cmd import app as auth_app
from ecobee_bridge.commands.run_cmd import run

app = typer.Typer(
    name="ecobee-bridge",
    help="Bridge an ecobee thermostat to MQTT.",
    no_args_is_help=True,
)

app.command("run")(run)
app.add_typer(auth_app, name="auth")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """ecobee MQTT bridge — run the bridge or manage its tokens."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")


if __name__ == "__main__":
    app()
