"""Error taxonomy for the bridge and structured error output for the CLI."""

from __future__ import annotations

import errno
import json
import sys

import httpx
from rich.console import Console

console = Console(stderr=True)

# errno values treated as transient network failures
TRANSIENT_ERRNOS = frozenset({
    errno.ECONNREFUSED,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ETIMEDOUT,
    errno.EHOSTUNREACH,
    errno.ENETUNREACH,
    errno.EPIPE,
})


class BridgeError(Exception):
    """Base class for all bridge errors."""

    code = "BRIDGE_ERROR"


class ConfigError(BridgeError):
    """Required configuration is missing or invalid."""

    code = "CONFIG_ERROR"


class TransportError(BridgeError):
    """Network-level failure talking to the vendor API. Always recoverable."""

    code = "TRANSPORT_ERROR"


class VendorAuthError(BridgeError):
    """The vendor rejected or revoked the authorization grant."""

    code = "AUTH_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(BridgeError):
    """A vendor response was missing expected fields or was not JSON."""

    code = "MALFORMED_RESPONSE"


class StorageUnavailableError(BridgeError):
    """The token store is disconnected; the operation was refused."""

    code = "STORAGE_UNAVAILABLE"


def is_transient(error: BaseException) -> bool:
    """True for connection refused/reset/timeout/unreachable style failures."""
    if isinstance(error, (TransportError, httpx.TransportError)):
        return True
    if isinstance(error, OSError) and error.errno in TRANSIENT_ERRNOS:
        return True
    return False


# Actionable hints keyed by error substring
_ERROR_HINTS: list[tuple[str, str]] = [
    ("revoked", "Authorization was revoked - approve the new PIN in the ecobee portal"),
    ("pin", "Enter the PIN shown in the log under My Apps in the ecobee portal"),
    ("refresh token", "Run `ecobee-bridge auth reset` and pair again"),
    ("token store", "Check REDIS_HOST / REDIS_PORT and that Redis is running"),
    ("redis", "Check REDIS_HOST / REDIS_PORT and that Redis is running"),
    ("mqtt", "Check MQTT_HOST and broker credentials"),
    ("timeout", "Request timed out - check network connectivity"),
    ("connection", "Connection error - check network connectivity"),
    ("ecobee_client_id", "Set ECOBEE_CLIENT_ID to your ecobee developer API key"),
    ("ecobee_topic", "Set ECOBEE_TOPIC to the MQTT topic root for this thermostat"),
]


def _get_hint(error_message: str) -> str | None:
    """Match an error message to an actionable hint."""
    lower = error_message.lower()
    for pattern, hint in _ERROR_HINTS:
        if pattern.lower() in lower:
            return hint
    return None


def describe_error(error: BaseException) -> dict[str, object]:
    """Summarize an error as ``{"code", "message", "hint"?}``."""
    message = str(error) or type(error).__name__

    if isinstance(error, BridgeError):
        code = error.code
    elif is_transient(error):
        code = TransportError.code
    else:
        code = "RUNTIME_ERROR"

    result: dict[str, object] = {"code": code, "message": message}
    hint = _get_hint(message)
    if hint:
        result["hint"] = hint
    return result


def handle_error(error: Exception) -> None:
    """Handle an error with structured output to stdout and human-readable output to stderr.

    Outputs a JSON error object to stdout:
    {"error": true, "code": "AUTH_ERROR", "message": "...", "hint": "..."}
    """
    error_obj: dict[str, object] = {"error": True, **describe_error(error)}

    json.dump(error_obj, sys.stdout)
    sys.stdout.write("\n")

    console.print(f"[red]Error:[/red] {error_obj['message']}")
    if "hint" in error_obj:
        console.print(f"[dim]Hint: {error_obj['hint']}[/dim]")
