"""HTTP client for the ecobee API.

Thin async request functions: PIN pairing, token exchange/refresh,
thermostat polling and mode commands. No token state lives here; every
call takes the bearer credential it should use.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ecobee_bridge.config import Config
from ecobee_bridge.models.auth import PinResponse, TokenResponse
from ecobee_bridge.utils.errors import MalformedResponseError, TransportError, VendorAuthError

logger = logging.getLogger(__name__)

SCOPE = "smartWrite"

REGISTERED_SELECTION = {"selectionType": "registered", "selectionMatch": ""}

THERMOSTAT_SELECTION = {
    "selection": {
        **REGISTERED_SELECTION,
        "includeAlerts": False,
        "includeEvents": True,
        "includeSettings": False,
        "includeRuntime": True,
        "includeSensors": True,
        "includeExtendedRuntime": True,
        "includeEquipmentStatus": True,
    }
}


def status_code(body: dict[str, Any] | None) -> int | None:
    """Extract the inline ``status.code`` from a response body."""
    if not isinstance(body, dict):
        return None
    status = body.get("status")
    if not isinstance(status, dict):
        return None
    code = status.get("code")
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


class EcobeeClient:
    """Stateless async HTTP calls against the ecobee API."""

    def __init__(self, config: Config, http: httpx.AsyncClient | None = None) -> None:
        self._client_id = config.settings.client_id
        self._base = config.settings.api_base.rstrip("/")
        self._http = http or httpx.AsyncClient(timeout=config.schedule.http_timeout)

    # ── authorization ─────────────────────────────────────────────────

    async def request_pin(self) -> PinResponse:
        """Start PIN pairing. Returns the PIN to display and the interim code."""
        body = await self._request(
            "GET",
            "/authorize",
            params={"response_type": "ecobeePin", "client_id": self._client_id, "scope": SCOPE},
        )
        try:
            return PinResponse(**body)
        except ValidationError as e:
            raise VendorAuthError(f"PIN request rejected: {_error_detail(body)}") from e

    async def exchange_pin(self, code: str) -> TokenResponse:
        """Exchange an authorized interim code for a token pair."""
        body = await self._request(
            "POST",
            "/token",
            params={"grant_type": "ecobeePin", "code": code, "client_id": self._client_id},
            token=code,
        )
        return self._token_response(body, "PIN exchange")

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """Mint a new token pair from a refresh token."""
        body = await self._request(
            "POST",
            "/token",
            params={"grant_type": "refresh_token", "code": refresh_token, "client_id": self._client_id},
            token=refresh_token,
        )
        return self._token_response(body, "Token refresh")

    # ── thermostat ────────────────────────────────────────────────────

    async def fetch_thermostats(self, access_token: str) -> dict[str, Any]:
        """Fetch runtime, events and sensors for all registered thermostats."""
        return await self._request(
            "GET",
            "/1/thermostat",
            params={"format": "json", "body": json.dumps(THERMOSTAT_SELECTION, separators=(",", ":"))},
            token=access_token,
        )

    async def set_hvac_mode(self, access_token: str, mode: str) -> dict[str, Any]:
        """Set the HVAC mode (auto, cool, heat, off)."""
        payload = {
            "selection": REGISTERED_SELECTION,
            "thermostat": {"settings": {"hvacMode": mode}},
        }
        return await self._request(
            "POST", "/1/thermostat", params={"format": "json"}, body=payload, token=access_token,
        )

    async def set_hold(self, access_token: str, climate_ref: str) -> dict[str, Any]:
        """Place an indefinite hold on a comfort setting (home, away, sleep)."""
        payload = {
            "selection": REGISTERED_SELECTION,
            "functions": [
                {"type": "setHold", "params": {"holdType": "indefinite", "holdClimateRef": climate_ref}},
            ],
        }
        return await self._request(
            "POST", "/1/thermostat", params={"format": "json"}, body=payload, token=access_token,
        )

    # ── plumbing ──────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the JSON body.

        The HTTP status is not checked: ecobee reports API failures as an
        inline ``status.code`` (often alongside HTTP 500).

        Raises:
            TransportError: On connection, timeout or other network failures.
            MalformedResponseError: If the body is not a JSON object.
        """
        headers = {"Content-Type": "application/json;charset=UTF-8"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        logger.debug(f"{method} {path}")
        try:
            response = await self._http.request(
                method,
                self._base + path,
                params=params,
                json=body,
                headers=headers,
            )
        except httpx.TransportError as e:
            raise TransportError(f"{method} {path} failed: {e!r}") from e
        except OSError as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponseError(
                f"{method} {path} returned non-JSON body (HTTP {response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise MalformedResponseError(f"{method} {path} returned {type(data).__name__}, expected object")
        return data

    @staticmethod
    def _token_response(body: dict[str, Any], action: str) -> TokenResponse:
        if "error" in body:
            raise VendorAuthError(f"{action} rejected: {_error_detail(body)}", status_code(body))
        try:
            return TokenResponse(**body)
        except ValidationError as e:
            raise VendorAuthError(f"{action} returned no tokens: {_error_detail(body)}", status_code(body)) from e

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._http.aclose()


def _error_detail(body: dict[str, Any]) -> str:
    detail = body.get("error_description") or body.get("error")
    if not detail:
        status = body.get("status")
        if isinstance(status, dict):
            detail = status.get("message")
    return str(detail or body)
