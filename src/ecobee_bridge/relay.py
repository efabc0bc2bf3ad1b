"""Relay of inbound MQTT mode commands to the ecobee API."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel

from ecobee_bridge.auth import AuthManager
from ecobee_bridge.client import EcobeeClient, status_code
from ecobee_bridge.config import Config
from ecobee_bridge.health import HealthReporter
from ecobee_bridge.models.auth import ResponseAction
from ecobee_bridge.utils.errors import BridgeError, StorageUnavailableError, is_transient

logger = logging.getLogger(__name__)

MAX_RETRIES = 1


class CommandKind(str, Enum):
    MODE = "mode"  # setHold climate ref: home, away, sleep
    HVAC = "hvac"  # hvacMode: auto, cool, heat, off


class PendingCommand(BaseModel):
    """One inbound command and how many times it has been re-issued."""
    kind: CommandKind
    value: str
    retries: int = 0


class CommandRelay:
    """Forwards ``<scope>/mode/set`` and ``<scope>/hvac/set`` to ecobee.

    A command that fails with an expired-token code is re-issued once after
    the refresh succeeds; the retry's own result is never retried.
    """

    def __init__(
        self,
        config: Config,
        auth: AuthManager,
        client: EcobeeClient,
        health: HealthReporter | None = None,
    ) -> None:
        scope = config.topic_root
        self._auth = auth
        self._client = client
        self._health = health
        self.topics: dict[str, CommandKind] = {
            f"{scope}/mode/set": CommandKind.MODE,
            f"{scope}/hvac/set": CommandKind.HVAC,
        }

    async def handle_message(self, topic: str, payload: bytes) -> None:
        """Bus callback for the subscribed command topics."""
        kind = self.topics.get(topic)
        if kind is None:
            logger.debug(f"Ignoring message on {topic}")
            return

        value = payload.decode("utf-8", errors="replace").strip()
        logger.info(f"{topic}: {value}")
        if not value:
            logger.warning(f"Empty command on {topic}, ignoring")
            return

        await self.submit(PendingCommand(kind=kind, value=value))

    async def submit(self, command: PendingCommand) -> ResponseAction | None:
        """Send a command. Returns the auth action taken, or None if skipped."""
        if self._auth.awaiting_pin:
            logger.info(f"Waiting for PIN confirmation, dropping {command.kind.value}={command.value}")
            return None

        try:
            if not await self._auth.store_ready():
                logger.warning(f"Token store unavailable, dropping {command.kind.value}={command.value}")
                self._unhealthy()
                return None
            access_token = await self._auth.access_token()
        except StorageUnavailableError as e:
            logger.warning(f"Dropping command: {e}")
            self._unhealthy()
            return None

        if access_token is None:
            logger.info(f"Not authenticated, dropping {command.kind.value}={command.value}")
            return None

        try:
            body = await self._send(command, access_token)
        except BridgeError as e:
            if is_transient(e):
                logger.warning(f"Command {command.kind.value}={command.value} failed: {e}")
                self._unhealthy()
            else:
                logger.error(f"Command {command.kind.value}={command.value} failed: {e}")
            return None

        code = status_code(body)
        logger.debug(f"Command {command.kind.value}={command.value} returned status {code}")

        if command.retries >= MAX_RETRIES:
            return await self._auth.handle_api_response_code(code)

        async def retry() -> None:
            await self.submit(command.model_copy(update={"retries": command.retries + 1}))

        action = await self._auth.handle_api_response_code(code, on_success=retry)
        if action is ResponseAction.REVOKED:
            logger.warning(f"Authorization revoked, dropped {command.kind.value}={command.value}")
        return action

    async def _send(self, command: PendingCommand, access_token: str) -> dict[str, Any]:
        if command.kind is CommandKind.HVAC:
            logger.info(f"setHVACMode: {command.value}")
            return await self._client.set_hvac_mode(access_token, command.value)
        logger.info(f"setMode: {command.value}")
        return await self._client.set_hold(access_token, command.value)

    def _unhealthy(self) -> None:
        if self._health is not None:
            self._health.unhealthy()
