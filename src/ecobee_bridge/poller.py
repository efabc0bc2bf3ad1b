"""Periodic thermostat polling and republishing."""

from __future__ import annotations

import logging
from typing import Any

from ecobee_bridge.auth import AuthManager, Publisher
from ecobee_bridge.client import EcobeeClient, status_code
from ecobee_bridge.config import Config
from ecobee_bridge.health import HealthReporter
from ecobee_bridge.models.auth import ResponseAction
from ecobee_bridge.models.thermostat import ThermostatSnapshot, parse_thermostat
from ecobee_bridge.utils.errors import StorageUnavailableError, describe_error, is_transient

logger = logging.getLogger(__name__)


class PollLoop:
    """One :meth:`tick` per poll interval: fetch, normalize, publish.

    A tick never raises. Every failure is logged, reflected in health, and
    the next tick starts from scratch.
    """

    def __init__(
        self,
        config: Config,
        auth: AuthManager,
        client: EcobeeClient,
        publish: Publisher,
        health: HealthReporter,
    ) -> None:
        self._scope = config.topic_root
        self._auth = auth
        self._client = client
        self._publish = publish
        self._health = health

    async def tick(self) -> ThermostatSnapshot | None:
        """Run one poll cycle. Returns the published snapshot, if any."""
        try:
            return await self._poll()
        except Exception as e:
            if is_transient(e):
                logger.warning(f"Poll failed, will retry next tick: {e}")
            else:
                logger.exception(f"Caught error during poll: {describe_error(e)['message']}")
            self._health.unhealthy()
            return None

    async def _poll(self) -> ThermostatSnapshot | None:
        if self._auth.awaiting_pin:
            logger.debug("Waiting for PIN confirmation, skipping poll")
            return None

        if not await self._auth.store_ready():
            logger.warning("Token store unavailable, skipping poll")
            self._health.unhealthy()
            return None

        try:
            access_token = await self._auth.access_token()
            if access_token is None:
                state = await self._auth.ensure_authenticated()
                logger.info(f"No access token, auth state is now {state.value}")
                return None
        except StorageUnavailableError as e:
            logger.warning(f"Skipping poll: {e}")
            self._health.unhealthy()
            return None

        logger.debug("polling")
        body = await self._client.fetch_thermostats(access_token)

        code = status_code(body)
        action = await self._auth.handle_api_response_code(code)
        if action is ResponseAction.IGNORED:
            message = (body.get("status") or {}).get("message", "")
            logger.warning(f"Thermostat query failed with status {code}: {message}")
            self._health.unhealthy()
            return None
        if action is not ResponseAction.OK:
            return None

        thermostats = body.get("thermostatList")
        if not thermostats:
            logger.debug("No thermostats in response")
            return None

        snapshot = parse_thermostat(thermostats[0])
        self._health.healthy()
        await self.publish_snapshot(snapshot)
        return snapshot

    async def publish_snapshot(self, snapshot: ThermostatSnapshot) -> None:
        """Publish home-level values and every sensor capability."""
        logger.debug(f"thermostat: {snapshot.name}  mode: {snapshot.mode}  fan: {snapshot.fan_mode}")

        for name, value in self._home_values(snapshot).items():
            await self._publish(f"{self._scope}/home/{name}", value)

        for sensor in snapshot.sensors:
            for capability, value in sensor.readings():
                logger.debug(f"   name: {sensor.name}  type: {capability}  value: {value}")
                await self._publish(f"{self._scope}/{capability}/{sensor.name}", value)

    @staticmethod
    def _home_values(snapshot: ThermostatSnapshot) -> dict[str, Any]:
        values: dict[str, Any] = {
            "connected": 1 if snapshot.connected else 0,
            "mode": snapshot.mode,
        }
        if snapshot.target_temperature is not None:
            values["target_temperature"] = snapshot.target_temperature
        if snapshot.desired_heat is not None:
            values["desiredHeat"] = snapshot.desired_heat
        if snapshot.desired_cool is not None:
            values["desiredCool"] = snapshot.desired_cool
        if snapshot.fan_mode:
            values["fan"] = snapshot.fan_mode
        if snapshot.actual_temperature is not None:
            values["temperature"] = snapshot.actual_temperature
        if snapshot.actual_humidity is not None:
            values["humidity"] = snapshot.actual_humidity
        return values

    async def refresh_tick(self) -> None:
        """Proactive keep-alive: refresh whenever a refresh token exists."""
        try:
            if not await self._auth.has_refresh_token():
                return
            logger.info("Refreshing tokens")
            await self._auth.refresh_tokens()
        except Exception as e:
            logger.warning(f"Periodic refresh failed: {describe_error(e)['message']}")
            self._health.unhealthy()
