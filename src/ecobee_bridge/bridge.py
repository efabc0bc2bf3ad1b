"""Process wiring: builds the components and runs the timers and bus listener."""

from __future__ import annotations

import asyncio
import logging

from ecobee_bridge.auth import AuthManager
from ecobee_bridge.bus import MqttBus
from ecobee_bridge.client import EcobeeClient
from ecobee_bridge.config import Config
from ecobee_bridge.health import HealthReporter
from ecobee_bridge.poller import PollLoop
from ecobee_bridge.relay import CommandRelay
from ecobee_bridge.token_store import TokenStore
from ecobee_bridge.utils.timers import every

logger = logging.getLogger(__name__)


class Bridge:
    """The ecobee <-> MQTT bridge."""

    def __init__(
        self,
        config: Config,
        *,
        store: TokenStore | None = None,
        client: EcobeeClient | None = None,
        bus: MqttBus | None = None,
        health: HealthReporter | None = None,
    ) -> None:
        self._config = config
        self.health = health or HealthReporter(
            url=config.settings.health_check_url,
            interval=config.settings.health_check_time,
        )
        self.store = store or TokenStore.from_settings(config.settings)
        self.client = client or EcobeeClient(config)
        self.bus = bus or MqttBus(config, self.health)
        self.auth = AuthManager(config, self.store, self.client, self.bus.publish, self.health)
        self.poller = PollLoop(config, self.auth, self.client, self.bus.publish, self.health)
        self.relay = CommandRelay(config, self.auth, self.client, self.health)

        for topic in self.relay.topics:
            self.bus.subscribe(topic, self.relay.handle_message)

    async def run(self) -> None:
        """Run until cancelled."""
        schedule = self._config.schedule
        if not await self.store.connect():
            logger.warning("Token store not reachable yet, will retry on each poll")

        logger.info(f"Bridging ecobee to {self._config.topic_root}/#")
        try:
            await asyncio.gather(
                self.bus.run(),
                self.health.run(),
                every(schedule.poll_interval, self.poller.tick,
                      start_in=schedule.poll_start_delay, name="poll"),
                every(schedule.refresh_interval, self.poller.refresh_tick,
                      start_in=schedule.refresh_start_delay, name="refresh"),
            )
        finally:
            await self.close()

    async def close(self) -> None:
        """Close the HTTP client and token store connection."""
        await self.auth.close()
