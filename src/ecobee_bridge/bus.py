"""MQTT bus adapter.

Publishes retained, last-value-wins messages and dispatches inbound
messages on subscribed topics to async handlers.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from collections.abc import Awaitable, Callable

import aiomqtt

from ecobee_bridge.config import Config
from ecobee_bridge.health import HealthReporter

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, bytes], Awaitable[None]]


class MqttBus:
    """Reconnecting aiomqtt client with smart (deduplicated, retained) publish."""

    def __init__(self, config: Config, health: HealthReporter | None = None) -> None:
        self._settings = config.settings
        self._reconnect_interval = config.schedule.mqtt_reconnect_interval
        self._health = health
        self._client: aiomqtt.Client | None = None
        self._handlers: dict[str, MessageHandler] = {}
        self._last_published: dict[str, str] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def connected(self) -> bool:
        return self._client is not None

    def subscribe(self, topic: str, handler: MessageHandler) -> None:
        """Register a handler; subscriptions are (re)applied on every connect."""
        self._handlers[topic] = handler

    async def publish(self, topic: str, value: object) -> bool:
        """Publish ``value`` retained on ``topic``, skipping unchanged values.

        Returns False when the broker is not connected; the value is dropped
        and will be republished on the next poll.
        """
        payload = str(value)
        if self._last_published.get(topic) == payload:
            return True

        client = self._client
        if client is None:
            logger.debug(f"MQTT not connected, dropping {topic}={payload}")
            return False

        try:
            await client.publish(topic, payload, qos=1, retain=True)
        except aiomqtt.MqttError as e:
            logger.warning(f"MQTT publish to {topic} failed: {e}")
            return False

        self._last_published[topic] = payload
        logger.debug(f"Published {topic}={payload}")
        return True

    async def run(self) -> None:
        """Connect, subscribe and dispatch forever, reconnecting on failure."""
        while True:
            try:
                async with aiomqtt.Client(**self._client_params()) as client:
                    self._client = client
                    self._last_published.clear()
                    try:
                        for topic in self._handlers:
                            await client.subscribe(topic, qos=1)
                        logger.info(f"MQTT connected, subscribed to {sorted(self._handlers)}")
                        if self._health is not None:
                            self._health.healthy()
                        async for message in client.messages:
                            self._dispatch(str(message.topic), message.payload)
                    finally:
                        self._client = None
            except aiomqtt.MqttError as e:
                logger.warning(f"MQTT connection lost: {e}. Reconnecting in {self._reconnect_interval:.0f}s...")
                if self._health is not None:
                    self._health.unhealthy()
            await asyncio.sleep(self._reconnect_interval)

    def _dispatch(self, topic: str, payload: object) -> None:
        handler = self._handlers.get(topic)
        if handler is None:
            logger.debug(f"No handler for {topic}")
            return

        if isinstance(payload, str):
            data = payload.encode("utf-8")
        elif isinstance(payload, (bytes, bytearray)):
            data = bytes(payload)
        else:
            data = str(payload).encode("utf-8")

        task = asyncio.create_task(self._handle(handler, topic, data))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    async def _handle(handler: MessageHandler, topic: str, payload: bytes) -> None:
        try:
            await handler(topic, payload)
        except Exception:
            logger.exception(f"Error handling message on {topic}")

    def _client_params(self) -> dict[str, object]:
        hostname, port, tls = self._settings.mqtt_broker
        params: dict[str, object] = {"hostname": hostname, "port": port}
        if self._settings.mqtt_username:
            params["username"] = self._settings.mqtt_username
            params["password"] = self._settings.mqtt_password or None
        if tls:
            params["tls_context"] = ssl.create_default_context()
        return params
