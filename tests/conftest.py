"""Shared fixtures for the ecobee bridge test suite."""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ecobee_bridge.auth import AuthManager
from ecobee_bridge.config import Config, Schedule, Settings
from ecobee_bridge.health import HealthReporter
from ecobee_bridge.models.auth import PinResponse, TokenResponse
from ecobee_bridge.token_store import TokenStore


class FakePipeline:
    """Buffered transaction against a FakeRedis."""

    def __init__(self, redis: FakeRedis) -> None:
        self._redis = redis
        self._ops: list[tuple[str, tuple]] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def set(self, key, value):
        self._ops.append(("set", (key, value)))
        return self

    def delete(self, *keys):
        self._ops.append(("delete", keys))
        return self

    async def execute(self):
        if self._redis.down:
            raise RedisConnectionError("Connection refused")
        for op, args in self._ops:
            if op == "set":
                self._redis.data[args[0]] = args[1]
            else:
                for key in args:
                    self._redis.data.pop(key, None)
        return [True] * len(self._ops)


class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis (decode_responses=True)."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value):
        self._check()
        self.data[key] = value
        return True

    async def delete(self, *keys):
        self._check()
        return sum(1 for key in keys if self.data.pop(key, None) is not None)

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        pass


@pytest.fixture
def fake_settings() -> Settings:
    return Settings(
        client_id="test-client-id",
        topic="/ecobee",
        api_base="https://api.ecobee.test",
        mqtt_host="mqtt://broker.test:1883",
        redis_host="redis.test",
    )


@pytest.fixture
def fake_schedule() -> Schedule:
    return Schedule(pin_confirm_delay=0.0, http_timeout=5.0)


@pytest.fixture
def fake_config(fake_settings, fake_schedule) -> Config:
    return Config(settings=fake_settings, schedule=fake_schedule)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis) -> TokenStore:
    """TokenStore over FakeRedis, already connected."""
    s = TokenStore(fake_redis)
    s._connected = True
    return s


@pytest.fixture
def mock_client():
    """AsyncMock standing in for EcobeeClient, with successful defaults."""
    client = MagicMock()
    client.request_pin = AsyncMock(return_value=PinResponse(ecobeePin="ABCD", code="provisional-code"))
    client.exchange_pin = AsyncMock(
        return_value=TokenResponse(access_token="access-1", refresh_token="refresh-1")
    )
    client.refresh = AsyncMock(
        return_value=TokenResponse(access_token="access-2", refresh_token="refresh-2")
    )
    client.fetch_thermostats = AsyncMock(return_value={"status": {"code": 0}, "thermostatList": []})
    client.set_hold = AsyncMock(return_value={"status": {"code": 0}})
    client.set_hvac_mode = AsyncMock(return_value={"status": {"code": 0}})
    client.close = AsyncMock()
    return client


@pytest.fixture
def publisher():
    """Records (topic, value) publishes."""
    return AsyncMock(return_value=True)


@pytest.fixture
def health() -> HealthReporter:
    return HealthReporter()


@pytest.fixture
def auth(fake_config, store, mock_client, publisher, health) -> AuthManager:
    return AuthManager(fake_config, store, mock_client, publisher, health)


@pytest.fixture
def published(publisher):
    """Callable returning (topic, str(value)) pairs in publish order."""
    def _published() -> list[tuple[str, str]]:
        return [(c.args[0], str(c.args[1])) for c in publisher.call_args_list]
    return _published
