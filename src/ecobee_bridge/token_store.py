"""Redis-backed persistence for the ecobee token pair."""

from __future__ import annotations

import logging

import redis.asyncio as redis
from redis.exceptions import RedisError

from ecobee_bridge.config import Settings
from ecobee_bridge.models.auth import TokenPair
from ecobee_bridge.utils.errors import StorageUnavailableError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "access-token"
REFRESH_TOKEN_KEY = "refresh-token"


class TokenStore:
    """Key/value token storage with an explicit connectivity flag.

    Operations are refused with :class:`StorageUnavailableError` while the
    store is disconnected; nothing is queued. A failed command marks the
    store disconnected until :meth:`connect` succeeds again.
    """

    def __init__(self, client: redis.Redis) -> None:
        self._redis = client
        self._connected = False

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenStore:
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            decode_responses=True,
        )
        return cls(client)

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> bool:
        """Ping the server and update the connectivity flag."""
        try:
            await self._redis.ping()
        except (RedisError, OSError) as e:
            if self._connected:
                logger.warning(f"Token store disconnected: {e}")
            self._connected = False
            return False

        if not self._connected:
            logger.info("Token store connected")
        self._connected = True
        return True

    async def get(self, key: str) -> str | None:
        value = await self._run("get", key)
        if value is None or value == "":
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str | None) -> None:
        """Store ``value``; ``None`` deletes the key."""
        if value is None:
            await self.delete(key)
            return
        await self._run("set", key, value)

    async def delete(self, key: str) -> None:
        await self._run("delete", key)

    async def load_pair(self) -> TokenPair:
        """Read both tokens fresh from the store."""
        return TokenPair(
            access_token=await self.get(ACCESS_TOKEN_KEY),
            refresh_token=await self.get(REFRESH_TOKEN_KEY),
        )

    async def save_pair(self, pair: TokenPair) -> None:
        """Write both tokens in one transaction; ``None`` fields are deleted."""
        if not self._connected:
            raise StorageUnavailableError("Token store is not connected")
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                for key, value in (
                    (ACCESS_TOKEN_KEY, pair.access_token),
                    (REFRESH_TOKEN_KEY, pair.refresh_token),
                ):
                    if value is None:
                        pipe.delete(key)
                    else:
                        pipe.set(key, value)
                await pipe.execute()
        except (RedisError, OSError) as e:
            self._connected = False
            raise StorageUnavailableError(f"Token store write failed: {e}") from e

    async def clear(self) -> None:
        await self.save_pair(TokenPair())

    async def _run(self, command: str, *args: str):
        if not self._connected:
            raise StorageUnavailableError("Token store is not connected")
        try:
            return await getattr(self._redis, command)(*args)
        except (RedisError, OSError) as e:
            self._connected = False
            raise StorageUnavailableError(f"Token store {command} failed: {e}") from e

    async def close(self) -> None:
        await self._redis.aclose()
