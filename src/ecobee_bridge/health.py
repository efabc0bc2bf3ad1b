"""Health reporting: a healthy/unhealthy flag plus an optional heartbeat URL."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime

import httpx

logger = logging.getLogger(__name__)


class HealthReporter:
    """Fire-and-forget health signals.

    When a heartbeat URL is configured, :meth:`run` GETs it every
    ``interval`` seconds for as long as the last signal was healthy, so an
    external monitor notices when the bridge stops reporting.
    """

    def __init__(self, url: str = "", interval: float = 60.0, http: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._interval = interval
        self._http = http
        self._healthy = False
        self._changed_at: datetime | None = None

    @property
    def is_healthy(self) -> bool:
        return self._healthy

    @property
    def changed_at(self) -> datetime | None:
        return self._changed_at

    def healthy(self) -> None:
        self._set(True)

    def unhealthy(self) -> None:
        self._set(False)

    def _set(self, value: bool) -> None:
        if value != self._healthy:
            logger.info(f"Health: {'healthy' if value else 'unhealthy'}")
            self._changed_at = datetime.now()
        self._healthy = value

    async def run(self) -> None:
        """Heartbeat loop. Returns immediately when no URL is configured."""
        if not self._url:
            logger.info("Not starting health checks")
            return

        logger.info(f"Starting health checks against {self._url} every {self._interval:.0f}s")
        http = self._http or httpx.AsyncClient(timeout=10.0)
        try:
            while True:
                if self._healthy:
                    await self.ping(http)
                await asyncio.sleep(self._interval)
        finally:
            if self._http is None:
                await http.aclose()

    async def ping(self, http: httpx.AsyncClient) -> bool:
        try:
            response = await http.get(self._url)
        except httpx.HTTPError as e:
            logger.warning(f"Health check ping failed: {e!r}")
            return False
        if response.status_code >= 400:
            logger.warning(f"Health check ping returned HTTP {response.status_code}")
            return False
        return True
