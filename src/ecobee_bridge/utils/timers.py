"""Periodic task driver."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


async def every(
    interval: float,
    func: Callable[[], Awaitable[object]],
    *,
    start_in: float = 0.0,
    name: str | None = None,
) -> None:
    """Await ``func`` every ``interval`` seconds, first after ``start_in``.

    A failing run is logged and the schedule continues. Runs never overlap:
    the next one is scheduled ``interval`` seconds after the previous start,
    or immediately if the previous run took longer than that.
    """
    label = name or getattr(func, "__qualname__", repr(func))
    loop = asyncio.get_running_loop()

    await asyncio.sleep(start_in)
    while True:
        started = loop.time()
        try:
            await func()
        except Exception:
            logger.exception(f"Scheduled task {label} failed")
        elapsed = loop.time() - started
        await asyncio.sleep(max(0.0, interval - elapsed))
