"""
Periodic job runner.

Each job runs its sweep, then sleeps for its interval.  A run never
overlaps the previous one, so a slow sweep only delays the next.  Engine
errors raised by a sweep are logged and the loop keeps going; anything
else propagates and stops the worker.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from ..errors import EngineError

logger = logging.getLogger(__name__)


class PeriodicJob:
    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[Any]]) -> None:
        if interval <= 0:
            raise ValueError(f"{name}: interval must be positive, got {interval}")
        self.name = name
        self.interval = interval
        self.func = func
        self.runs = 0

    async def run_once(self) -> Any:
        try:
            result = await self.func()
        except EngineError as exc:
            logger.error("Job %s failed: %s", self.name, exc)
            result = None
        self.runs += 1
        return result

    async def run_forever(self) -> None:
        logger.info("Job %s started (every %.0fs)", self.name, self.interval)
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval)
