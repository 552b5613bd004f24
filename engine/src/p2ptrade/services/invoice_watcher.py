"""
Invoice watcher.

Turns the escrow node's per-invoice subscription streams into
``invoice_update`` events on the bus.  One task follows each hash until
the invoice reaches a final state.  Dropped streams are reopened with
exponential backoff; the node replays the current state on reconnect, so a
reconnect may publish the same state twice and the coordinator treats
updates idempotently.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..clients.base import BaseEscrowClient
from ..errors import EscrowUnavailable
from .event_bus import INVOICE_UPDATE

logger = logging.getLogger(__name__)


class InvoiceWatcher:
    def __init__(
        self,
        escrow: BaseEscrowClient,
        event_bus: Any,
        *,
        max_reconnects: int = 10,
        max_backoff: float = 60.0,
    ) -> None:
        self.escrow = escrow
        self.event_bus = event_bus
        self.max_reconnects = max_reconnects
        self.max_backoff = max_backoff
        self._tasks: Dict[str, asyncio.Task] = {}

    def watch(self, hash: str) -> None:
        """Start following ``hash`` unless it is already followed."""
        task = self._tasks.get(hash)
        if task is not None and not task.done():
            return
        self._tasks[hash] = asyncio.create_task(self._follow(hash), name=f"invoice-{hash[:12]}")

    @property
    def watching(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def _follow(self, hash: str) -> None:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(EscrowUnavailable),
                stop=stop_after_attempt(self.max_reconnects),
                wait=wait_exponential(min=1, max=self.max_backoff),
                reraise=True,
            ):
                with attempt:
                    async for state in self.escrow.subscribe_invoice(hash):
                        logger.debug("Invoice %s is %s", hash, state.value)
                        await self.event_bus.publish(INVOICE_UPDATE, {"hash": hash, "state": state.value})
                        if state.is_final:
                            return
                    raise EscrowUnavailable(f"subscription for {hash} closed early")
        except EscrowUnavailable as exc:
            logger.error("Stopped watching invoice %s: %s", hash, exc)
        finally:
            if self._tasks.get(hash) is asyncio.current_task():
                del self._tasks[hash]

    async def stop(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
