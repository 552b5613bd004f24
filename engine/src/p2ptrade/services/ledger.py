"""
Order ledger: the one place order status changes are committed.

Command handlers, the invoice callback and the sweep jobs all run
concurrently and touch the same records.  The ledger gives them two tools:

* ``locked(order_id)`` serializes work on one order inside this process.
  Handlers take the lock, re-read the order and check preconditions against
  that fresh copy.  The lock is not reentrant; only entry points take it.
* ``transition(order, trigger)`` applies a state machine edge, saves with
  save-if-unchanged semantics, and publishes ``order_transition`` on the
  bus and to the audit log.  Across processes a concurrent writer makes the
  save raise :class:`StaleRecord` and the caller's work is dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from typing import Any, AsyncIterator, Dict, Optional

from .. import state_machine
from ..errors import NotFound
from ..models import Order
from ..state_machine import Trigger
from .event_bus import ORDER_TRANSITION

logger = logging.getLogger(__name__)


class OrderLedger:
    def __init__(self, store: Any, event_bus: Any = None, event_store: Any = None) -> None:
        self.store = store
        self.event_bus = event_bus
        self.event_store = event_store
        self._locks: Dict[str, asyncio.Lock] = {}
        self._holders: Counter = Counter()

    @contextlib.asynccontextmanager
    async def locked(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._holders[order_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[order_id] -= 1
            if not self._holders[order_id]:
                del self._holders[order_id]
                self._locks.pop(order_id, None)

    async def load(self, order_id: str) -> Order:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFound(f"order {order_id} not found")
        return order

    async def find_by_hash(self, hash: str, statuses: Any = None) -> Optional[Order]:
        orders = await self.store.find_orders(hash=hash, statuses=statuses)
        return orders[0] if orders else None

    async def save(self, order: Order) -> Order:
        """Save a change that does not move the status."""
        return await self.store.save_order(order)

    async def transition(self, order: Order, trigger: Trigger) -> Order:
        source = order.status
        state_machine.apply(order, trigger)
        saved = await self.store.save_order(order)
        logger.info(
            "Order %s %s -> %s (%s)", saved.id, source.value, saved.status.value, trigger.value
        )
        event = {
            "order_id": saved.id,
            "source": source.value,
            "target": saved.status.value,
            "trigger": trigger.value,
        }
        if self.event_bus is not None:
            await self.event_bus.publish(ORDER_TRANSITION, event)
        if self.event_store is not None:
            try:
                await self.event_store.log(ORDER_TRANSITION, event)
            except OSError as exc:
                logger.warning("Failed to append transition of order %s to audit log: %s", saved.id, exc)
        return saved
