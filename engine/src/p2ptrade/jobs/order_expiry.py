"""
Order expiry sweep.

A taken order waits ``timeout`` seconds for the seller to pay the hold
invoice.  Past that, the sweep cancels the invoice and the order.  The
sweep and the invoice callback can race on the same order; the sweep asks
the node before canceling, and an invoice that is already holding funds
activates the order instead.  Settlement wins.
"""

from __future__ import annotations

import datetime as dt
import logging

from .. import messages
from ..errors import EngineError
from ..models import Order, OrderStatus
from ..services.escrow_coordinator import EscrowCoordinator
from ..services.ledger import OrderLedger
from ..services.notifier import BaseNotifier, delete_postings, notify
from ..state_machine import Trigger

logger = logging.getLogger(__name__)


class OrderExpirySweep:
    def __init__(
        self,
        ledger: OrderLedger,
        coordinator: EscrowCoordinator,
        notifier: BaseNotifier,
        timeout: float,
    ) -> None:
        self.ledger = ledger
        self.store = ledger.store
        self.coordinator = coordinator
        self.notifier = notifier
        self.timeout = timeout

    async def run_once(self) -> int:
        """Expire every overdue WAITING_PAYMENT order; return how many were canceled."""
        cutoff = dt.datetime.now(dt.timezone.utc) - dt.timedelta(seconds=self.timeout)
        orders = await self.store.find_orders(
            statuses=[OrderStatus.WAITING_PAYMENT], taken_before=cutoff
        )
        expired = 0
        for order in orders:
            try:
                if await self._expire(order.id, cutoff):
                    expired += 1
            except EngineError as exc:
                logger.error("Could not expire order %s: %s", order.id, exc)
        if expired:
            logger.info("Expired %d orders", expired)
        return expired

    def _overdue(self, order: Order, cutoff: dt.datetime) -> bool:
        return (
            order.status is OrderStatus.WAITING_PAYMENT
            and order.taken_at is not None
            and order.taken_at < cutoff
        )

    async def _expire(self, order_id: str, cutoff: dt.datetime) -> bool:
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not self._overdue(order, cutoff):
                return False
            if await self.coordinator.invoice_is_held(order):
                logger.info("Order %s is overdue but its invoice is paid; activating", order.id)
                await self.coordinator.activate(order)
                return False
            if order.hash:
                await self.coordinator.refund(order)
            order = await self.ledger.transition(order, Trigger.EXPIRE)
        text = messages.order_expired(order)
        await notify(self.notifier, order.seller_id, text)
        await notify(self.notifier, order.buyer_id, text)
        await delete_postings(self.notifier, order)
        return True
