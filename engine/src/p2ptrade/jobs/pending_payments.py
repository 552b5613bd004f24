"""
Payout retry sweep.

Buyers whose payout failed right after release get a ``PendingPayment``
record.  Every run retries the unpaid ones that still have attempts left.
A payment is paid at most once: it is re-read under its order's lock
before the attempt, and ``paid`` is saved as soon as the node confirms.
When a payment runs out of attempts the buyer is told and a
``payment_abandoned`` event is published for operators through the
coordinator.
"""

from __future__ import annotations

import datetime as dt
import logging

from .. import messages
from ..errors import EngineError, EscrowError
from ..services.escrow_coordinator import EscrowCoordinator
from ..services.ledger import OrderLedger
from ..services.notifier import BaseNotifier, notify

logger = logging.getLogger(__name__)


class PendingPaymentSweep:
    def __init__(
        self,
        ledger: OrderLedger,
        coordinator: EscrowCoordinator,
        notifier: BaseNotifier,
        max_attempts: int = 3,
    ) -> None:
        self.ledger = ledger
        self.store = ledger.store
        self.coordinator = coordinator
        self.notifier = notifier
        self.max_attempts = max_attempts

    async def run_once(self) -> int:
        """Retry every unpaid payout with attempts left; return how many got paid."""
        payments = await self.store.find_pending_payments(paid=False, below_attempts=self.max_attempts)
        if payments:
            logger.info("Retrying %d pending payouts", len(payments))
        paid = 0
        for payment in payments:
            try:
                if await self._attempt(payment.order_id, payment.id):
                    paid += 1
            except EngineError as exc:
                logger.error("Pending payment %s skipped: %s", payment.id, exc)
        return paid

    async def _attempt(self, order_id: str, payment_id: str) -> bool:
        async with self.ledger.locked(order_id):
            payment = await self.store.get_pending_payment(payment_id)
            if payment is None or payment.paid or payment.attempts >= self.max_attempts:
                return False
            try:
                await self.coordinator.pay(payment.payment_request)
            except EscrowError as exc:
                payment.attempts += 1
                payment = await self.store.save_pending_payment(payment)
                logger.warning(
                    "Payout %s for order %s failed (attempt %d/%d): %s",
                    payment.id,
                    payment.order_id,
                    payment.attempts,
                    self.max_attempts,
                    exc,
                )
                if payment.attempts >= self.max_attempts:
                    await self.coordinator.abandon_payout(payment)
                return False
            payment.paid = True
            payment.paid_at = dt.datetime.now(dt.timezone.utc)
            payment = await self.store.save_pending_payment(payment)
        logger.info("Payout %s for order %s paid", payment.id, payment.order_id)
        order = await self.store.get_order(payment.order_id)
        if order is not None:
            await notify(self.notifier, payment.user_id, messages.buyer_paid(order))
        return True
