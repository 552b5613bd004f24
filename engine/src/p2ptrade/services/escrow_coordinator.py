"""
Escrow coordinator.

The only component that talks to the escrow node.  It binds hold-invoice
events to order transitions and exposes the money-moving operations the
command handlers and sweeps need:

* :meth:`EscrowCoordinator.open_escrow` creates the hold invoice when an
  order is taken and starts watching it.
* :meth:`EscrowCoordinator.on_invoice_settled` advances a WAITING_PAYMENT
  order to ACTIVE once the seller's funds are locked.  It is driven by
  ``invoice_update`` events, which may arrive any number of times, so
  anything other than a matching WAITING_PAYMENT order is a logged no-op.
* :meth:`EscrowCoordinator.release` and :meth:`EscrowCoordinator.refund`
  settle or cancel the invoice.  They never change the order; the caller
  commits the transition only after they return.  On failure the escrow
  error propagates and the order stays where it was.
* :meth:`EscrowCoordinator.pay_buyer` pays the buyer's own invoice after a
  release and queues a :class:`PendingPayment` when that fails.  A payout
  with no attempts left is abandoned through :meth:`abandon_payout`.

Settling and canceling are made safe to retry: if the node rejects the call
but reports the invoice already in the requested final state, the earlier
attempt went through and the call counts as done.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Optional

from .. import messages
from ..clients.base import BaseEscrowClient, HoldInvoice, InvoiceState, PaymentResult
from ..errors import (
    EngineError,
    EscrowCancelFailed,
    EscrowError,
    EscrowSettleFailed,
    EscrowUnavailable,
    ValidationFailure,
)
from ..models import Order, OrderStatus, PendingPayment
from ..state_machine import Trigger
from .event_bus import INVOICE_UPDATE, PAYMENT_ABANDONED
from .invoice_watcher import InvoiceWatcher
from .ledger import OrderLedger
from .notifier import BaseNotifier, notify

logger = logging.getLogger(__name__)


class EscrowCoordinator:
    def __init__(
        self,
        escrow: BaseEscrowClient,
        ledger: OrderLedger,
        notifier: BaseNotifier,
        *,
        watcher: Optional[InvoiceWatcher] = None,
        event_bus: Any = None,
        invoice_description: str = "P2P escrow",
        max_payment_attempts: int = 3,
    ) -> None:
        self.escrow = escrow
        self.ledger = ledger
        self.store = ledger.store
        self.notifier = notifier
        self.watcher = watcher
        self.event_bus = event_bus
        self.invoice_description = invoice_description
        self.max_payment_attempts = max_payment_attempts

    def watch(self, hash: str) -> None:
        if self.watcher is not None:
            self.watcher.watch(hash)

    async def open_escrow(self, order: Order, amount: int) -> HoldInvoice:
        """Create a hold invoice for ``amount`` plus fee and attach it to ``order``.

        Sets ``hash``, ``secret`` and ``escrow_amount`` on the in-memory
        order; the caller persists them with the TAKE transition.  Raises
        :class:`EscrowUnavailable` without touching the order on failure.
        """
        if order.has_escrow:
            raise ValidationFailure(f"order {order.id} already has a hold invoice")
        if amount <= 0:
            raise ValidationFailure(f"escrow amount must be positive, got {amount}")
        total = int(math.floor(amount + order.fee))
        try:
            invoice = await self.escrow.create_hold_invoice(total, self.invoice_description)
        except EscrowUnavailable:
            logger.error("Could not create hold invoice for order %s", order.id)
            raise
        except EscrowError as exc:
            logger.error("Could not create hold invoice for order %s: %s", order.id, exc)
            raise EscrowUnavailable(str(exc)) from exc
        order.hash = invoice.hash
        order.secret = invoice.secret
        order.escrow_amount = amount
        self.watch(invoice.hash)
        logger.info("Opened escrow %s for order %s (%d sats)", invoice.hash, order.id, total)
        return invoice

    async def on_invoice_settled(self, hash: str) -> Optional[Order]:
        """Advance the WAITING_PAYMENT order holding ``hash`` to ACTIVE.

        Returns the updated order, or ``None`` when there is nothing to do:
        the invoice belongs to a canceled order, or this is a duplicate of
        a callback that was already applied.
        """
        order = await self.ledger.find_by_hash(hash, statuses=[OrderStatus.WAITING_PAYMENT])
        if order is None:
            logger.info("Invoice %s paid but no order is waiting for it; ignoring", hash)
            return None
        async with self.ledger.locked(order.id):
            order = await self.ledger.load(order.id)
            if order.status is not OrderStatus.WAITING_PAYMENT or order.hash != hash:
                logger.info("Order %s already moved to %s; ignoring invoice %s", order.id, order.status.value, hash)
                return None
            return await self.activate(order)

    async def activate(self, order: Order) -> Order:
        """Commit WAITING_PAYMENT -> ACTIVE.  The caller holds the order lock."""
        if not (order.hash and order.secret):
            raise ValidationFailure(f"order {order.id} has no escrow to activate")
        order = await self.ledger.transition(order, Trigger.INVOICE_PAID)
        await notify(self.notifier, order.buyer_id, messages.trade_active_buyer(order))
        await notify(self.notifier, order.seller_id, messages.trade_active_seller(order))
        return order

    async def handle_invoice_event(self, event: Dict[str, Any]) -> Optional[Order]:
        hash = event.get("hash")
        state = event.get("state")
        if not hash or state not in InvoiceState.__members__:
            logger.warning("Ignoring malformed invoice event %r", event)
            return None
        if InvoiceState(state) is InvoiceState.ACCEPTED:
            return await self.on_invoice_settled(hash)
        logger.debug("Invoice %s is %s", hash, state)
        return None

    async def run(self) -> None:
        """Consume ``invoice_update`` events forever."""
        if self.event_bus is None:
            logger.error("EscrowCoordinator.run requires an event bus")
            return
        logger.info("Escrow coordinator consuming %s", INVOICE_UPDATE)
        async for event in self.event_bus.subscribe(INVOICE_UPDATE):
            try:
                await self.handle_invoice_event(event)
            except EngineError as exc:
                logger.error("Failed to apply invoice event %r: %s", event, exc)

    async def resubscribe(self) -> int:
        """Watch the invoices of every order still waiting for payment."""
        orders = await self.store.find_orders(statuses=[OrderStatus.WAITING_PAYMENT])
        count = 0
        for order in orders:
            if order.hash:
                self.watch(order.hash)
                count += 1
        logger.info("Resubscribed to %d hold invoices", count)
        return count

    async def _final_state_is(self, hash: str, state: InvoiceState) -> bool:
        try:
            return await self.escrow.lookup_invoice(hash) is state
        except EscrowError as exc:
            logger.warning("Could not look up invoice %s: %s", hash, exc)
            return False

    async def release(self, order: Order) -> None:
        """Settle the hold invoice, paying the locked sats out of escrow."""
        if not (order.hash and order.secret):
            raise ValidationFailure(f"order {order.id} has no escrow secret to settle")
        try:
            await self.escrow.settle_hold_invoice(order.secret)
        except EscrowError as exc:
            if await self._final_state_is(order.hash, InvoiceState.SETTLED):
                logger.info("Invoice %s of order %s was already settled", order.hash, order.id)
                return
            logger.error("Settling invoice of order %s failed: %s", order.id, exc)
            if isinstance(exc, EscrowSettleFailed):
                raise
            raise EscrowSettleFailed(str(exc)) from exc
        logger.info("Settled invoice %s of order %s", order.hash, order.id)

    async def refund(self, order: Order) -> None:
        """Cancel the hold invoice, returning any locked sats to the payer."""
        if not order.hash:
            raise ValidationFailure(f"order {order.id} has no hold invoice to cancel")
        try:
            await self.escrow.cancel_hold_invoice(order.hash)
        except EscrowError as exc:
            if await self._final_state_is(order.hash, InvoiceState.CANCELED):
                logger.info("Invoice %s of order %s was already canceled", order.hash, order.id)
                return
            logger.error("Canceling invoice of order %s failed: %s", order.id, exc)
            if isinstance(exc, EscrowCancelFailed):
                raise
            raise EscrowCancelFailed(str(exc)) from exc
        logger.info("Canceled invoice %s of order %s", order.hash, order.id)

    async def invoice_is_held(self, order: Order) -> bool:
        """Whether the order's hold invoice has been paid and is locking funds."""
        if not order.hash:
            return False
        try:
            return await self.escrow.lookup_invoice(order.hash) is InvoiceState.ACCEPTED
        except EscrowError as exc:
            logger.warning("Could not look up invoice of order %s: %s", order.id, exc)
            raise

    async def pay(self, payment_request: str) -> PaymentResult:
        return await self.escrow.pay_invoice(payment_request)

    async def pay_buyer(self, order: Order) -> Optional[PendingPayment]:
        """Pay the released sats to the buyer's invoice.

        Returns the queued :class:`PendingPayment` when the payout failed,
        ``None`` when it succeeded or the buyer has not given an invoice yet.
        """
        if not order.buyer_invoice:
            logger.info("Order %s released but buyer has no invoice yet", order.id)
            return None
        try:
            await self.pay(order.buyer_invoice)
        except EscrowError as exc:
            logger.warning("Payout for order %s failed, queuing retry: %s", order.id, exc)
            payment = await self.queue_payout(order, attempts=1)
            if not payment.paid and payment.attempts >= self.max_payment_attempts:
                await self.abandon_payout(payment)
            else:
                await notify(self.notifier, order.buyer_id, messages.payout_failed(order))
            return payment
        await notify(self.notifier, order.buyer_id, messages.buyer_paid(order))
        return None

    async def queue_payout(self, order: Order, attempts: int = 0) -> PendingPayment:
        """Record a payout for the sweep, once per order."""
        existing = await self.store.find_pending_payments(order_id=order.id)
        for payment in existing:
            if payment.paid or payment.attempts < self.max_payment_attempts:
                logger.info("Order %s already has payout %s", order.id, payment.id)
                return payment
        if not order.buyer_invoice or not order.buyer_id or not order.escrow_amount:
            raise ValidationFailure(f"order {order.id} has no payout destination")
        payment = PendingPayment(
            order_id=order.id,
            user_id=order.buyer_id,
            amount=order.escrow_amount,
            payment_request=order.buyer_invoice,
            attempts=min(attempts, self.max_payment_attempts),
        )
        return await self.store.save_pending_payment(payment)

    async def abandon_payout(self, payment: PendingPayment) -> None:
        """Give up on ``payment`` and hand it to operators."""
        logger.error("Payout %s for order %s abandoned", payment.id, payment.order_id)
        if self.event_bus is not None:
            await self.event_bus.publish(
                PAYMENT_ABANDONED,
                {
                    "payment_id": payment.id,
                    "order_id": payment.order_id,
                    "user_id": payment.user_id,
                    "amount": payment.amount,
                    "attempts": payment.attempts,
                },
            )
        await notify(self.notifier, payment.user_id, messages.payout_abandoned(payment.order_id))
