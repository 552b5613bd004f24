"""
Order command handlers.

Each public coroutine here is one user or admin command.  They share the
same shape:

1. take the order lock and re-read the order;
2. ask the state machine whether the command applies (a finished order or
   one already in the target state is a no-op, anything else that does not
   fit raises :class:`ValidationFailure`);
3. check who is calling;
4. move money through the escrow coordinator, if the order holds any;
5. commit the transition, then notify and update public postings.

Escrow failures in step 4 propagate before step 5, so the order is only
advanced once the escrow node has done its part.  Parsing commands and
checking admin permissions happen in the chat front end before these are
called.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from .. import messages, state_machine
from ..errors import NotFound, StaleRecord, ValidationFailure
from ..models import Order, OrderStatus, OrderType, Role, User
from ..state_machine import NON_TERMINAL_STATUSES, Trigger
from .cooperative_cancel import CooperativeCancellation
from .dispute_policy import DisputePolicy
from .escrow_coordinator import EscrowCoordinator
from .ledger import OrderLedger
from .notifier import BaseNotifier, delete_postings, edit_postings, notify
from .results import CommandResult, OrderDetails, Outcome

logger = logging.getLogger(__name__)


def _noop(order: Order) -> CommandResult:
    return CommandResult(Outcome.NOOP_TERMINAL, order, f"order {order.id} is already {order.status.value}")


class OrderService:
    def __init__(
        self,
        ledger: OrderLedger,
        coordinator: EscrowCoordinator,
        notifier: BaseNotifier,
        dispute_policy: DisputePolicy,
        cooperative: Optional[CooperativeCancellation] = None,
    ) -> None:
        self.ledger = ledger
        self.store = ledger.store
        self.coordinator = coordinator
        self.notifier = notifier
        self.dispute_policy = dispute_policy
        self.cooperative = cooperative or CooperativeCancellation(ledger, coordinator, notifier)

    async def _user(self, user_id: str) -> User:
        user = await self.store.get_user(user_id)
        if user is None:
            raise NotFound(f"user {user_id} not found")
        return user

    def _require_role(self, order: Order, user_id: str, role: Role) -> None:
        if order.role_of(user_id) is not role:
            raise ValidationFailure(f"only the {role.value} of order {order.id} can do this")

    async def take(
        self,
        order_id: str,
        taker_id: str,
        *,
        amount: Optional[int] = None,
        buyer_invoice: Optional[str] = None,
    ) -> CommandResult:
        """Take a PENDING order and open its escrow.

        ``amount`` is the sats amount resolved from the market price and is
        required for market-price orders.  A taker buying from a sell order
        may pass the invoice they want to be paid on.
        """
        taker = await self._user(taker_id)
        if taker.banned:
            raise ValidationFailure(f"user {taker_id} is banned")
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.TAKE):
                return _noop(order)
            if order.creator_id == taker_id:
                raise ValidationFailure("you cannot take your own order")
            if order.is_market_price:
                if not amount or amount <= 0:
                    raise ValidationFailure(f"order {order.id} is at market price; an amount is required")
                escrow_amount = amount
            else:
                escrow_amount = order.amount

            if order.type is OrderType.SELL:
                order.buyer_id = taker_id
                if buyer_invoice:
                    order.buyer_invoice = buyer_invoice
            else:
                order.seller_id = taker_id

            invoice = await self.coordinator.open_escrow(order, escrow_amount)
            order.taken_at = dt.datetime.now(dt.timezone.utc)
            try:
                order = await self.ledger.transition(order, Trigger.TAKE)
            except StaleRecord:
                # Somebody else took it first; drop our unpaid invoice
                await self.coordinator.refund(order)
                raise

        await notify(
            self.notifier,
            order.seller_id,
            messages.invoice_payment_request(order, invoice.request),
        )
        await notify(self.notifier, order.buyer_id, messages.waiting_seller_payment(order))
        return CommandResult(Outcome.DONE, order)

    async def fiat_sent(self, order_id: str, user_id: str) -> CommandResult:
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.FIAT_SENT):
                return _noop(order)
            self._require_role(order, user_id, Role.BUYER)
            order = await self.ledger.transition(order, Trigger.FIAT_SENT)
        await notify(
            self.notifier,
            order.seller_id,
            messages.fiat_sent_seller(order),
            buttons=[f"/release {order.id}"],
        )
        await notify(self.notifier, order.buyer_id, messages.fiat_sent_buyer(order))
        return CommandResult(Outcome.DONE, order)

    async def release(self, order_id: str, user_id: str) -> CommandResult:
        """Seller confirms the fiat arrived; settle and complete the order."""
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.RELEASE):
                return _noop(order)
            self._require_role(order, user_id, Role.SELLER)
            await self.coordinator.release(order)
            order = await self.ledger.transition(order, Trigger.RELEASE)
        await edit_postings(self.notifier, order, messages.order_completed(order))
        await notify(self.notifier, order.seller_id, messages.order_completed(order))
        await self.coordinator.pay_buyer(order)
        return CommandResult(Outcome.DONE, order)

    async def cancel(self, order_id: str, user_id: str) -> CommandResult:
        """Creator withdraws an order nobody has paid into yet."""
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.CANCEL):
                return _noop(order)
            if order.creator_id != user_id:
                raise ValidationFailure(f"only the creator of order {order.id} can cancel it")
            if order.hash:
                await self.coordinator.refund(order)
            order.canceled_by = user_id
            order = await self.ledger.transition(order, Trigger.CANCEL)
        await notify(self.notifier, user_id, messages.order_canceled(order))
        await delete_postings(self.notifier, order)
        return CommandResult(Outcome.DONE, order)

    async def dispute(self, order_id: str, user_id: str) -> CommandResult:
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.DISPUTE):
                return _noop(order)
            role = order.role_of(user_id)
            if role is None:
                raise ValidationFailure(f"user {user_id} is not a party to order {order.id}")
            order = await self.dispute_policy.open(order, role)
        return CommandResult(Outcome.DONE, order)

    async def cooperative_cancel(self, order_id: str, user_id: str) -> CommandResult:
        return await self.cooperative.request(order_id, user_id)

    async def admin_cancel(self, order_id: str, admin_id: str) -> CommandResult:
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.ADMIN_CANCEL):
                return _noop(order)
            if order.hash:
                await self.coordinator.refund(order)
            order.canceled_by = admin_id
            order = await self.ledger.transition(order, Trigger.ADMIN_CANCEL)
        text = messages.order_canceled_by_admin(order)
        for chat_id in (admin_id, order.seller_id, order.buyer_id):
            await notify(self.notifier, chat_id, text)
        await delete_postings(self.notifier, order)
        return CommandResult(Outcome.DONE, order)

    async def admin_settle(self, order_id: str, admin_id: str) -> CommandResult:
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if not state_machine.check(order, Trigger.ADMIN_SETTLE):
                return _noop(order)
            await self.coordinator.release(order)
            order = await self.ledger.transition(order, Trigger.ADMIN_SETTLE)
        text = messages.order_completed_by_admin(order)
        for chat_id in (admin_id, order.seller_id, order.buyer_id):
            await notify(self.notifier, chat_id, text)
        await edit_postings(self.notifier, order, messages.order_completed(order))
        await self.coordinator.pay_buyer(order)
        return CommandResult(Outcome.DONE, order)

    async def add_invoice(self, order_id: str, user_id: str, payment_request: str) -> CommandResult:
        """Set the invoice the buyer wants to be paid on.

        On a completed order whose payout has not gone through, the new
        invoice is queued for the payout sweep.
        """
        if not payment_request:
            raise ValidationFailure("an invoice is required")
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            self._require_role(order, user_id, Role.BUYER)
            if order.status in (OrderStatus.CANCELED, OrderStatus.CANCELED_BY_ADMIN):
                raise ValidationFailure(f"order {order.id} was canceled")
            completed = order.status in (OrderStatus.COMPLETED, OrderStatus.COMPLETED_BY_ADMIN)
            payments = await self.store.find_pending_payments(order_id=order.id) if completed else []
            if completed and any(p.paid for p in payments):
                raise ValidationFailure(f"order {order.id} was already paid out")
            if completed and not payments and order.buyer_invoice:
                raise ValidationFailure(f"order {order.id} was already paid out")
            order.buyer_invoice = payment_request
            order = await self.ledger.save(order)
            if completed:
                await self._requeue_payout(order, payments)
        return CommandResult(Outcome.DONE, order)

    async def _requeue_payout(self, order: Order, payments: list) -> None:
        limit = self.coordinator.max_payment_attempts
        retrying = [p for p in payments if not p.paid and p.attempts < limit]
        if retrying:
            payment = retrying[-1]
            payment.payment_request = order.buyer_invoice
            await self.store.save_pending_payment(payment)
        else:
            await self.coordinator.queue_payout(order)

    async def ban(self, admin_id: str, username: str) -> CommandResult:
        user = await self.store.find_user_by_username(username)
        if user is None:
            raise NotFound(f"user @{username} not found")
        if user.banned:
            return CommandResult(Outcome.NOOP_TERMINAL, None, f"user @{username} is already banned")
        user.banned = True
        await self.store.save_user(user)
        logger.warning("Admin %s banned user %s", admin_id, user.id)
        message = messages.user_banned(username)
        await notify(self.notifier, admin_id, message)
        return CommandResult(Outcome.DONE, None, message)

    async def list_orders(self, user_id: str) -> List[Order]:
        """Orders the user is part of that have not finished."""
        return await self.store.find_orders(statuses=NON_TERMINAL_STATUSES, user_id=user_id)

    async def check_order(self, order_id: str) -> OrderDetails:
        order = await self.ledger.load(order_id)
        details = OrderDetails(order=order)
        details.creator = await self.store.get_user(order.creator_id)
        if order.buyer_id:
            details.buyer = await self.store.get_user(order.buyer_id)
        if order.seller_id:
            details.seller = await self.store.get_user(order.seller_id)
        return details
