"""
Cooperative cancellation of an active trade.

Once the seller's sats are locked, neither party can cancel alone.  Each
side asks separately and the order keeps a flag per side.  The first
request only records the flag and asks the counterparty to confirm; the
second one, from the other side, refunds the hold invoice and cancels the
order.  The order record is the single source of truth, so both flags are
read from a fresh copy under the order lock.
"""

from __future__ import annotations

import logging

from .. import messages
from ..errors import ValidationFailure
from ..models import OrderStatus
from ..state_machine import Trigger, is_terminal
from .escrow_coordinator import EscrowCoordinator
from .ledger import OrderLedger
from .notifier import BaseNotifier, delete_postings, notify
from .results import CommandResult, Outcome

logger = logging.getLogger(__name__)


class CooperativeCancellation:
    def __init__(
        self, ledger: OrderLedger, coordinator: EscrowCoordinator, notifier: BaseNotifier
    ) -> None:
        self.ledger = ledger
        self.coordinator = coordinator
        self.notifier = notifier

    async def request(self, order_id: str, user_id: str) -> CommandResult:
        async with self.ledger.locked(order_id):
            order = await self.ledger.load(order_id)
            if is_terminal(order.status):
                return CommandResult(Outcome.NOOP_TERMINAL, order, f"order {order.id} is already {order.status.value}")
            if order.status is not OrderStatus.ACTIVE:
                raise ValidationFailure(f"only active orders can be canceled cooperatively; {order.id} is {order.status.value}")
            role = order.role_of(user_id)
            if role is None:
                raise ValidationFailure(f"user {user_id} is not a party to order {order.id}")

            if order.cooperative_cancel.get(role):
                message = messages.cooperative_cancel_already_requested(order)
                await notify(self.notifier, user_id, message)
                return CommandResult(Outcome.ALREADY_REQUESTED, order, message)

            order.cooperative_cancel.set(role)
            counterparty_id = order.party_id(role.counterparty)

            if not order.cooperative_cancel.get(role.counterparty):
                order = await self.ledger.save(order)
                logger.info("Order %s: %s asked for cooperative cancel", order.id, role.value)
                message = messages.cooperative_cancel_started(order)
                await notify(self.notifier, user_id, message)
                await notify(
                    self.notifier,
                    counterparty_id,
                    messages.cooperative_cancel_requested(order),
                    buttons=[f"/cooperativecancel {order.id}"],
                )
                return CommandResult(Outcome.WAITING_COUNTERPARTY, order, message)

            if order.hash:
                await self.coordinator.refund(order)
            order = await self.ledger.transition(order, Trigger.COOPERATIVE_CANCEL)
            message = messages.cooperative_cancel_done(order)
            await notify(self.notifier, user_id, message)
            await notify(self.notifier, counterparty_id, message)
            await delete_postings(self.notifier, order)
            return CommandResult(Outcome.DONE, order, message)
