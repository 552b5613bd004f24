"""
Order state machine.

The lifecycle of a trade is::

    PENDING -> WAITING_PAYMENT -> ACTIVE -> FIAT_SENT -> COMPLETED
                                    \\          \\
                                     +-> DISPUTE +-> COMPLETED_BY_ADMIN / CANCELED_BY_ADMIN

with cancellation edges out of PENDING, WAITING_PAYMENT (owner or expiry)
and ACTIVE (cooperative).  Admins may force-settle or force-cancel any
order that has not finished yet.

The table below is the only place transitions are defined.  It says nothing
about escrow; money movement is the coordinator's job and happens before
:func:`apply` is called, so a failed escrow call never leaves a record in a
state it has not earned.
"""

from __future__ import annotations

import enum
import logging
from typing import Dict, FrozenSet, NamedTuple

from .errors import ValidationFailure
from .models import Order, OrderStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(
    {
        OrderStatus.COMPLETED,
        OrderStatus.COMPLETED_BY_ADMIN,
        OrderStatus.CANCELED,
        OrderStatus.CANCELED_BY_ADMIN,
    }
)

NON_TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset(OrderStatus) - TERMINAL_STATUSES


class Trigger(str, enum.Enum):
    TAKE = "take"
    INVOICE_PAID = "invoice_paid"
    FIAT_SENT = "fiat_sent"
    RELEASE = "release"
    ADMIN_SETTLE = "admin_settle"
    CANCEL = "cancel"
    EXPIRE = "expire"
    COOPERATIVE_CANCEL = "cooperative_cancel"
    DISPUTE = "dispute"
    ADMIN_CANCEL = "admin_cancel"


class Transition(NamedTuple):
    sources: FrozenSet[OrderStatus]
    target: OrderStatus


TRANSITIONS: Dict[Trigger, Transition] = {
    Trigger.TAKE: Transition(frozenset({OrderStatus.PENDING}), OrderStatus.WAITING_PAYMENT),
    Trigger.INVOICE_PAID: Transition(frozenset({OrderStatus.WAITING_PAYMENT}), OrderStatus.ACTIVE),
    Trigger.FIAT_SENT: Transition(frozenset({OrderStatus.ACTIVE}), OrderStatus.FIAT_SENT),
    Trigger.RELEASE: Transition(
        frozenset({OrderStatus.ACTIVE, OrderStatus.FIAT_SENT}), OrderStatus.COMPLETED
    ),
    Trigger.ADMIN_SETTLE: Transition(NON_TERMINAL_STATUSES, OrderStatus.COMPLETED_BY_ADMIN),
    Trigger.CANCEL: Transition(
        frozenset({OrderStatus.PENDING, OrderStatus.WAITING_PAYMENT}), OrderStatus.CANCELED
    ),
    Trigger.EXPIRE: Transition(frozenset({OrderStatus.WAITING_PAYMENT}), OrderStatus.CANCELED),
    Trigger.COOPERATIVE_CANCEL: Transition(frozenset({OrderStatus.ACTIVE}), OrderStatus.CANCELED),
    Trigger.DISPUTE: Transition(
        frozenset({OrderStatus.ACTIVE, OrderStatus.FIAT_SENT}), OrderStatus.DISPUTE
    ),
    Trigger.ADMIN_CANCEL: Transition(NON_TERMINAL_STATUSES, OrderStatus.CANCELED_BY_ADMIN),
}


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def check(order: Order, trigger: Trigger) -> bool:
    """Return whether ``trigger`` should fire on ``order``.

    ``False`` means there is nothing to do: the order is already in the
    trigger's target status or has finished.  Callers report that as a
    benign no-op.  Any other mismatch raises :class:`ValidationFailure`.
    """
    transition = TRANSITIONS[trigger]
    if order.status == transition.target or is_terminal(order.status):
        return False
    if order.status not in transition.sources:
        raise ValidationFailure(
            f"order {order.id} is {order.status.value}; cannot {trigger.value}"
        )
    return True


def apply(order: Order, trigger: Trigger) -> Order:
    """Move ``order`` along ``trigger`` in place and return it."""
    transition = TRANSITIONS[trigger]
    if order.status not in transition.sources:
        raise ValidationFailure(
            f"order {order.id} is {order.status.value}; cannot {trigger.value}"
        )
    logger.debug("Order %s: %s -> %s (%s)", order.id, order.status.value, transition.target.value, trigger.value)
    order.status = transition.target
    return order
