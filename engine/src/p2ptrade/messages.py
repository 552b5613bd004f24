"""Plain-text notification bodies.

Presentation and translation belong to the chat front end; these are the
default English texts the engine sends through the notifier.
"""

from __future__ import annotations

from .models import Order


def invoice_payment_request(order: Order, request: str) -> str:
    return (
        f"Pay this hold invoice to lock {order.escrow_amount} sats for order {order.id}. "
        f"The funds are only released to the buyer when you confirm the fiat arrived:\n{request}"
    )


def waiting_seller_payment(order: Order) -> str:
    return f"Order {order.id} taken. Waiting for the seller to pay the hold invoice."


def trade_active_buyer(order: Order) -> str:
    via = f" via {order.payment_method}" if order.payment_method else ""
    return (
        f"The seller locked the sats for order {order.id}. Send {order.fiat_amount} "
        f"{order.fiat_code}{via} and then use /fiatsent {order.id}"
    )


def trade_active_seller(order: Order) -> str:
    return f"Payment received for order {order.id}. The buyer will now send the fiat."


def fiat_sent_seller(order: Order) -> str:
    return (
        f"The buyer says the fiat for order {order.id} was sent. "
        f"Once you confirm it arrived use /release {order.id}"
    )


def fiat_sent_buyer(order: Order) -> str:
    return f"The seller was told the fiat for order {order.id} is on its way."


def order_completed(order: Order) -> str:
    return f"Order {order.id} COMPLETED"


def order_completed_by_admin(order: Order) -> str:
    return f"An admin completed order {order.id}."


def order_canceled(order: Order) -> str:
    return f"You canceled order {order.id}."


def order_canceled_by_admin(order: Order) -> str:
    return f"An admin canceled order {order.id}."


def order_expired(order: Order) -> str:
    return f"Order {order.id} was canceled because the hold invoice was not paid in time."


def cooperative_cancel_started(order: Order) -> str:
    return (
        f"You asked to cancel order {order.id}. "
        f"Your counterparty must also agree before it is canceled."
    )


def cooperative_cancel_requested(order: Order) -> str:
    return f"Your counterparty wants to cancel order {order.id}. If you agree use the command below."


def cooperative_cancel_done(order: Order) -> str:
    return f"Both parties agreed; order {order.id} was canceled and the sats returned to the seller."


def cooperative_cancel_already_requested(order: Order) -> str:
    return f"You already asked to cancel order {order.id}; wait for your counterparty."


def dispute_started(order: Order, initiator: str) -> str:
    return f"The {initiator} opened a dispute on order {order.id}. An admin will contact both parties."


def buyer_paid(order: Order) -> str:
    return f"You received {order.escrow_amount} sats for order {order.id}."


def payout_failed(order: Order) -> str:
    return (
        f"Paying your invoice for order {order.id} failed. "
        f"It will be retried automatically."
    )


def payout_abandoned(order_id: str) -> str:
    return (
        f"We could not pay your invoice for order {order_id} after several attempts. "
        f"An admin will follow up."
    )


def user_banned(username: str) -> str:
    return f"User @{username} was banned."
