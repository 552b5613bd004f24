"""Order command handlers driven end to end on in-memory parts.

Each test builds a fresh ``World``: a memory store, the fake escrow
client, a recording notifier and a fake bus wired into the real ledger,
coordinator and services.
"""

from __future__ import annotations

import pytest

from p2ptrade.clients.base import InvoiceState
from p2ptrade.errors import EscrowSettleFailed, EscrowUnavailable, NotFound, ValidationFailure
from p2ptrade.models import OrderStatus, OrderType
from p2ptrade.services.event_bus import ORDER_TRANSITION
from p2ptrade.services.results import Outcome

from tests.helpers.world import World


@pytest.mark.asyncio
async def test_take_opens_escrow_and_requests_payment() -> None:
    world = World()
    seller = await world.user("seller")
    buyer = await world.user("buyer")
    order = await world.order(seller, amount=100_000, fee=150.7)

    result = await world.orders.take(order.id, buyer.id)

    assert result.outcome is Outcome.DONE
    order = await world.reload(order)
    assert order.status is OrderStatus.WAITING_PAYMENT
    assert order.buyer_id == buyer.id
    assert order.hash and order.secret
    assert order.taken_at is not None
    assert order.escrow_amount == 100_000
    assert world.escrow.amounts[order.hash] == 100_150
    assert any("lnpaper" in text for text in world.notifier.texts_for(seller.id))
    assert world.notifier.texts_for(buyer.id)


@pytest.mark.asyncio
async def test_invoice_paid_activates_order() -> None:
    world = World()
    order, seller, buyer = await world.taken_order(amount=100_000)

    await world.escrow.pay(order.hash)
    activated = await world.coordinator.on_invoice_settled(order.hash)

    assert activated is not None
    assert (await world.reload(order)).status is OrderStatus.ACTIVE
    assert world.notifier.texts_for(buyer.id)[-1].startswith("The seller locked")


@pytest.mark.asyncio
async def test_take_on_buy_order_makes_taker_the_seller() -> None:
    world = World()
    buyer = await world.user("buyer")
    seller = await world.user("seller")
    order = await world.order(buyer, type=OrderType.BUY)

    await world.orders.take(order.id, seller.id)

    order = await world.reload(order)
    assert order.seller_id == seller.id
    assert order.buyer_id == buyer.id
    assert any("lnpaper" in text for text in world.notifier.texts_for(seller.id))


@pytest.mark.asyncio
async def test_take_market_price_order_needs_amount() -> None:
    world = World()
    seller = await world.user("seller")
    buyer = await world.user("buyer")
    order = await world.order(seller, amount=0, fiat_amount=20.0)

    with pytest.raises(ValidationFailure):
        await world.orders.take(order.id, buyer.id)

    await world.orders.take(order.id, buyer.id, amount=33_000)
    order = await world.reload(order)
    assert order.amount == 0
    assert order.escrow_amount == 33_000


@pytest.mark.asyncio
async def test_take_rejects_own_order_and_banned_taker() -> None:
    world = World()
    seller = await world.user("seller")
    banned = await world.user("mallory", banned=True)
    order = await world.order(seller)

    with pytest.raises(ValidationFailure):
        await world.orders.take(order.id, seller.id)
    with pytest.raises(ValidationFailure):
        await world.orders.take(order.id, banned.id)
    with pytest.raises(NotFound):
        await world.orders.take(order.id, "nobody")
    assert (await world.reload(order)).status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_take_leaves_order_pending_when_escrow_is_down() -> None:
    world = World()
    seller = await world.user("seller")
    buyer = await world.user("buyer")
    order = await world.order(seller)
    world.escrow.fail_create = True

    with pytest.raises(EscrowUnavailable):
        await world.orders.take(order.id, buyer.id)

    order = await world.reload(order)
    assert order.status is OrderStatus.PENDING
    assert order.hash is None
    assert order.buyer_id is None
    assert world.bus.of(ORDER_TRANSITION) == []


@pytest.mark.asyncio
async def test_second_take_is_a_noop() -> None:
    world = World()
    order, seller, buyer = await world.taken_order()
    other = await world.user("other")

    result = await world.orders.take(order.id, other.id)

    assert result.outcome is Outcome.NOOP_TERMINAL
    assert (await world.reload(order)).buyer_id == buyer.id
    assert len(world.escrow.invoices) == 1


@pytest.mark.asyncio
async def test_fiat_sent_only_by_buyer() -> None:
    world = World()
    order, seller, buyer = await world.active_order()

    with pytest.raises(ValidationFailure):
        await world.orders.fiat_sent(order.id, seller.id)

    result = await world.orders.fiat_sent(order.id, buyer.id)
    assert result.order.status is OrderStatus.FIAT_SENT
    assert f"/release {order.id}" in world.notifier.buttons_for(seller.id)

    again = await world.orders.fiat_sent(order.id, buyer.id)
    assert again.outcome is Outcome.NOOP_TERMINAL


@pytest.mark.asyncio
async def test_release_settles_once_and_pays_buyer() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.fiat_sent(order.id, buyer.id)

    with pytest.raises(ValidationFailure):
        await world.orders.release(order.id, buyer.id)
    result = await world.orders.release(order.id, seller.id)
    repeat = await world.orders.release(order.id, seller.id)

    assert result.order.status is OrderStatus.COMPLETED
    assert repeat.outcome is Outcome.NOOP_TERMINAL
    assert world.escrow.settle_calls == [order.secret]
    assert world.escrow.invoices[order.hash] is InvoiceState.SETTLED
    assert world.escrow.payouts == ["lnbuyer"]
    assert world.notifier.edited


@pytest.mark.asyncio
async def test_release_failure_keeps_order_where_it_was() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.fiat_sent(order.id, buyer.id)
    world.escrow.fail_settle = True

    with pytest.raises(EscrowSettleFailed):
        await world.orders.release(order.id, seller.id)

    assert (await world.reload(order)).status is OrderStatus.FIAT_SENT
    world.escrow.fail_settle = False
    result = await world.orders.release(order.id, seller.id)
    assert result.order.status is OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_release_retry_after_lost_reply_does_not_settle_twice() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    world.escrow.lose_settle_reply = True

    result = await world.orders.release(order.id, seller.id)

    assert result.order.status is OrderStatus.COMPLETED
    assert len(world.escrow.settle_calls) == 1


@pytest.mark.asyncio
async def test_release_without_buyer_invoice_completes_without_payout() -> None:
    world = World()
    seller = await world.user("seller")
    buyer = await world.user("buyer")
    order = await world.order(seller)
    await world.orders.take(order.id, buyer.id)
    order = await world.reload(order)
    await world.escrow.pay(order.hash)
    await world.coordinator.on_invoice_settled(order.hash)

    result = await world.orders.release(order.id, seller.id)

    assert result.order.status is OrderStatus.COMPLETED
    assert world.escrow.payouts == []
    assert await world.store.find_pending_payments() == []


@pytest.mark.asyncio
async def test_cancel_pending_order_never_touches_escrow() -> None:
    world = World()
    seller = await world.user("seller")
    order = await world.order(seller)

    result = await world.orders.cancel(order.id, seller.id)

    assert result.order.status is OrderStatus.CANCELED
    assert result.order.canceled_by == seller.id
    assert world.escrow.cancel_calls == []
    assert world.notifier.deleted == [("channel", "m1")]


@pytest.mark.asyncio
async def test_cancel_waiting_order_refunds_invoice() -> None:
    world = World()
    order, seller, buyer = await world.taken_order()

    with pytest.raises(ValidationFailure):
        await world.orders.cancel(order.id, buyer.id)
    result = await world.orders.cancel(order.id, seller.id)

    assert result.order.status is OrderStatus.CANCELED
    assert world.escrow.cancel_calls == [order.hash]
    assert world.escrow.invoices[order.hash] is InvoiceState.CANCELED


@pytest.mark.asyncio
async def test_cancel_rejected_once_funds_are_locked() -> None:
    world = World()
    order, seller, buyer = await world.active_order()

    with pytest.raises(ValidationFailure):
        await world.orders.cancel(order.id, seller.id)
    assert world.escrow.cancel_calls == []


@pytest.mark.asyncio
async def test_dispute_marks_initiator_and_counts_both() -> None:
    world = World()
    order, seller, buyer = await world.active_order()

    with pytest.raises(ValidationFailure):
        await world.orders.dispute(order.id, "stranger")
    result = await world.orders.dispute(order.id, buyer.id)

    assert result.order.status is OrderStatus.DISPUTE
    assert result.order.dispute.buyer is True
    assert result.order.dispute.seller is False
    assert (await world.store.get_user(buyer.id)).disputes == 1
    assert (await world.store.get_user(seller.id)).disputes == 1

    again = await world.orders.dispute(order.id, seller.id)
    assert again.outcome is Outcome.NOOP_TERMINAL
    assert (await world.store.get_user(seller.id)).disputes == 1


@pytest.mark.asyncio
async def test_admin_cancel_refunds_and_notifies_everyone() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.dispute(order.id, seller.id)

    result = await world.orders.admin_cancel(order.id, "admin")

    assert result.order.status is OrderStatus.CANCELED_BY_ADMIN
    assert result.order.canceled_by == "admin"
    assert world.escrow.cancel_calls == [order.hash]
    for chat_id in ("admin", seller.id, buyer.id):
        assert world.notifier.texts_for(chat_id)[-1].startswith("An admin canceled")


@pytest.mark.asyncio
async def test_admin_cancel_on_pending_order_is_bookkeeping_only() -> None:
    world = World()
    seller = await world.user("seller")
    order = await world.order(seller)

    result = await world.orders.admin_cancel(order.id, "admin")

    assert result.order.status is OrderStatus.CANCELED_BY_ADMIN
    assert world.escrow.cancel_calls == []


@pytest.mark.asyncio
async def test_admin_settle_completes_disputed_order() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.dispute(order.id, buyer.id)

    result = await world.orders.admin_settle(order.id, "admin")
    repeat = await world.orders.admin_settle(order.id, "admin")

    assert result.order.status is OrderStatus.COMPLETED_BY_ADMIN
    assert repeat.outcome is Outcome.NOOP_TERMINAL
    assert len(world.escrow.settle_calls) == 1
    assert world.escrow.payouts == ["lnbuyer"]


@pytest.mark.asyncio
async def test_admin_settle_requires_secret() -> None:
    world = World()
    seller = await world.user("seller")
    order = await world.order(seller)

    with pytest.raises(ValidationFailure):
        await world.orders.admin_settle(order.id, "admin")
    assert (await world.reload(order)).status is OrderStatus.PENDING


@pytest.mark.asyncio
async def test_add_invoice_after_release_queues_payout() -> None:
    world = World()
    seller = await world.user("seller")
    buyer = await world.user("buyer")
    order = await world.order(seller)
    await world.orders.take(order.id, buyer.id)
    order = await world.reload(order)
    await world.escrow.pay(order.hash)
    await world.coordinator.on_invoice_settled(order.hash)
    await world.orders.release(order.id, seller.id)

    with pytest.raises(ValidationFailure):
        await world.orders.add_invoice(order.id, seller.id, "lnseller")
    await world.orders.add_invoice(order.id, buyer.id, "lnlate")

    payments = await world.store.find_pending_payments(order_id=order.id)
    assert [p.payment_request for p in payments] == ["lnlate"]
    assert payments[0].amount == 10_000


@pytest.mark.asyncio
async def test_add_invoice_replaces_failed_payout_destination() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    world.escrow.fail_payments = 1
    await world.orders.release(order.id, seller.id)

    await world.orders.add_invoice(order.id, buyer.id, "lnfixed")

    payments = await world.store.find_pending_payments(order_id=order.id)
    assert len(payments) == 1
    assert payments[0].payment_request == "lnfixed"
    assert payments[0].attempts == 1


@pytest.mark.asyncio
async def test_add_invoice_rejected_when_already_paid() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.release(order.id, seller.id)

    with pytest.raises(ValidationFailure):
        await world.orders.add_invoice(order.id, buyer.id, "lnagain")


@pytest.mark.asyncio
async def test_ban_by_username() -> None:
    world = World()
    user = await world.user("mallory")

    result = await world.orders.ban("admin", "mallory")
    repeat = await world.orders.ban("admin", "mallory")

    assert result.outcome is Outcome.DONE
    assert repeat.outcome is Outcome.NOOP_TERMINAL
    assert (await world.store.get_user(user.id)).banned is True
    with pytest.raises(NotFound):
        await world.orders.ban("admin", "ghost")


@pytest.mark.asyncio
async def test_list_and_check_orders() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    done = await world.order(seller, status=OrderStatus.COMPLETED)

    listed = await world.orders.list_orders(buyer.id)
    details = await world.orders.check_order(order.id)

    assert [o.id for o in listed] == [order.id]
    assert done.id not in [o.id for o in await world.orders.list_orders(seller.id)]
    assert details.creator.id == seller.id
    assert details.buyer.id == buyer.id
    assert details.seller.id == seller.id
    with pytest.raises(NotFound):
        await world.orders.check_order("missing")


@pytest.mark.asyncio
async def test_transitions_are_published() -> None:
    world = World()
    order, seller, buyer = await world.active_order()

    events = world.bus.of(ORDER_TRANSITION)

    assert [(e["source"], e["target"]) for e in events] == [
        ("PENDING", "WAITING_PAYMENT"),
        ("WAITING_PAYMENT", "ACTIVE"),
    ]
    assert all(e["order_id"] == order.id for e in events)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "method, expected",
    [("", "Send 50.0 EUR and then"), ("SEPA", "Send 50.0 EUR via SEPA and then")],
)
async def test_active_trade_tells_buyer_how_to_pay(method: str, expected: str) -> None:
    world = World()
    order, seller, buyer = await world.active_order(payment_method=method)

    assert order.status is OrderStatus.ACTIVE
    assert any(expected in text for text in world.notifier.texts_for(buyer.id))
    assert not any(" via  " in text for text in world.notifier.texts_for(buyer.id))
