"""Two-party cooperative cancellation of active trades."""

from __future__ import annotations

import asyncio

import pytest

from p2ptrade.errors import EscrowCancelFailed, ValidationFailure
from p2ptrade.models import OrderStatus
from p2ptrade.services.results import Outcome

from tests.helpers.world import World


@pytest.mark.asyncio
@pytest.mark.parametrize("first", ["buyer", "seller"])
async def test_both_parties_cancel_in_either_order(first: str) -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    parties = {"buyer": buyer.id, "seller": seller.id}
    second = "seller" if first == "buyer" else "buyer"

    waiting = await world.orders.cooperative_cancel(order.id, parties[first])
    assert waiting.outcome is Outcome.WAITING_COUNTERPARTY
    assert waiting.order.status is OrderStatus.ACTIVE
    assert getattr(waiting.order.cooperative_cancel, first) is True
    assert f"/cooperativecancel {order.id}" in world.notifier.buttons_for(parties[second])
    assert world.escrow.cancel_calls == []

    done = await world.orders.cooperative_cancel(order.id, parties[second])
    assert done.outcome is Outcome.DONE
    assert done.order.status is OrderStatus.CANCELED
    assert world.escrow.cancel_calls == [order.hash]
    assert world.notifier.deleted == [("channel", "m1")]


@pytest.mark.asyncio
async def test_same_party_twice_is_guidance_not_progress() -> None:
    world = World()
    order, seller, buyer = await world.active_order()

    await world.orders.cooperative_cancel(order.id, buyer.id)
    again = await world.orders.cooperative_cancel(order.id, buyer.id)

    assert again.outcome is Outcome.ALREADY_REQUESTED
    assert again.changed is False
    assert (await world.reload(order)).status is OrderStatus.ACTIVE
    assert world.notifier.texts_for(buyer.id)[-1].startswith("You already asked")


@pytest.mark.asyncio
async def test_only_active_orders_and_only_parties() -> None:
    world = World()
    order, seller, buyer = await world.taken_order()

    with pytest.raises(ValidationFailure):
        await world.orders.cooperative_cancel(order.id, buyer.id)

    await world.escrow.pay(order.hash)
    await world.coordinator.on_invoice_settled(order.hash)
    with pytest.raises(ValidationFailure):
        await world.orders.cooperative_cancel(order.id, "stranger")


@pytest.mark.asyncio
async def test_finished_order_is_a_noop() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.cooperative_cancel(order.id, buyer.id)
    await world.orders.cooperative_cancel(order.id, seller.id)

    late = await world.orders.cooperative_cancel(order.id, buyer.id)

    assert late.outcome is Outcome.NOOP_TERMINAL
    assert len(world.escrow.cancel_calls) == 1


@pytest.mark.asyncio
async def test_simultaneous_requests_refund_exactly_once() -> None:
    world = World()
    order, seller, buyer = await world.active_order()

    results = await asyncio.gather(
        world.orders.cooperative_cancel(order.id, buyer.id),
        world.orders.cooperative_cancel(order.id, seller.id),
    )

    assert sorted(r.outcome.value for r in results) == ["done", "waiting_counterparty"]
    assert world.escrow.cancel_calls == [order.hash]
    assert (await world.reload(order)).status is OrderStatus.CANCELED


@pytest.mark.asyncio
async def test_refund_failure_keeps_order_active() -> None:
    world = World()
    order, seller, buyer = await world.active_order()
    await world.orders.cooperative_cancel(order.id, seller.id)
    world.escrow.fail_cancel = True

    with pytest.raises(EscrowCancelFailed):
        await world.orders.cooperative_cancel(order.id, buyer.id)

    order = await world.reload(order)
    assert order.status is OrderStatus.ACTIVE
    assert order.cooperative_cancel.seller is True
    assert order.cooperative_cancel.buyer is False

    world.escrow.fail_cancel = False
    done = await world.orders.cooperative_cancel(order.id, buyer.id)
    assert done.order.status is OrderStatus.CANCELED
