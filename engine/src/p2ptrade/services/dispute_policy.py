"""
Dispute and ban bookkeeping.

Opening a dispute counts against both parties, not only the one who opened
it: both took part in the trade that went wrong.  A user whose counter
reaches ``max_disputes`` is banned.  Bans are only lifted here when the
dispute that caused them could not be opened; otherwise unbanning is an
admin decision made outside the engine.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Tuple

from .. import messages
from ..errors import EngineError, NotFound, StaleRecord
from ..models import Order, Role, User
from ..state_machine import Trigger
from .ledger import OrderLedger
from .notifier import BaseNotifier, notify

logger = logging.getLogger(__name__)

SAVE_RETRIES = 5


class DisputePolicy:
    def __init__(self, ledger: OrderLedger, notifier: BaseNotifier, max_disputes: int) -> None:
        self.ledger = ledger
        self.store = ledger.store
        self.notifier = notifier
        self.max_disputes = max_disputes

    def count(self, user: User) -> User:
        """Add one dispute to ``user`` and ban at the threshold."""
        user.disputes += 1
        if user.disputes >= self.max_disputes and not user.banned:
            user.banned = True
            logger.warning("User %s banned after %d disputes", user.id, user.disputes)
        return user

    async def _parties(self, order: Order) -> Tuple[User, User]:
        buyer = await self.store.get_user(order.buyer_id) if order.buyer_id else None
        seller = await self.store.get_user(order.seller_id) if order.seller_id else None
        if buyer is None or seller is None:
            raise NotFound(f"order {order.id} is missing a party record")
        return buyer, seller

    async def _update(self, user: User, change: Callable[[User], User]) -> User:
        # Users are shared between orders; re-read and retry when another
        # dispute saved the same user first so no increment is lost
        for _ in range(SAVE_RETRIES):
            try:
                return await self.store.save_user(change(user))
            except StaleRecord:
                fresh = await self.store.get_user(user.id)
                if fresh is None:
                    raise NotFound(f"user {user.id} not found") from None
                user = fresh
        raise StaleRecord(f"user {user.id} kept changing; dispute not counted")

    async def _charge(self, user: User) -> Tuple[User, bool]:
        banned_now = False

        def charge(fresh: User) -> User:
            nonlocal banned_now
            banned_now = not fresh.banned
            fresh = self.count(fresh)
            banned_now = banned_now and fresh.banned
            return fresh

        user = await self._update(user, charge)
        return user, banned_now

    async def _refund(self, user: User, unban: bool) -> None:
        def undo(fresh: User) -> User:
            fresh.disputes = max(fresh.disputes - 1, 0)
            if unban:
                fresh.banned = False
            return fresh

        try:
            await self._update(user, undo)
        except EngineError:
            logger.exception("Could not take back dispute charge of user %s", user.id)

    async def open(self, order: Order, initiator: Role) -> Order:
        """Charge both parties and move ``order`` to DISPUTE.

        The caller holds the order lock and has checked the transition.
        Both counters are saved before the order moves; when either save or
        the transition fails, the charges already made are taken back so a
        retried dispute counts each party exactly once.
        """
        buyer, seller = await self._parties(order)
        charged: List[Tuple[User, bool]] = []
        try:
            for user in (buyer, seller):
                charged.append(await self._charge(user))
            order.dispute.set(initiator)
            order = await self.ledger.transition(order, Trigger.DISPUTE)
        except EngineError:
            for user, banned_now in charged:
                await self._refund(user, banned_now)
            raise
        (buyer, _), (seller, _) = charged
        text = messages.dispute_started(order, initiator.value)
        await notify(self.notifier, buyer.id, text)
        await notify(self.notifier, seller.id, text)
        return order
