"""
In-memory store for orders, users and pending payments.

Used in paper mode and in tests.  Records are copied on the way in and on
the way out so callers never share mutable state with the store, which
makes it behave like a database: a caller only sees its own changes after
it saves them.

Saves follow the save-if-unchanged discipline of :class:`DatabaseStore`.
A record with ``version == 0`` is inserted; any other save succeeds only if
the stored version still equals the caller's, and the returned copy carries
the incremented version.  A lost race raises :class:`StaleRecord`.
"""

from __future__ import annotations

import asyncio
import datetime as dt
from typing import Dict, Iterable, List, Optional, TypeVar

from pydantic import BaseModel

from ..errors import StaleRecord
from ..models import Order, OrderStatus, PendingPayment, User

RecordT = TypeVar("RecordT", bound=BaseModel)


class MemoryStore:
    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._users: Dict[str, User] = {}
        self._payments: Dict[str, PendingPayment] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _save(table: Dict[str, RecordT], record: RecordT) -> RecordT:
        current = table.get(record.id)  # type: ignore[attr-defined]
        expected = record.version  # type: ignore[attr-defined]
        if current is None and expected != 0:
            raise StaleRecord(f"{type(record).__name__} {record.id} does not exist")  # type: ignore[attr-defined]
        if current is not None and current.version != expected:  # type: ignore[attr-defined]
            raise StaleRecord(
                f"{type(record).__name__} {record.id} changed concurrently"  # type: ignore[attr-defined]
            )
        saved = record.model_copy(deep=True, update={"version": expected + 1})
        table[saved.id] = saved  # type: ignore[attr-defined]
        return saved.model_copy(deep=True)

    # Orders

    async def get_order(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    async def find_orders(
        self,
        *,
        statuses: Optional[Iterable[OrderStatus]] = None,
        hash: Optional[str] = None,
        user_id: Optional[str] = None,
        taken_before: Optional[dt.datetime] = None,
    ) -> List[Order]:
        wanted = set(statuses) if statuses is not None else None
        async with self._lock:
            found = []
            for order in self._orders.values():
                if wanted is not None and order.status not in wanted:
                    continue
                if hash is not None and order.hash != hash:
                    continue
                if user_id is not None and user_id not in (
                    order.creator_id,
                    order.buyer_id,
                    order.seller_id,
                ):
                    continue
                if taken_before is not None and (
                    order.taken_at is None or order.taken_at >= taken_before
                ):
                    continue
                found.append(order.model_copy(deep=True))
            return sorted(found, key=lambda o: o.created_at)

    async def save_order(self, order: Order) -> Order:
        async with self._lock:
            return self._save(self._orders, order)

    # Users

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    async def find_user_by_username(self, username: str) -> Optional[User]:
        async with self._lock:
            for user in self._users.values():
                if user.username == username:
                    return user.model_copy(deep=True)
            return None

    async def save_user(self, user: User) -> User:
        async with self._lock:
            return self._save(self._users, user)

    # Pending payments

    async def get_pending_payment(self, payment_id: str) -> Optional[PendingPayment]:
        async with self._lock:
            payment = self._payments.get(payment_id)
            return payment.model_copy(deep=True) if payment else None

    async def find_pending_payments(
        self,
        *,
        paid: Optional[bool] = None,
        below_attempts: Optional[int] = None,
        order_id: Optional[str] = None,
    ) -> List[PendingPayment]:
        async with self._lock:
            found = [
                p.model_copy(deep=True)
                for p in self._payments.values()
                if (paid is None or p.paid == paid)
                and (below_attempts is None or p.attempts < below_attempts)
                and (order_id is None or p.order_id == order_id)
            ]
            return sorted(found, key=lambda p: p.created_at)

    async def save_pending_payment(self, payment: PendingPayment) -> PendingPayment:
        async with self._lock:
            return self._save(self._payments, payment)
