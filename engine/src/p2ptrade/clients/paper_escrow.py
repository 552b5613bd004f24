"""
Paper escrow client for simulation.

Used when ``ESCROW_BACKEND=paper`` to run the engine without a Lightning
node.  Hold invoices live in a dictionary; nothing is paid until someone
calls :meth:`PaperEscrowClient.pay`, which plays the role of the seller
paying the invoice from their wallet.  Payouts to external invoices always
succeed and are recorded in ``payouts``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import AsyncIterator, Dict, List

from ..errors import EscrowCancelFailed, EscrowSettleFailed, EscrowUnavailable, PaymentFailed
from .base import BaseEscrowClient, HoldInvoice, InvoiceState, PaymentResult, hash_of, new_secret

logger = logging.getLogger(__name__)


class PaperEscrowClient(BaseEscrowClient):
    """Simulate a hold-invoice capable node in memory."""

    def __init__(self, latency: float = 0.0) -> None:
        self.latency = latency
        self.invoices: Dict[str, InvoiceState] = {}
        self.amounts: Dict[str, int] = {}
        self.payouts: List[str] = []
        self._watchers: Dict[str, List[asyncio.Queue]] = defaultdict(list)

    async def _delay(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    def _set_state(self, hash: str, state: InvoiceState) -> None:
        self.invoices[hash] = state
        for queue in self._watchers.get(hash, []):
            queue.put_nowait(state)

    async def create_hold_invoice(self, amount: int, description: str) -> HoldInvoice:
        await self._delay()
        if amount <= 0:
            raise EscrowUnavailable(f"invalid invoice amount {amount}")
        secret, hash = new_secret()
        self.amounts[hash] = amount
        self._set_state(hash, InvoiceState.OPEN)
        logger.info("Paper hold invoice %s for %d sats (%s)", hash, amount, description)
        return HoldInvoice(request=f"lnpaper{amount}n1{hash[:20]}", hash=hash, secret=secret)

    async def pay(self, hash: str) -> None:
        """Simulate the payer locking funds in the hold invoice."""
        if self.invoices.get(hash) is not InvoiceState.OPEN:
            raise EscrowUnavailable(f"invoice {hash} is not open")
        self._set_state(hash, InvoiceState.ACCEPTED)

    async def subscribe_invoice(self, hash: str) -> AsyncIterator[InvoiceState]:
        if hash not in self.invoices:
            raise EscrowUnavailable(f"unknown invoice {hash}")
        queue: asyncio.Queue = asyncio.Queue()
        self._watchers[hash].append(queue)
        try:
            state = self.invoices[hash]
            yield state
            while not state.is_final:
                state = await queue.get()
                yield state
        finally:
            self._watchers[hash].remove(queue)

    async def settle_hold_invoice(self, secret: str) -> None:
        await self._delay()
        hash = hash_of(secret)
        if self.invoices.get(hash) is not InvoiceState.ACCEPTED:
            raise EscrowSettleFailed(f"invoice {hash} is {self.invoices.get(hash)}; cannot settle")
        self._set_state(hash, InvoiceState.SETTLED)

    async def cancel_hold_invoice(self, hash: str) -> None:
        await self._delay()
        state = self.invoices.get(hash)
        if state not in (InvoiceState.OPEN, InvoiceState.ACCEPTED):
            raise EscrowCancelFailed(f"invoice {hash} is {state}; cannot cancel")
        self._set_state(hash, InvoiceState.CANCELED)

    async def lookup_invoice(self, hash: str) -> InvoiceState:
        await self._delay()
        try:
            return self.invoices[hash]
        except KeyError:
            raise EscrowUnavailable(f"unknown invoice {hash}") from None

    async def pay_invoice(self, payment_request: str) -> PaymentResult:
        await self._delay()
        if not payment_request:
            raise PaymentFailed("empty payment request")
        self.payouts.append(payment_request)
        _, payment_hash = new_secret()
        return PaymentResult(payment_hash=payment_hash)
