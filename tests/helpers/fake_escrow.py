"""Escrow client double with call counters and failure switches.

Built on the paper client so invoice states behave like a real node.
Tests flip the ``fail_*`` attributes to simulate node errors:

``fail_create``
    ``create_hold_invoice`` raises :class:`EscrowUnavailable`.
``lose_settle_reply`` / ``lose_cancel_reply``
    the call goes through on the node but the reply is lost, so the
    client raises :class:`EscrowUnavailable` anyway.
``fail_settle`` / ``fail_cancel``
    the call is rejected and nothing changes.
``fail_payments``
    number of upcoming ``pay_invoice`` calls that raise
    :class:`PaymentFailed`.
``fail_lookup``
    ``lookup_invoice`` raises :class:`EscrowUnavailable`.
"""

from __future__ import annotations

from typing import List

from p2ptrade.clients.base import HoldInvoice, InvoiceState, PaymentResult
from p2ptrade.clients.paper_escrow import PaperEscrowClient
from p2ptrade.errors import EscrowUnavailable, PaymentFailed


class FakeEscrowClient(PaperEscrowClient):
    def __init__(self) -> None:
        super().__init__()
        self.fail_create = False
        self.fail_settle = False
        self.fail_cancel = False
        self.lose_settle_reply = False
        self.lose_cancel_reply = False
        self.fail_lookup = False
        self.fail_payments = 0
        self.settle_calls: List[str] = []
        self.cancel_calls: List[str] = []
        self.pay_calls: List[str] = []

    async def create_hold_invoice(self, amount: int, description: str) -> HoldInvoice:
        if self.fail_create:
            raise EscrowUnavailable("node offline")
        return await super().create_hold_invoice(amount, description)

    async def settle_hold_invoice(self, secret: str) -> None:
        self.settle_calls.append(secret)
        if self.fail_settle:
            raise EscrowUnavailable("node offline")
        await super().settle_hold_invoice(secret)
        if self.lose_settle_reply:
            raise EscrowUnavailable("connection reset")

    async def cancel_hold_invoice(self, hash: str) -> None:
        self.cancel_calls.append(hash)
        if self.fail_cancel:
            raise EscrowUnavailable("node offline")
        await super().cancel_hold_invoice(hash)
        if self.lose_cancel_reply:
            raise EscrowUnavailable("connection reset")

    async def lookup_invoice(self, hash: str) -> InvoiceState:
        if self.fail_lookup:
            raise EscrowUnavailable("node offline")
        return await super().lookup_invoice(hash)

    async def pay_invoice(self, payment_request: str) -> PaymentResult:
        self.pay_calls.append(payment_request)
        if self.fail_payments:
            self.fail_payments -= 1
            raise PaymentFailed("no route")
        return await super().pay_invoice(payment_request)
