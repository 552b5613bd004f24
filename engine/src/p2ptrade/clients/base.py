"""
Escrow client interface.

A hold invoice locks the payer's funds when paid and only releases them to
us when we reveal the secret (settle), or returns them when we cancel it.
The engine needs six operations from the escrow node; concrete clients
implement them against LND's REST API or an in-memory simulation.

Clients report failures by raising the matching ``EscrowError`` subclass.
They do not retry state-changing calls; retries belong to the sweep jobs.
"""

from __future__ import annotations

import enum
import hashlib
import secrets
from dataclasses import dataclass
from typing import AsyncIterator, Optional


class InvoiceState(str, enum.Enum):
    OPEN = "OPEN"
    ACCEPTED = "ACCEPTED"
    SETTLED = "SETTLED"
    CANCELED = "CANCELED"

    @property
    def is_final(self) -> bool:
        return self in (InvoiceState.SETTLED, InvoiceState.CANCELED)


@dataclass(frozen=True)
class HoldInvoice:
    request: str
    hash: str
    secret: str


@dataclass(frozen=True)
class PaymentResult:
    payment_hash: str
    preimage: Optional[str] = None
    fee: int = 0


def new_secret() -> tuple:
    """Return a fresh ``(secret, hash)`` pair as hex strings."""
    preimage = secrets.token_bytes(32)
    return preimage.hex(), hashlib.sha256(preimage).hexdigest()


def hash_of(secret: str) -> str:
    return hashlib.sha256(bytes.fromhex(secret)).hexdigest()


class BaseEscrowClient:
    """Abstract escrow node client."""

    async def create_hold_invoice(self, amount: int, description: str) -> HoldInvoice:  # pragma: no cover - override
        """Create a hold invoice for ``amount`` sats.  Raises ``EscrowUnavailable``."""
        raise NotImplementedError

    def subscribe_invoice(self, hash: str) -> AsyncIterator[InvoiceState]:  # pragma: no cover - override
        """Yield the invoice's state each time it changes."""
        raise NotImplementedError

    async def settle_hold_invoice(self, secret: str) -> None:  # pragma: no cover - override
        """Settle by revealing ``secret``.  Raises ``EscrowSettleFailed``."""
        raise NotImplementedError

    async def cancel_hold_invoice(self, hash: str) -> None:  # pragma: no cover - override
        """Cancel and return the funds.  Raises ``EscrowCancelFailed``."""
        raise NotImplementedError

    async def lookup_invoice(self, hash: str) -> InvoiceState:  # pragma: no cover - override
        """Return the current state.  Raises ``EscrowUnavailable``."""
        raise NotImplementedError

    async def pay_invoice(self, payment_request: str) -> PaymentResult:  # pragma: no cover - override
        """Pay an external invoice.  Raises ``PaymentFailed``."""
        raise NotImplementedError
