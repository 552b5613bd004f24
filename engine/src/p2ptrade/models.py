"""
Domain models for trade records using Pydantic.

``Order``, ``User`` and ``PendingPayment`` are the three records the engine
reads and mutates.  They are created elsewhere (order creation and user
registration are handled by the chat front end); the engine only advances
their fields.  Every record carries a ``version`` that the stores use for
save-if-unchanged writes.
"""

from __future__ import annotations

import datetime as dt
import enum
import uuid
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    WAITING_PAYMENT = "WAITING_PAYMENT"
    ACTIVE = "ACTIVE"
    FIAT_SENT = "FIAT_SENT"
    DISPUTE = "DISPUTE"
    COMPLETED = "COMPLETED"
    COMPLETED_BY_ADMIN = "COMPLETED_BY_ADMIN"
    CANCELED = "CANCELED"
    CANCELED_BY_ADMIN = "CANCELED_BY_ADMIN"


class OrderType(str, enum.Enum):
    SELL = "sell"
    BUY = "buy"


class Role(str, enum.Enum):
    """Side of a trade a user is on."""

    BUYER = "buyer"
    SELLER = "seller"

    @property
    def counterparty(self) -> "Role":
        return Role.SELLER if self is Role.BUYER else Role.BUYER


class PartyFlags(BaseModel):
    """One boolean per trade party, addressed through :class:`Role`."""

    buyer: bool = False
    seller: bool = False

    def get(self, role: Role) -> bool:
        return self.buyer if role is Role.BUYER else self.seller

    def set(self, role: Role, value: bool = True) -> None:
        if role is Role.BUYER:
            self.buyer = value
        else:
            self.seller = value

    @property
    def both(self) -> bool:
        return self.buyer and self.seller


class Posting(BaseModel):
    """A message published about an order in a channel or group."""

    chat_id: str
    message_id: str


class Order(BaseModel):
    """A peer-to-peer trade of satoshis for fiat."""

    id: str = Field(default_factory=_new_id)
    type: OrderType
    creator_id: str
    seller_id: Optional[str] = None
    buyer_id: Optional[str] = None
    amount: int = Field(0, ge=0, description="Sats; 0 means market price resolved at take time")
    escrow_amount: Optional[int] = Field(None, ge=0, description="Sats locked in the hold invoice")
    fiat_amount: Optional[float] = Field(None, gt=0)
    fiat_code: str
    payment_method: str = ""
    fee: float = Field(0.0, ge=0)
    hash: Optional[str] = None
    secret: Optional[str] = None
    buyer_invoice: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING
    cooperative_cancel: PartyFlags = Field(default_factory=PartyFlags)
    dispute: PartyFlags = Field(default_factory=PartyFlags)
    canceled_by: Optional[str] = None
    postings: List[Posting] = Field(default_factory=list)
    created_at: dt.datetime = Field(default_factory=_utcnow)
    taken_at: Optional[dt.datetime] = None
    version: int = 0

    @model_validator(mode="after")
    def _check_terms(self) -> "Order":
        if self.amount == 0 and self.fiat_amount is None:
            raise ValueError("market price orders need a fiat_amount")
        if self.secret is not None and self.hash is None:
            raise ValueError("secret cannot be set without hash")
        return self

    def role_of(self, user_id: str) -> Optional[Role]:
        """Return the side ``user_id`` is on, or ``None`` if not a party."""
        if user_id == self.buyer_id:
            return Role.BUYER
        if user_id == self.seller_id:
            return Role.SELLER
        return None

    def party_id(self, role: Role) -> Optional[str]:
        return self.buyer_id if role is Role.BUYER else self.seller_id

    @property
    def is_market_price(self) -> bool:
        return self.amount == 0

    @property
    def has_escrow(self) -> bool:
        return self.hash is not None


class User(BaseModel):
    id: str = Field(default_factory=_new_id)
    username: str
    disputes: int = Field(0, ge=0)
    banned: bool = False
    created_at: dt.datetime = Field(default_factory=_utcnow)
    version: int = 0


class PendingPayment(BaseModel):
    """A payout to a user's invoice that failed and awaits retry."""

    id: str = Field(default_factory=_new_id)
    order_id: str
    user_id: str
    amount: int = Field(..., gt=0)
    payment_request: str
    attempts: int = Field(0, ge=0)
    paid: bool = False
    paid_at: Optional[dt.datetime] = None
    created_at: dt.datetime = Field(default_factory=_utcnow)
    version: int = 0
