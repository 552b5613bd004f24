"""Escrow node clients."""

from .base import BaseEscrowClient, HoldInvoice, InvoiceState, PaymentResult  # noqa: F401
from .lnd_rest import LndEscrowClient  # noqa: F401
from .paper_escrow import PaperEscrowClient  # noqa: F401
