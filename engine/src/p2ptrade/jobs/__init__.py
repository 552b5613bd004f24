"""Periodic background jobs: payout retries and order expiry."""

from .order_expiry import OrderExpirySweep  # noqa: F401
from .pending_payments import PendingPaymentSweep  # noqa: F401
from .scheduler import PeriodicJob  # noqa: F401
