"""Exception types raised by the trade engine.

Every error is scoped to the single order, user or payment being handled;
none of them is fatal to the process.  Callers report ``ValidationFailure``
and ``NotFound`` back to the user, while escrow errors mean the state change
was withheld and will be retried by a sweep job or an admin command.
"""

from __future__ import annotations


class EngineError(Exception):
    """Base class for all trade engine errors."""


class ValidationFailure(EngineError):
    """A precondition of the requested operation does not hold."""


class NotFound(EngineError):
    """The referenced order, user or payment does not exist."""


class StaleRecord(EngineError):
    """A save lost against a concurrent write of the same record."""


class EscrowError(EngineError):
    """A call to the escrow node failed."""


class EscrowUnavailable(EscrowError):
    """The hold invoice could not be created or the node was unreachable."""


class EscrowSettleFailed(EscrowError):
    """Settling a hold invoice failed; the order was not advanced."""


class EscrowCancelFailed(EscrowError):
    """Canceling a hold invoice failed; the order was not advanced."""


class PaymentFailed(EscrowError):
    """Paying out to a counterparty's invoice failed."""
