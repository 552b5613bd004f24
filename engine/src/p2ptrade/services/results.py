"""Results returned by command handlers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from ..models import Order, User


class Outcome(str, enum.Enum):
    DONE = "done"
    # The order already finished or is already where the command would take
    # it; nothing changed and the caller just informs the user
    NOOP_TERMINAL = "noop_terminal"
    WAITING_COUNTERPARTY = "waiting_counterparty"
    ALREADY_REQUESTED = "already_requested"


@dataclass
class CommandResult:
    outcome: Outcome
    order: Optional[Order] = None
    message: str = ""

    @property
    def changed(self) -> bool:
        return self.outcome is not Outcome.NOOP_TERMINAL and self.outcome is not Outcome.ALREADY_REQUESTED


@dataclass
class OrderDetails:
    """An order with the user records of everyone involved."""

    order: Order
    creator: Optional[User] = None
    buyer: Optional[User] = None
    seller: Optional[User] = None
