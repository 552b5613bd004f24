"""Service layer for the trade engine.

This package holds the components the worker wires together: record
stores, the order ledger, the escrow coordinator and invoice watcher, the
command handlers, and the metrics and alert consumers.
"""

from .cooperative_cancel import CooperativeCancellation  # noqa: F401
from .dispute_policy import DisputePolicy  # noqa: F401
from .escrow_coordinator import EscrowCoordinator  # noqa: F401
from .event_bus import EventBus, RedisEventBus  # noqa: F401
from .event_store import EventStore  # noqa: F401
from .invoice_watcher import InvoiceWatcher  # noqa: F401
from .ledger import OrderLedger  # noqa: F401
from .notifier import BaseNotifier, LoggingNotifier  # noqa: F401
from .order_service import OrderService  # noqa: F401
from .results import CommandResult, OrderDetails, Outcome  # noqa: F401
from .store import MemoryStore  # noqa: F401
