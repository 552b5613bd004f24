"""
Entry point for the trade engine worker.

Builds every component from :class:`~p2ptrade.config.EngineConfig` and
runs the long-lived tasks concurrently: the escrow coordinator consuming
invoice updates, the payout and expiry sweeps, and the metrics and alert
consumers.  On startup the coordinator resubscribes to the hold invoices of
orders still waiting for payment, so a restart does not lose a payment
that happened while the worker was down.

If any task exits with an exception the others are canceled and the
process ends, leaving restarts to the container supervisor.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional

from .clients import BaseEscrowClient, LndEscrowClient, PaperEscrowClient
from .config import EngineConfig
from .jobs import OrderExpirySweep, PendingPaymentSweep, PeriodicJob
from .services.alert_service import AlertService
from .services.cooperative_cancel import CooperativeCancellation
from .services.db_store import DatabaseStore
from .services.dispute_policy import DisputePolicy
from .services.escrow_coordinator import EscrowCoordinator
from .services.event_bus import EventBus, RedisEventBus
from .services.event_store import EventStore
from .services.invoice_watcher import InvoiceWatcher
from .services.ledger import OrderLedger
from .services.metrics_service import MetricsService
from .services.notifier import BaseNotifier, LoggingNotifier
from .services.order_service import OrderService
from .services.store import MemoryStore

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    config: EngineConfig
    store: Any
    escrow: BaseEscrowClient
    event_bus: EventBus
    notifier: BaseNotifier
    ledger: OrderLedger
    watcher: InvoiceWatcher
    coordinator: EscrowCoordinator
    orders: OrderService
    payouts: PendingPaymentSweep
    expiry: OrderExpirySweep


def build_escrow_client(config: EngineConfig) -> BaseEscrowClient:
    if config.escrow_backend == "paper":
        return PaperEscrowClient()
    if config.escrow_backend == "lnd":
        if not config.lnd_macaroon:
            raise ValueError("ESCROW_BACKEND=lnd requires LND_MACAROON or LND_MACAROON_FILE")
        return LndEscrowClient(
            config.lnd_rest_url,
            config.lnd_macaroon,
            tls_cert_path=config.lnd_tls_cert_path,
            timeout=config.escrow_timeout,
            invoice_expiry=config.invoice_expiry,
        )
    raise ValueError(f"unknown ESCROW_BACKEND {config.escrow_backend!r}")


def build_engine(config: EngineConfig, notifier: Optional[BaseNotifier] = None) -> Engine:
    """Wire every component for ``config``.  Nothing is started yet."""
    store = DatabaseStore.from_uri(config.store_uri) if config.store_uri else MemoryStore()
    escrow = build_escrow_client(config)
    event_bus = RedisEventBus(config.redis_host, config.redis_port) if config.redis_host else EventBus()
    notifier = notifier or LoggingNotifier()
    event_store = EventStore(config.event_store_path) if config.event_store_path else None
    ledger = OrderLedger(store, event_bus=event_bus, event_store=event_store)
    watcher = InvoiceWatcher(escrow, event_bus)
    coordinator = EscrowCoordinator(
        escrow,
        ledger,
        notifier,
        watcher=watcher,
        event_bus=event_bus,
        invoice_description=config.invoice_description,
        max_payment_attempts=config.max_payment_attempts,
    )
    orders = OrderService(
        ledger,
        coordinator,
        notifier,
        DisputePolicy(ledger, notifier, config.max_disputes),
        CooperativeCancellation(ledger, coordinator, notifier),
    )
    payouts = PendingPaymentSweep(
        ledger, coordinator, notifier, max_attempts=config.max_payment_attempts
    )
    expiry = OrderExpirySweep(ledger, coordinator, notifier, timeout=config.order_payment_timeout)
    return Engine(
        config=config,
        store=store,
        escrow=escrow,
        event_bus=event_bus,
        notifier=notifier,
        ledger=ledger,
        watcher=watcher,
        coordinator=coordinator,
        orders=orders,
        payouts=payouts,
        expiry=expiry,
    )


def engine_tasks(engine: Engine) -> List[asyncio.Task]:
    config = engine.config
    jobs = [
        PeriodicJob("pending_payments", config.pending_payment_interval, engine.payouts.run_once),
        PeriodicJob("order_expiry", config.order_expiry_interval, engine.expiry.run_once),
    ]
    metrics = MetricsService(engine.event_bus, port=config.prometheus_port)
    alerts = AlertService(engine.event_bus)
    tasks = [
        asyncio.create_task(engine.coordinator.run(), name="escrow_coordinator"),
        asyncio.create_task(metrics.run(), name="metrics"),
        asyncio.create_task(alerts.run(), name="alerts"),
    ]
    tasks.extend(asyncio.create_task(job.run_forever(), name=job.name) for job in jobs)
    return tasks


async def main() -> None:
    """Run all engine tasks concurrently and wait for them to finish."""
    config = EngineConfig.from_env()
    logging.basicConfig(level=config.log_level)

    engine = build_engine(config)
    if isinstance(engine.store, DatabaseStore):
        await engine.store.init_db()
    await engine.coordinator.resubscribe()

    tasks = engine_tasks(engine)
    logger.info(
        "Engine started: escrow=%s store=%s bus=%s",
        config.escrow_backend,
        type(engine.store).__name__,
        type(engine.event_bus).__name__,
    )
    # Wait for any task to finish; if one exits, cancel the others
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    for task in pending:
        task.cancel()
    for task in done:
        exc = task.exception()
        if exc:
            logger.exception("Engine task raised an exception", exc_info=exc)
    await engine.watcher.stop()
    if isinstance(engine.event_bus, RedisEventBus):
        await engine.event_bus.close()
    if isinstance(engine.store, DatabaseStore):
        await engine.store.dispose()
    logger.info("Engine exiting")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
