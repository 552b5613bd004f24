"""
Metrics Service
===============

Subscribes to ``order_transition`` events on the event bus and publishes
them as Prometheus metrics.  It does not rely on global state: every
metric is registered on the registry passed in, which defaults to the
process-wide one.

Configuration
-------------

* ``PROMETHEUS_PORT``: port for the metrics HTTP endpoint, read by
  :class:`~p2ptrade.config.EngineConfig`.  ``0`` disables the endpoint;
  the counters are still kept.

Metrics
-------

* ``p2p_order_transitions_total{source=...,target=...}``: committed status
  changes.
* ``p2p_last_transition_timestamp``: unix time of the last committed
  status change.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, start_http_server

from .event_bus import ORDER_TRANSITION

logger = logging.getLogger(__name__)


class MetricsService:
    """Count order transitions for Prometheus."""

    def __init__(
        self,
        event_bus: Any,
        port: Optional[int] = None,
        registry: CollectorRegistry = REGISTRY,
    ) -> None:
        self.event_bus = event_bus
        self.port = port
        self.registry = registry
        self.transitions = Counter(
            "p2p_order_transitions",
            "Committed order status changes",
            labelnames=["source", "target"],
            registry=registry,
        )
        self.last_transition = Gauge(
            "p2p_last_transition_timestamp",
            "Unix time of the last committed order status change",
            registry=registry,
        )

    def start_server(self) -> None:
        if self.port is None:
            logger.info("Prometheus endpoint disabled")
            return
        try:
            start_http_server(self.port, registry=self.registry)
            logger.info("Prometheus endpoint listening on port %d", self.port)
        except OSError as exc:
            # Another service in this process already bound the port
            logger.debug("Prometheus server likely already running: %s", exc)

    def record(self, message: Dict[str, Any]) -> bool:
        source = message.get("source")
        target = message.get("target")
        if not source or not target:
            logger.debug("Skipping transition event without source/target: %r", message)
            return False
        self.transitions.labels(source=source, target=target).inc()
        self.last_transition.set_to_current_time()
        return True

    async def run(self) -> None:
        """Consume ``order_transition`` events forever."""
        if self.event_bus is None:
            logger.error("MetricsService requires an event bus")
            return
        self.start_server()
        async for message in self.event_bus.subscribe(ORDER_TRANSITION):
            if not isinstance(message, dict):
                continue
            self.record(message)
