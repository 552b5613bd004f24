"""
Event bus carrying escrow and order events between components.

Topics:

``invoice_update``
    ``{"hash": str, "state": str}`` published by the invoice watcher each
    time a hold invoice changes state; consumed by the escrow coordinator.
``order_transition``
    ``{"order_id": str, "source": str, "target": str, "trigger": str}``
    published after every committed status change; consumed by metrics.
``payment_abandoned``
    ``{"payment_id": str, "order_id": str, "user_id": str, "amount": int,
    "attempts": int}`` published when a payout exhausts its attempts;
    consumed by the alert service.

Each topic has a single consumer.  The in-process bus queues every event
for it.  The Redis bus uses Pub/Sub, which drops events published while no
subscriber is connected; the coordinator resubscribes to waiting invoices
on startup and the expiry sweep resolves anything still missed.  The
invoice watcher may publish the same state twice, so consumers handle
duplicates idempotently.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any, AsyncIterator, Dict

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

INVOICE_UPDATE = "invoice_update"
ORDER_TRANSITION = "order_transition"
PAYMENT_ABANDONED = "payment_abandoned"


class EventBus:
    """In-process event bus with one asyncio queue per topic."""

    def __init__(self) -> None:
        self._queues: Dict[str, asyncio.Queue] = defaultdict(asyncio.Queue)

    async def publish(self, event_type: str, data: Any) -> None:
        """Publish an event to the subscriber of the given type."""
        await self._queues[event_type].put(data)

    async def subscribe(self, event_type: str) -> AsyncIterator[Any]:
        """Yield events of a given type as they arrive."""
        queue = self._queues[event_type]
        while True:
            data = await queue.get()
            yield data

    def pending(self, event_type: str) -> int:
        """Number of events waiting on ``event_type``."""
        return self._queues[event_type].qsize()


class RedisEventBus(EventBus):
    """
    Event bus on Redis Pub/Sub, for running the invoice watcher and the
    coordinator in separate processes.  Payloads are JSON encoded.  Events
    published while no subscriber is connected are lost; the coordinator's
    startup resubscription and the expiry sweep cover that gap.
    """

    def __init__(self, host: str = "localhost", port: int = 6379) -> None:
        super().__init__()
        self._redis = aioredis.Redis(host=host, port=port, decode_responses=True)

    async def publish(self, event_type: str, data: Any) -> None:
        await self._redis.publish(event_type, json.dumps(data))

    async def subscribe(self, event_type: str) -> AsyncIterator[Any]:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(event_type)
        try:
            while True:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if not message or message["type"] != "message":
                    continue
                try:
                    yield json.loads(message["data"])
                except ValueError:
                    logger.warning("Dropping malformed %s event: %r", event_type, message["data"])
        finally:
            await pubsub.unsubscribe(event_type)
            await pubsub.aclose()

    async def close(self) -> None:
        await self._redis.aclose()
