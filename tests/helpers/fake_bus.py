"""Fake in-memory event bus for testing.

This helper provides a simple event bus implementation that records
published events.  Each call to ``publish(event_type, data)`` appends a
tuple ``(event_type, data)`` to the ``events`` list.  Tests inspect the
events afterwards to assert on ordering and payloads.
"""

from __future__ import annotations

from typing import Any, List, Tuple


class FakeBus:
    """A minimal event bus used for capturing events in tests."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    async def publish(self, event_type: str, data: Any) -> None:
        """Record an event."""
        self.events.append((event_type, data))

    def of(self, event_type: str) -> List[Any]:
        """Payloads published on ``event_type``, oldest first."""
        return [data for kind, data in self.events if kind == event_type]
