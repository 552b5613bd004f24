"""Append-only audit log of order transitions.

Each committed status change is written as one JSON line holding the
event type and payload.  File writes run in a thread via
``asyncio.to_thread`` to keep the event loop free.  Enable it by setting
``EVENT_STORE_PATH``; the log is useful to reconstruct what happened to a
disputed order after the fact.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import os
from typing import Any, Dict


class EventStore:
    """Append-only JSON Lines event logger."""

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(path)
        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        self._lock = asyncio.Lock()

    async def log(self, event_type: str, data: Dict[str, Any]) -> None:
        """Append an event stamped with the current UTC time."""
        record = {
            "type": event_type,
            "at": dt.datetime.now(dt.timezone.utc).isoformat(),
            "data": data,
        }
        line = json.dumps(record, ensure_ascii=False, default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append_to_file, line)

    def _append_to_file(self, line: str) -> None:
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)
