"""
Run the background sweeps once and exit.

Operators use this to force a payout retry round or an expiry pass outside
the worker's schedule, for example from cron or after fixing a node
outage.  Configuration comes from the same environment variables as the
worker (``STORE_URI``, ``ESCROW_BACKEND``, ``LND_*`` ...).

Usage
-----

.. code-block:: bash

    python scripts/run_sweeps.py            # both sweeps
    python scripts/run_sweeps.py --only expiry
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from p2ptrade.config import EngineConfig
from p2ptrade.services.db_store import DatabaseStore
from p2ptrade.services.event_bus import RedisEventBus
from p2ptrade.worker_main import build_engine

logger = logging.getLogger("run_sweeps")


async def main_async(only: str | None) -> None:
    config = EngineConfig.from_env()
    engine = build_engine(config)
    try:
        if only in (None, "payments"):
            paid = await engine.payouts.run_once()
            print(f"pending payments paid: {paid}")
        if only in (None, "expiry"):
            expired = await engine.expiry.run_once()
            print(f"orders expired: {expired}")
    finally:
        await engine.watcher.stop()
        if isinstance(engine.event_bus, RedisEventBus):
            await engine.event_bus.close()
        if isinstance(engine.store, DatabaseStore):
            await engine.store.dispose()


def main() -> None:
    ap = argparse.ArgumentParser(description="Run the engine sweeps once.")
    ap.add_argument("--only", choices=["payments", "expiry"], help="run a single sweep")
    args = ap.parse_args()
    logging.basicConfig(level=EngineConfig.from_env().log_level)
    asyncio.run(main_async(args.only))


if __name__ == "__main__":  # pragma: no cover
    main()
