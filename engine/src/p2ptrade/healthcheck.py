"""
Healthcheck module for the engine container.

Used by the Docker healthcheck to verify that the worker can import its
modules and that its configuration parses.  It does not contact the escrow
node or the database; liveness of those belongs to the worker itself.
"""

import sys


def main() -> None:
    try:
        from p2ptrade import worker_main  # noqa: F401
        from p2ptrade.config import EngineConfig

        EngineConfig.from_env()
    except Exception as exc:  # pragma: no cover - healthcheck only
        print(f"Healthcheck failed: {exc}", file=sys.stderr)
        sys.exit(1)
    print("ok")


if __name__ == "__main__":
    main()
