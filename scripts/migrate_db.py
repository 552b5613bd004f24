"""
Database migration entrypoint for the p2p trade engine.

Runs the Alembic migrations under ``alembic/`` up to the latest head
revision.  The database URI is read from ``STORE_URI`` (the same async URL
the engine uses) or passed with ``--uri``.  Use this in deployment
pipelines to create or upgrade the schema before starting the worker.
"""

from __future__ import annotations

import argparse
import os
import pathlib

from alembic import command
from alembic.config import Config


def run_migrations(uri: str | None = None, revision: str = "head") -> None:
    base_dir = pathlib.Path(__file__).resolve().parents[1]
    cfg = Config()
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    db_url = uri or os.getenv("STORE_URI")
    if db_url:
        cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, revision)


def main() -> None:
    ap = argparse.ArgumentParser(description="Upgrade the engine database schema.")
    ap.add_argument("--uri", help="SQLAlchemy async URI; defaults to $STORE_URI")
    ap.add_argument("--revision", default="head")
    args = ap.parse_args()
    run_migrations(args.uri, args.revision)


if __name__ == "__main__":
    main()
