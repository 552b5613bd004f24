"""Pytest configuration for path setup.

The test suite imports the ``p2ptrade`` package from ``engine/src`` and
the shared helpers from ``tests/helpers``.  When pytest is executed as an
installed script, neither directory is automatically on ``sys.path``.
This file ensures that both the project root and ``engine/src`` are
available for imports during test collection.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]

for path in (ROOT / "engine" / "src", ROOT):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
