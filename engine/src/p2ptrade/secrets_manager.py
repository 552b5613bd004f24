"""
secrets_manager
================

Loads credentials the engine needs at runtime: the LND macaroon, the Slack
bot token and the Teams webhook.  A value is read from the environment, or,
when ``{NAME}_FILE`` is set, from the file it points to.  The file form lets
operators mount the macaroon (usually a binary file exported as hex) or a
token as a Docker/Kubernetes secret instead of putting it in the
environment.  When both are set, the file wins.

Example usage::

    from p2ptrade.secrets_manager import get_default_secrets_manager

    secrets = get_default_secrets_manager()
    macaroon = secrets.get_secret("LND_MACAROON")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class BaseSecretsManager:
    """Abstract base class for secrets managers."""

    def get_secret(self, name: str) -> Optional[str]:  # pragma: no cover - override
        """Return the secret value for ``name`` or ``None`` if unavailable."""
        raise NotImplementedError


class EnvFileSecretsManager(BaseSecretsManager):
    """Read secrets from ``{name}`` or from the file named by ``{name}_FILE``.

    Relative file paths are resolved against ``base_path`` when one is
    given.  Values are cached after the first lookup, including misses.
    """

    def __init__(self, base_path: Optional[Path] = None) -> None:
        self.base_path = base_path
        self._cache: Dict[str, Optional[str]] = {}

    def get_secret(self, name: str) -> Optional[str]:
        if name in self._cache:
            return self._cache[name]

        file_path = os.getenv(f"{name}_FILE")
        if file_path:
            path = Path(file_path)
            if not path.is_absolute() and self.base_path is not None:
                path = self.base_path / path
            value = self._read_file(path)
        else:
            value = os.getenv(name) or None

        self._cache[name] = value
        return value

    @staticmethod
    def _read_file(path: Path) -> Optional[str]:
        try:
            raw = path.read_bytes()
        except OSError as exc:
            logger.warning("Failed to read secret file %s: %s", path, exc)
            return None
        # LND macaroons are binary; anything that is not utf-8 text is hex encoded
        try:
            return raw.decode("utf-8").strip()
        except UnicodeDecodeError:
            return raw.hex()


def get_default_secrets_manager() -> BaseSecretsManager:
    """Return the env/file secrets manager rooted at ``SECRETS_BASE_PATH``."""
    base = os.getenv("SECRETS_BASE_PATH")
    return EnvFileSecretsManager(base_path=Path(base) if base else None)


__all__ = [
    "BaseSecretsManager",
    "EnvFileSecretsManager",
    "get_default_secrets_manager",
]
