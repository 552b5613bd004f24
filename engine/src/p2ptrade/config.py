"""
Runtime configuration for the trade engine.

All settings come from environment variables; credentials go through the
secrets manager so they can also be mounted as files.  See
:meth:`EngineConfig.from_env` for the variable names and defaults.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from .secrets_manager import BaseSecretsManager, get_default_secrets_manager


@dataclass
class EngineConfig:
    max_payment_attempts: int = 3
    max_disputes: int = 4
    pending_payment_interval: float = 300.0
    order_expiry_interval: float = 300.0
    order_payment_timeout: float = 900.0
    channel: str = ""
    escrow_backend: str = "paper"
    lnd_rest_url: str = "https://localhost:8080"
    lnd_macaroon: Optional[str] = None
    lnd_tls_cert_path: Optional[str] = None
    escrow_timeout: float = 10.0
    invoice_description: str = "P2P escrow"
    invoice_expiry: int = 3600
    store_uri: Optional[str] = None
    redis_host: Optional[str] = None
    redis_port: int = 6379
    prometheus_port: Optional[int] = 9108
    event_store_path: Optional[str] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, secrets: Optional[BaseSecretsManager] = None) -> "EngineConfig":
        """Build a configuration from the process environment.

        ``PENDING_PAYMENT_WINDOW`` and ``ORDER_PAYMENT_TIMEOUT`` are given in
        minutes, ``ORDER_EXPIRY_INTERVAL`` and ``ESCROW_TIMEOUT`` in seconds.
        Setting ``PROMETHEUS_PORT`` to ``0`` disables the metrics endpoint.
        """
        secrets = secrets or get_default_secrets_manager()
        prometheus_port = int(os.environ.get("PROMETHEUS_PORT", "9108"))
        return cls(
            max_payment_attempts=int(os.environ.get("MAX_PAYMENT_ATTEMPTS", "3")),
            max_disputes=int(os.environ.get("MAX_DISPUTES", "4")),
            pending_payment_interval=float(os.environ.get("PENDING_PAYMENT_WINDOW", "5")) * 60,
            order_expiry_interval=float(os.environ.get("ORDER_EXPIRY_INTERVAL", "300")),
            order_payment_timeout=float(os.environ.get("ORDER_PAYMENT_TIMEOUT", "15")) * 60,
            channel=os.environ.get("CHANNEL", ""),
            escrow_backend=os.environ.get("ESCROW_BACKEND", "paper").lower(),
            lnd_rest_url=os.environ.get("LND_REST_URL", "https://localhost:8080"),
            lnd_macaroon=secrets.get_secret("LND_MACAROON"),
            lnd_tls_cert_path=os.environ.get("LND_TLS_CERT_PATH") or None,
            escrow_timeout=float(os.environ.get("ESCROW_TIMEOUT", "10")),
            invoice_description=os.environ.get("INVOICE_DESCRIPTION", "P2P escrow"),
            invoice_expiry=int(os.environ.get("INVOICE_EXPIRY", "3600")),
            store_uri=os.environ.get("STORE_URI") or None,
            redis_host=os.environ.get("REDIS_HOST") or None,
            redis_port=int(os.environ.get("REDIS_PORT", "6379")),
            prometheus_port=prometheus_port or None,
            event_store_path=os.environ.get("EVENT_STORE_PATH") or None,
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


__all__ = ["EngineConfig"]
