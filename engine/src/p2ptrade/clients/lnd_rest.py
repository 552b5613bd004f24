"""
LND REST escrow client.

Talks to an LND node's REST gateway to manage hold invoices:

* ``POST /v2/invoices/hodl`` creates a hold invoice for a hash we choose.
* ``GET /v2/invoices/subscribe/{hash}`` streams state changes as
  newline-delimited JSON.
* ``POST /v2/invoices/settle`` and ``POST /v2/invoices/cancel`` finish it.
* ``GET /v2/invoices/lookup`` reads the current state.
* ``POST /v1/channels/transactions`` pays a buyer's invoice.

Requests authenticate with the admin macaroon (hex encoded) in the
``Grpc-Metadata-macaroon`` header and verify the node's self-signed
``tls.cert`` when a path is configured.

State-changing calls are made exactly once with a bounded timeout; a
failure surfaces as the matching ``EscrowError`` and the caller decides
whether to retry later.  Only the read-only lookup is retried in place.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import ssl
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..errors import (
    EscrowCancelFailed,
    EscrowError,
    EscrowSettleFailed,
    EscrowUnavailable,
    PaymentFailed,
)
from .base import BaseEscrowClient, HoldInvoice, InvoiceState, PaymentResult, new_secret

logger = logging.getLogger(__name__)


def _b64(hex_value: str) -> str:
    return base64.b64encode(bytes.fromhex(hex_value)).decode()


def _b64url(hex_value: str) -> str:
    return base64.urlsafe_b64encode(bytes.fromhex(hex_value)).decode()


class LndEscrowClient(BaseEscrowClient):
    """Asynchronous LND REST client for hold invoices."""

    def __init__(
        self,
        base_url: str,
        macaroon: Optional[str],
        *,
        tls_cert_path: Optional[str] = None,
        timeout: float = 10.0,
        invoice_expiry: int = 3600,
    ) -> None:
        """Construct the client.

        Args:
            base_url: REST endpoint of the node, e.g. ``https://localhost:8080``.
            macaroon: Hex-encoded macaroon with invoice and payment permissions.
            tls_cert_path: Path to the node's ``tls.cert``; system CAs are
                used when omitted.
            timeout: Upper bound in seconds for each request round trip.
            invoice_expiry: Seconds before an unpaid hold invoice expires.
        """
        self.base_url = base_url.rstrip("/")
        self.macaroon = macaroon or ""
        self.timeout = timeout
        self.invoice_expiry = invoice_expiry
        self._ssl: Any = ssl.create_default_context(cafile=tls_cert_path) if tls_cert_path else True
        if not self.macaroon:
            logger.warning("LND macaroon not configured; requests will be rejected by the node")

    def _headers(self) -> Dict[str, str]:
        return {"Grpc-Metadata-macaroon": self.macaroon, "Content-Type": "application/json"}

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        body = json.dumps(payload) if payload is not None else None
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=self._headers(), data=body, ssl=self._ssl
                ) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        # Truncate to keep node internals out of the logs
                        logger.error("LND %s %s failed (%s): %s", method, path, resp.status, text[:200])
                        raise EscrowError(f"LND error {resp.status}")
                    return await resp.json(content_type=None) or {}
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error("LND %s %s unreachable: %s", method, path, exc)
            raise EscrowError(f"LND unreachable: {exc}") from exc

    async def create_hold_invoice(self, amount: int, description: str) -> HoldInvoice:
        secret, hash = new_secret()
        payload = {
            "hash": _b64(hash),
            "value": str(amount),
            "memo": description,
            "expiry": str(self.invoice_expiry),
        }
        try:
            data = await self._request("POST", "/v2/invoices/hodl", payload)
        except EscrowError as exc:
            raise EscrowUnavailable(str(exc)) from exc
        request = data.get("payment_request")
        if not request:
            raise EscrowUnavailable("LND returned no payment request")
        return HoldInvoice(request=request, hash=hash, secret=secret)

    async def subscribe_invoice(self, hash: str) -> AsyncIterator[InvoiceState]:
        url = f"{self.base_url}/v2/invoices/subscribe/{_b64url(hash)}"
        # The stream stays open for the invoice's lifetime; only bound the connect
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers=self._headers(), ssl=self._ssl) as resp:
                    if resp.status >= 400:
                        raise EscrowUnavailable(f"LND subscribe error {resp.status}")
                    async for line in resp.content:
                        if not line.strip():
                            continue
                        try:
                            message = json.loads(line)
                        except ValueError:
                            logger.warning("Malformed invoice update for %s: %r", hash, line[:100])
                            continue
                        if "error" in message:
                            raise EscrowUnavailable(f"LND subscribe error: {message['error']}")
                        state = message.get("result", {}).get("state")
                        if state in InvoiceState.__members__:
                            yield InvoiceState(state)
        except aiohttp.ClientError as exc:
            raise EscrowUnavailable(f"LND subscription dropped: {exc}") from exc

    async def settle_hold_invoice(self, secret: str) -> None:
        try:
            await self._request("POST", "/v2/invoices/settle", {"preimage": _b64(secret)})
        except EscrowError as exc:
            raise EscrowSettleFailed(str(exc)) from exc

    async def cancel_hold_invoice(self, hash: str) -> None:
        try:
            await self._request("POST", "/v2/invoices/cancel", {"payment_hash": _b64(hash)})
        except EscrowError as exc:
            raise EscrowCancelFailed(str(exc)) from exc

    @retry(
        retry=retry_if_exception_type(EscrowUnavailable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(min=0.5, max=4),
        reraise=True,
    )
    async def lookup_invoice(self, hash: str) -> InvoiceState:
        try:
            data = await self._request("GET", f"/v2/invoices/lookup?payment_hash={_b64url(hash)}")
        except EscrowError as exc:
            raise EscrowUnavailable(str(exc)) from exc
        state = data.get("state")
        if state not in InvoiceState.__members__:
            raise EscrowUnavailable(f"unexpected invoice state {state!r}")
        return InvoiceState(state)

    async def pay_invoice(self, payment_request: str) -> PaymentResult:
        try:
            data = await self._request(
                "POST", "/v1/channels/transactions", {"payment_request": payment_request}
            )
        except EscrowError as exc:
            raise PaymentFailed(str(exc)) from exc
        if data.get("payment_error"):
            raise PaymentFailed(data["payment_error"])
        payment_hash = data.get("payment_hash") or ""
        preimage = data.get("payment_preimage")
        return PaymentResult(
            payment_hash=base64.b64decode(payment_hash).hex() if payment_hash else "",
            preimage=base64.b64decode(preimage).hex() if preimage else None,
            fee=int(data.get("payment_route", {}).get("total_fees", 0) or 0),
        )
