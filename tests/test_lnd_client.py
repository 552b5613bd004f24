"""LND REST client against a stub node served by aiohttp's test server."""

from __future__ import annotations

import base64
import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from p2ptrade.clients.base import InvoiceState, hash_of
from p2ptrade.clients.lnd_rest import LndEscrowClient
from p2ptrade.errors import EscrowSettleFailed, EscrowUnavailable, PaymentFailed

MACAROON = "0201036c6e64"


def stub_node(state: dict) -> web.Application:
    async def hodl(request: web.Request) -> web.Response:
        assert request.headers["Grpc-Metadata-macaroon"] == MACAROON
        body = await request.json()
        state["hash"] = base64.b64decode(body["hash"]).hex()
        state["value"] = body["value"]
        return web.json_response({"payment_request": "lnbcrt1stub"})

    async def settle(request: web.Request) -> web.Response:
        if state.get("reject_settle"):
            return web.json_response({"message": "invoice still open"}, status=500)
        body = await request.json()
        state["settled_with"] = base64.b64decode(body["preimage"]).hex()
        return web.json_response({})

    async def lookup(request: web.Request) -> web.Response:
        return web.json_response({"state": state.get("state", "OPEN")})

    async def subscribe(request: web.Request) -> web.StreamResponse:
        resp = web.StreamResponse()
        await resp.prepare(request)
        for s in ("OPEN", "ACCEPTED", "SETTLED"):
            await resp.write(json.dumps({"result": {"state": s}}).encode() + b"\n")
        await resp.write_eof()
        return resp

    async def pay(request: web.Request) -> web.Response:
        body = await request.json()
        if body["payment_request"] == "lnbad":
            return web.json_response({"payment_error": "no_route"})
        return web.json_response({"payment_hash": base64.b64encode(b"\x01" * 32).decode()})

    app = web.Application()
    app.router.add_post("/v2/invoices/hodl", hodl)
    app.router.add_post("/v2/invoices/settle", settle)
    app.router.add_get("/v2/invoices/lookup", lookup)
    app.router.add_get("/v2/invoices/subscribe/{hash}", subscribe)
    app.router.add_post("/v1/channels/transactions", pay)
    return app


@pytest.mark.asyncio
async def test_hold_invoice_roundtrip_against_stub_node() -> None:
    state: dict = {}
    async with test_utils.TestServer(stub_node(state)) as server:
        client = LndEscrowClient(str(server.make_url("")), MACAROON, timeout=2)

        invoice = await client.create_hold_invoice(1234, "escrow")
        assert invoice.request == "lnbcrt1stub"
        assert state["hash"] == invoice.hash == hash_of(invoice.secret)
        assert state["value"] == "1234"

        states = [s async for s in client.subscribe_invoice(invoice.hash)]
        assert states == [InvoiceState.OPEN, InvoiceState.ACCEPTED, InvoiceState.SETTLED]

        await client.settle_hold_invoice(invoice.secret)
        assert state["settled_with"] == invoice.secret

        state["state"] = "SETTLED"
        assert await client.lookup_invoice(invoice.hash) is InvoiceState.SETTLED


@pytest.mark.asyncio
async def test_node_errors_map_to_escrow_errors() -> None:
    state: dict = {"reject_settle": True, "state": "WEIRD"}
    async with test_utils.TestServer(stub_node(state)) as server:
        client = LndEscrowClient(str(server.make_url("")), MACAROON, timeout=2)

        with pytest.raises(EscrowSettleFailed):
            await client.settle_hold_invoice("11" * 32)
        with pytest.raises(PaymentFailed):
            await client.pay_invoice("lnbad")
        with pytest.raises(EscrowUnavailable):
            await client.lookup_invoice("22" * 32)

        result = await client.pay_invoice("lngood")
        assert result.payment_hash == "01" * 32


@pytest.mark.asyncio
async def test_unreachable_node_is_unavailable() -> None:
    client = LndEscrowClient("http://127.0.0.1:9", MACAROON, timeout=0.5)
    with pytest.raises(EscrowUnavailable):
        await client.create_hold_invoice(1, "x")
