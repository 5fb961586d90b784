"""Declarations service client against an in-process aiohttp app."""
from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from eudr_bot.api import ApiError, DeclarationsApi
from eudr_bot.models import CounterpartyKind

DECLARATIONS = [
    {"id": 1, "type": "inbound", "status": "approved", "productName": "Cocoa Beans", "hsnCode": "1801",
     "quantity": 100, "unit": "kg", "batchId": "B-7", "eudrReferenceNumber": "25GHXXX"},
    {"id": 2, "type": "inbound", "status": "pending", "productName": "Coffee"},
    {"id": 3, "type": "outbound", "status": "approved", "productName": "Cocoa Butter"},
    {"id": 4, "type": "inbound", "status": "Approved", "productName": "Rubber", "extraField": True},
]


async def _list_declarations(request: web.Request) -> web.Response:
    request.app["seen_params"].append(dict(request.query))
    return web.json_response(DECLARATIONS)


async def _get_declaration(request: web.Request) -> web.Response:
    declaration_id = int(request.match_info["id"])
    if declaration_id != 1:
        return web.json_response({"message": "Declaration not found"}, status=404)
    return web.json_response({
        **DECLARATIONS[0],
        "items": [{"productName": "Cocoa Beans", "hsnCode": "1801", "quantity": 60},
                  {"productName": "Cocoa Nibs", "hsnCode": "1802", "quantity": 40}],
    })


async def _create_declaration(request: web.Request) -> web.Response:
    body = await request.json()
    request.app["created"].append((body, request.headers.get("Authorization")))
    return web.json_response({"id": 42, **body}, status=201)


async def _customers(request: web.Request) -> web.Response:
    return web.json_response([
        {"id": 5, "companyName": "Choco GmbH", "country": "Germany"},
        {"id": 6, "firstName": "Ann", "lastName": "Lee", "country": "Singapore"},
    ])


async def _suppliers(request: web.Request) -> web.Response:
    return web.json_response([{"id": 3, "name": "Acme Farms", "country": "Ghana"}])


async def _search_products(request: web.Request) -> web.Response:
    request.app["product_queries"].append(request.query.get("q"))
    return web.json_response([
        {"id": 11, "name": "Cocoa Butter", "productCode": "SF-CB-002", "productType": "semi-finished", "hsCode": "1804.00.00"},
        {"id": 12, "name": "Cocoa Shells", "productCode": "RM-CS-009", "hsCode": None},
    ])


async def _broken(request: web.Request) -> web.Response:
    return web.json_response({"message": "database unavailable"}, status=503)


async def _no_id(request: web.Request) -> web.Response:
    return web.json_response({"ok": True})


async def _slow(request: web.Request) -> web.Response:
    await asyncio.sleep(1)
    return web.json_response([])


@pytest.fixture
async def server():
    app = web.Application()
    app["created"] = []
    app["seen_params"] = []
    app["product_queries"] = []
    app.router.add_get("/api/declarations", _list_declarations)
    app.router.add_get("/api/declarations/{id}", _get_declaration)
    app.router.add_post("/api/declarations", _create_declaration)
    app.router.add_get("/api/customers", _customers)
    app.router.add_get("/api/suppliers", _suppliers)
    app.router.add_get("/api/products/search", _search_products)
    app.router.add_post("/broken/declarations", _broken)
    app.router.add_post("/noid/declarations", _no_id)
    app.router.add_get("/slow/customers", _slow)

    srv = test_utils.TestServer(app)
    await srv.start_server()
    yield srv
    await srv.close()


def _client(server: test_utils.TestServer, prefix: str = "/api", **kwargs) -> DeclarationsApi:
    return DeclarationsApi(str(server.make_url(prefix)), **kwargs)


@pytest.mark.asyncio
async def test_create_declaration_sends_payload_and_token(server):
    api = _client(server, token="secret")
    created = await api.create_declaration({"type": "outbound", "status": "pending"})

    assert created["id"] == 42
    body, auth = server.app["created"][0]
    assert body == {"type": "outbound", "status": "pending"}
    assert auth == "Bearer secret"


@pytest.mark.asyncio
async def test_source_declarations_are_approved_inbound_only(server):
    records = await _client(server).list_source_declarations()

    assert [r.id for r in records] == [1, 4]
    assert records[0].product_name == "Cocoa Beans"
    assert records[0].batch_id == "B-7"
    assert records[0].eudr_reference_number == "25GHXXX"
    assert server.app["seen_params"] == [{"type": "inbound"}]


@pytest.mark.asyncio
async def test_get_declaration_with_items(server):
    detail = await _client(server).get_declaration(1)
    assert [i.product_name for i in detail.items] == ["Cocoa Beans", "Cocoa Nibs"]


@pytest.mark.asyncio
async def test_not_found_carries_status_and_message(server):
    with pytest.raises(ApiError) as exc_info:
        await _client(server).get_declaration(99)
    assert exc_info.value.status == 404
    assert exc_info.value.message == "Declaration not found"


@pytest.mark.asyncio
async def test_counterparties(server):
    api = _client(server)
    customers = await api.list_counterparties(CounterpartyKind.CUSTOMER)
    suppliers = await api.list_counterparties(CounterpartyKind.SUPPLIER)

    assert [(c.id, c.name, c.country) for c in customers] == [(5, "Choco GmbH", "Germany"), (6, "Ann Lee", "Singapore")]
    assert all(c.kind is CounterpartyKind.CUSTOMER for c in customers)
    assert suppliers[0].name == "Acme Farms"
    assert suppliers[0].kind is CounterpartyKind.SUPPLIER


@pytest.mark.asyncio
async def test_server_error(server):
    with pytest.raises(ApiError) as exc_info:
        await _client(server, "/broken").create_declaration({"type": "inbound"})
    assert exc_info.value.status == 503
    assert "database unavailable" in str(exc_info.value)


@pytest.mark.asyncio
async def test_create_without_id_is_an_error(server):
    with pytest.raises(ApiError):
        await _client(server, "/noid").create_declaration({"type": "inbound"})


@pytest.mark.asyncio
async def test_timeout(server):
    with pytest.raises(ApiError) as exc_info:
        await _client(server, "/slow", timeout=0.2).list_counterparties(CounterpartyKind.CUSTOMER)
    assert exc_info.value.status is None


@pytest.mark.asyncio
async def test_product_search(server):
    products = await _client(server).search_products(" cocoa ")

    assert server.app["product_queries"] == ["cocoa"]
    assert [(p.id, p.name, p.hs_code) for p in products] == [
        (11, "Cocoa Butter", "1804.00.00"),
        (12, "Cocoa Shells", None),
    ]
    assert products[0].product_code == "SF-CB-002"


@pytest.mark.asyncio
async def test_short_product_query_skips_the_request(server):
    assert await _client(server).search_products("c") == []
    assert server.app["product_queries"] == []
