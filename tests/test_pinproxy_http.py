import base64
import json

import httpx
import pytest
from fastapi import FastAPI

from pinner.pinproxy.http import get_router
from pinner.pinproxy.registrar import PinRegistrar
from pinner.pinproxy.service import AddProxy

NODE_REPLY = (
    '{"Name":"site/index.html","Hash":"bafyIndex","Size":"15"}\n'
    '{"Name":"site","Hash":"bafySite","Size":"70"}\n'
    '{"Name":"","Hash":"bafyWrap","Size":"120"}\n'
)


def build(recorder, node_respond, pins_respond=None):
    node = recorder(node_respond)
    pins = recorder(pins_respond or (lambda r: httpx.Response(200, json=[])))
    registrar = PinRegistrar("https://pins.example.com/api/pin", worker_token="w", client=pins.client())
    proxy = AddProxy(
        "http://node:5001",
        registrar=registrar,
        client=node.client(auth=("admin", "secret")),
    )
    app = FastAPI()
    app.include_router(get_router(lambda: proxy))
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://proxy")
    return client, node, pins, registrar


@pytest.mark.asyncio
async def test_add_is_relayed_and_root_registered(recorder):
    client, node, pins, registrar = build(
        recorder,
        lambda r: httpx.Response(200, text=NODE_REPLY, headers={"content-type": "application/json"}),
    )

    async with client:
        r = await client.post(
            "/api/v0/add?wrap-with-directory=true&cid-version=1",
            files={"file": ("site/index.html", b"<html>hi</html>", "text/html")},
            headers={"Authorization": "Bearer user-key"},
        )
    await registrar.drain()

    assert r.status_code == 200
    assert r.text == NODE_REPLY

    upstream = node.requests[0]
    assert upstream.url.path == "/api/v0/add"
    assert upstream.url.params["wrap-with-directory"] == "true"
    assert upstream.url.params["cid-version"] == "1"
    assert upstream.headers["authorization"] == "Basic " + base64.b64encode(b"admin:secret").decode()
    assert b"<html>hi</html>" in upstream.content

    assert len(pins.requests) == 1
    assert json.loads(pins.requests[0].content) == {
        "apiKey": "user-key",
        "pins": [{"cid": "bafyWrap", "size": 120}],
    }


@pytest.mark.asyncio
async def test_unwrapped_add_registers_root_level_entries(recorder):
    client, node, pins, registrar = build(recorder, lambda r: httpx.Response(200, text=NODE_REPLY))

    async with client:
        r = await client.post("/api/v0/add", content=b"--x--", headers={"X-API-Key": "k"})
    await registrar.drain()

    assert r.status_code == 200
    body = json.loads(pins.requests[0].content)
    assert [p["cid"] for p in body["pins"]] == ["bafySite", "bafyWrap"]


@pytest.mark.asyncio
async def test_without_api_key_nothing_is_registered(recorder):
    client, node, pins, registrar = build(recorder, lambda r: httpx.Response(200, text=NODE_REPLY))

    async with client:
        r = await client.post("/api/v0/add", content=b"--x--")
    await registrar.drain()

    assert r.status_code == 200
    assert pins.requests == []


@pytest.mark.asyncio
async def test_node_error_is_reported_as_500(recorder):
    client, node, pins, registrar = build(recorder, lambda r: httpx.Response(400, text="bad multipart"))

    async with client:
        r = await client.post("/api/v0/add", content=b"--x--", headers={"X-API-Key": "k"})

    assert r.status_code == 500
    assert r.json() == {"error": "Failed to add content to IPFS"}
    assert pins.requests == []


@pytest.mark.asyncio
async def test_pin_api_failure_does_not_affect_response(recorder):
    client, node, pins, registrar = build(
        recorder,
        lambda r: httpx.Response(200, text=NODE_REPLY),
        pins_respond=lambda r: httpx.Response(500),
    )

    async with client:
        r = await client.post("/api/v0/add?wrap-with-directory=true", content=b"--x--", headers={"X-API-Key": "k"})
    await registrar.drain()

    assert r.status_code == 200
    assert r.text == NODE_REPLY
    assert len(pins.requests) == 1
