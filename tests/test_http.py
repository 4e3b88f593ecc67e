import json

import pytest

from langproxy.transport.http import HttpTransport, create_app


class MockProxy:
    def __init__(self):
        self.calls = []

    async def route_request(self, method, params):
        self.calls.append((method, params))
        if method == "hover":
            return {"result": {"contents": "str"}}
        return {"error": {"code": -32601, "message": f"Unknown method: {method}"}}

    async def get_stats(self):
        return {"served": len(self.calls), "pending": 0}


async def request(app, method: str, path: str, body: bytes = b""):
    messages = [{"type": "http.request", "body": body, "more_body": False}]
    sent = []

    async def receive():
        return messages.pop(0)

    async def send(message):
        sent.append(message)

    await app({"type": "http", "method": method, "path": path}, receive, send)
    status = sent[0]["status"]
    raw = b"".join(m.get("body", b"") for m in sent[1:])
    return status, raw


@pytest.mark.asyncio
async def test_post_hover_returns_result():
    proxy = MockProxy()
    app = create_app(proxy)
    body = json.dumps({"method": "hover", "params": {"position": {"line": 2}}}).encode()
    status, raw = await request(app, "POST", "/api", body)
    assert status == 200
    assert json.loads(raw) == {"result": {"contents": "str"}}
    assert proxy.calls == [("hover", {"position": {"line": 2}})]


@pytest.mark.asyncio
async def test_post_unknown_method_is_500():
    status, raw = await request(create_app(MockProxy()), "POST", "/api", b'{"method":"x"}')
    assert status == 500
    assert b"Unknown method: x" in raw


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [b"", b"{oops", b"[1]"])
async def test_post_unparseable_body_is_400(body):
    proxy = MockProxy()
    status, raw = await request(create_app(proxy), "POST", "/api", body)
    assert status == 400
    assert raw.startswith(b"Failed to parse request")
    assert proxy.calls == []


@pytest.mark.asyncio
async def test_health_and_not_found():
    app = create_app(MockProxy(), path="/lsp")
    status, raw = await request(app, "GET", "/health")
    assert status == 200
    assert json.loads(raw) == {"status": "ok", "served": 0, "pending": 0}
    status, _ = await request(app, "POST", "/api", b"{}")
    assert status == 404


def test_transport_not_running_until_served():
    transport = HttpTransport(MockProxy(), port=0)
    assert transport.is_running is False


@pytest.mark.asyncio
async def test_websocket_scope_is_closed_not_crashed():
    proxy = MockProxy()
    sent = []

    async def receive():
        return {"type": "websocket.connect"}

    async def send(message):
        sent.append(message)

    await create_app(proxy)({"type": "websocket", "path": "/api"}, receive, send)
    assert sent == [{"type": "websocket.close", "code": 1003}]
    assert proxy.calls == []


@pytest.mark.asyncio
async def test_aclose_asks_server_to_exit():
    transport = HttpTransport(MockProxy(), port=0)
    await transport.aclose()
    assert transport._server.should_exit is True
