"""Tests for the httpx transport using ``httpx.MockTransport``."""

import httpx
import pytest

from relay.errors import HttpStatusError
from relay.errors import TransportConnectionError
from relay.errors import TransportNetworkError
from relay.errors import TransportTimeout
from relay.services.transport import HttpxTransport


def _transport(settings, handler):
    client = httpx.AsyncClient(base_url=settings.api_base_url, transport=httpx.MockTransport(handler))
    return HttpxTransport(settings, client=client), client


@pytest.mark.asyncio
async def test_successful_json_response(settings):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = request.content
        return httpx.Response(201, json={"success": True, "data": {"id": "c1"}})

    transport, client = _transport(settings, handler)

    resp = await transport.send(
        "POST",
        "/conversations",
        body={"title": "New"},
        headers={"Authorization": "Bearer access-1"},
        params={"page": 1},
    )

    assert resp.status_code == 201
    assert resp.data == {"id": "c1"}
    assert seen["url"] == "http://testserver/api/conversations?page=1"
    assert seen["auth"] == "Bearer access-1"
    assert b'"title"' in seen["body"]
    await client.aclose()


@pytest.mark.asyncio
async def test_error_status_carries_server_message(settings):
    transport, client = _transport(
        settings, lambda request: httpx.Response(404, json={"success": False, "message": "Conversation not found"})
    )

    with pytest.raises(HttpStatusError) as exc_info:
        await transport.send("GET", "/conversations/missing")

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Conversation not found"
    await client.aclose()


@pytest.mark.asyncio
async def test_plain_text_error_body_is_kept_verbatim(settings):
    transport, client = _transport(settings, lambda request: httpx.Response(502, text="Bad gateway"))

    with pytest.raises(HttpStatusError) as exc_info:
        await transport.send("GET", "/conversations")

    assert exc_info.value.status_code == 502
    assert exc_info.value.message == "Bad gateway"
    await client.aclose()


@pytest.mark.asyncio
async def test_unauthorized_is_flagged_as_auth_failure(settings):
    transport, client = _transport(settings, lambda request: httpx.Response(401, json={"message": "jwt expired"}))

    with pytest.raises(HttpStatusError) as exc_info:
        await transport.send("GET", "/auth/me")

    assert exc_info.value.is_auth_failure
    await client.aclose()


@pytest.mark.asyncio
async def test_timeout_is_classified(settings):
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    transport, client = _transport(settings, handler)

    with pytest.raises(TransportTimeout):
        await transport.send("POST", "/ai/chat", body={"message": "hi"}, timeout=5.0)
    await client.aclose()


@pytest.mark.asyncio
async def test_connection_error_is_classified(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    transport, client = _transport(settings, handler)

    with pytest.raises(TransportConnectionError) as exc_info:
        await transport.send("GET", "/health")

    assert isinstance(exc_info.value, TransportNetworkError)
    await client.aclose()


@pytest.mark.asyncio
async def test_empty_body_decodes_to_none(settings):
    transport, client = _transport(settings, lambda request: httpx.Response(204))

    resp = await transport.send("DELETE", "/conversations/c1")

    assert resp.status_code == 204
    assert resp.body is None
    await client.aclose()


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open(settings):
    transport, client = _transport(settings, lambda request: httpx.Response(200, json={}))

    await transport.aclose()

    assert not client.is_closed
    await client.aclose()


@pytest.mark.asyncio
async def test_owned_client_is_created_lazily_and_closed(settings):
    transport = HttpxTransport(settings)

    client = transport._get_client()
    assert str(client.base_url) == "http://testserver/api/"

    await transport.aclose()
    assert client.is_closed
