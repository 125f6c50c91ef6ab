import json

import httpx
import pytest

from auibridge.adapters.openai_compat.upstream import UpstreamClient, _upstream_http_timeout, build_upstream_headers
from auibridge.config.settings import Settings
from auibridge.core.errors import UpstreamHTTPError, UpstreamUnreachableError
from auibridge.core.models import UpstreamMessage, UpstreamPart, UpstreamPayload


def _payload() -> UpstreamPayload:
    return UpstreamPayload(
        id="DEFAULT_THREAD_ID",
        trigger="submit-message",
        messages=[UpstreamMessage(role="user", parts=[UpstreamPart(text="hi")], id="abcd1234")],
    )


def test_build_upstream_headers_derives_origin_from_target():
    headers = build_upstream_headers(Settings(target_url="https://chat.example.com/api/chat"))
    assert headers["origin"] == "https://chat.example.com"
    assert headers["referer"] == "https://chat.example.com/"
    assert headers["accept"] == "*/*"
    assert headers["content-type"] == "application/json"
    assert "Mozilla/5.0" in headers["user-agent"]


def test_timeout_defaults_to_no_read_timeout():
    timeout = _upstream_http_timeout(Settings())
    assert timeout.read is None
    assert timeout.connect == 30.0
    assert _upstream_http_timeout(Settings(upstream_timeout_seconds=5)).read == 5


@pytest.mark.asyncio
async def test_open_stream_posts_payload_to_target():
    seen: list[httpx.Request] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"data: [DONE]\n\n")

    client = UpstreamClient(Settings(target_url="https://chat.example.com/api/chat"), transport=httpx.MockTransport(handler))
    try:
        response = await client.open_stream(_payload())
        assert (await response.aread()) == b"data: [DONE]\n\n"
        await response.aclose()
    finally:
        await client.aclose()

    assert seen[0].method == "POST"
    assert str(seen[0].url) == "https://chat.example.com/api/chat"
    body = json.loads(seen[0].content)
    assert body["messages"][0] == {"role": "user", "parts": [{"type": "text", "text": "hi"}], "id": "abcd1234"}
    assert seen[0].headers["user-agent"].startswith("Mozilla/5.0")


@pytest.mark.asyncio
async def test_open_stream_raises_http_error_with_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    client = UpstreamClient(Settings(), transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(UpstreamHTTPError) as excinfo:
            await client.open_stream(_payload())
    finally:
        await client.aclose()
    assert excinfo.value.status_code == 429
    assert excinfo.value.body == "slow down"


@pytest.mark.asyncio
async def test_open_stream_wraps_transport_failure():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    client = UpstreamClient(Settings(), transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(UpstreamUnreachableError) as excinfo:
            await client.open_stream(_payload())
    finally:
        await client.aclose()
    assert "timed out" in str(excinfo.value)


@pytest.mark.asyncio
async def test_client_is_reused_until_closed():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"")

    client = UpstreamClient(Settings(), transport=httpx.MockTransport(handler))
    first = await client._get_client()
    assert await client._get_client() is first
    await client.aclose()
    assert await client._get_client() is not first
    await client.aclose()
