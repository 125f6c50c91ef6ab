"""
上游请求构建与 HTTP 转发。从 router 拆出，便于维护与单测。
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from urllib.parse import urlparse

import httpx

from auibridge.config.settings import Settings
from auibridge.core.errors import UpstreamHTTPError, UpstreamUnreachableError
from auibridge.core.models import UpstreamPayload
from auibridge.util.logger import logger

_ERROR_BODY_MAX_CHARS = 2000


def _upstream_http_limits(settings: Settings) -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout(settings: Settings) -> httpx.Timeout:
    # read/write/pool 为 None 时上游挂起不会主动失败，与基线行为一致
    return httpx.Timeout(
        settings.upstream_timeout_seconds,
        connect=settings.upstream_connect_timeout_seconds,
    )


def _origin_of(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def build_upstream_headers(settings: Settings) -> dict[str, str]:
    """Fixed browser identity expected by the backend."""
    origin = _origin_of(settings.target_url)
    return {
        "accept": "*/*",
        "content-type": "application/json",
        "origin": origin,
        "referer": f"{origin}/",
        "user-agent": settings.upstream_user_agent,
    }


def _safe_error_detail(body: bytes) -> str:
    text = body.decode("utf-8", errors="replace")
    return text[:_ERROR_BODY_MAX_CHARS]


class UpstreamClient:
    """Owns the pooled httpx client used for every backend call."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._lock = asyncio.Lock()

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        async with self._lock:
            if self._client is None:
                kwargs: dict[str, Any] = {
                    "http2": False,
                    "timeout": _upstream_http_timeout(self._settings),
                    "limits": _upstream_http_limits(self._settings),
                }
                if self._transport is not None:
                    kwargs["transport"] = self._transport
                elif self._settings.upstream_proxy:
                    kwargs["proxy"] = self._settings.upstream_proxy
                self._client = httpx.AsyncClient(**kwargs)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def open_stream(self, payload: UpstreamPayload) -> httpx.Response:
        """POST the payload and return the open streaming response.

        The caller owns the returned response and must `aclose()` it.
        """
        url = self._settings.target_url
        body = json.dumps(payload.model_dump(), ensure_ascii=False).encode("utf-8")
        logger.debug("forward_stream start url=%s payload_bytes=%d", url, len(body))
        client = await self._get_client()
        request = client.build_request("POST", url, content=body, headers=build_upstream_headers(self._settings))
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            detail = (str(exc) or "").strip() or type(exc).__name__
            logger.warning("forward_stream http_error url=%s error=%s", url, detail)
            raise UpstreamUnreachableError(f"upstream_unreachable: {detail}") from exc

        logger.info("forward_stream connected url=%s status=%s", url, response.status_code)
        if response.is_success:
            return response

        try:
            raw = await response.aread()
        except httpx.HTTPError as exc:
            raw = f"<unreadable error body: {exc}>".encode("utf-8")
        finally:
            await response.aclose()
        detail = _safe_error_detail(raw)
        logger.warning("forward_stream upstream_error status=%s body=%s", response.status_code, detail)
        raise UpstreamHTTPError(response.status_code, detail)
