"""OpenAI-compatible routes."""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from auibridge.adapters.openai_compat.mapper import to_chat_completion, to_model_list, to_upstream_payload
from auibridge.adapters.openai_compat.stream_utils import (
    _build_streaming_response,
    collect_text,
    stream_chat_chunks,
)
from auibridge.adapters.openai_compat.upstream import UpstreamClient
from auibridge.config.settings import Settings
from auibridge.core.errors import UpstreamHTTPError, UpstreamUnreachableError, error_envelope
from auibridge.core.models import ChatRequest
from auibridge.util.debug_excerpt import debug_log_original
from auibridge.util.logger import log_event, logger


router = APIRouter()
_DEBUG_HEADERS_REDACT = {"authorization", "cookie", "proxy-authorization"}


def _settings_of(request: Request) -> Settings:
    return request.app.state.settings


def _upstream_of(request: Request) -> UpstreamClient:
    return request.app.state.upstream


def _log_request_if_debug(request: Request, body_size: int) -> None:
    """当 AUIBRIDGE_LOG_LEVEL=debug 时打请求概要（method/path/headers/body_size），敏感头打码。"""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    headers_safe = {}
    for k, v in request.headers.items():
        key_lower = k.lower()
        if key_lower in _DEBUG_HEADERS_REDACT or "key" in key_lower or "secret" in key_lower or "token" in key_lower:
            headers_safe[k] = "***"
        else:
            headers_safe[k] = v
    logger.debug(
        "incoming request method=%s path=%s headers=%s body_size=%d",
        request.method,
        request.url.path,
        headers_safe,
        body_size,
    )


def _internal_error_response(detail: str = "Internal Server Error") -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content=error_envelope(detail, code="internal_error", error_type="server_error"),
    )


def _upstream_error_response(exc: UpstreamHTTPError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content=error_envelope(
            "Upstream Error",
            code="upstream_http_error",
            error_type="upstream_error",
            details=exc.body,
            status=exc.status_code,
        ),
    )


async def _read_chat_request(request: Request) -> ChatRequest | None:
    raw = await request.body()
    _log_request_if_debug(request, len(raw))
    try:
        payload: Any = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("chat request body is not valid json size=%d", len(raw))
        return None
    if not isinstance(payload, dict):
        logger.warning("chat request body is not a json object type=%s", type(payload).__name__)
        return None
    try:
        return ChatRequest.model_validate(payload)
    except ValidationError as exc:
        logger.warning("chat request body rejected error=%s", exc)
        return None


@router.get("/models")
async def list_models(request: Request):
    return to_model_list(_settings_of(request)).model_dump()


@router.post("/chat/completions")
async def chat_completions(request: Request):
    settings = _settings_of(request)
    chat_request = await _read_chat_request(request)
    if chat_request is None:
        return _internal_error_response()

    model = chat_request.model or settings.default_model
    log_event(
        "chat_request",
        model=model,
        stream=chat_request.stream,
        messages=len(chat_request.messages),
    )
    debug_log_original("request_last_user_message", chat_request.last_user_text(), max_len=180)

    upstream_payload = to_upstream_payload(chat_request, settings)
    try:
        upstream_response = await _upstream_of(request).open_stream(upstream_payload)
    except UpstreamHTTPError as exc:
        return _upstream_error_response(exc)
    except UpstreamUnreachableError as exc:
        logger.error("chat upstream unreachable error=%s", exc)
        return _internal_error_response()

    if chat_request.stream:
        logger.info("chat stream forwarding start model=%s", model)
        generator = stream_chat_chunks(
            upstream_response.aiter_bytes(),
            model=model,
            queue_size=settings.stream_queue_size,
            on_close=upstream_response.aclose,
        )
        return _build_streaming_response(generator, on_close=upstream_response.aclose)

    try:
        content = await collect_text(upstream_response.aiter_bytes())
    except httpx.HTTPError as exc:
        detail = (str(exc) or "").strip() or type(exc).__name__
        logger.error("chat upstream read failure error=%s", detail)
        return JSONResponse(
            status_code=502,
            content=error_envelope(f"upstream_stream_error: {detail}", code="upstream_stream_error", error_type="upstream_error"),
        )
    finally:
        await upstream_response.aclose()

    log_event("chat_completed", model=model, content_chars=len(content))
    return to_chat_completion(model, content).model_dump()
