"""FastAPI app entry."""

from __future__ import annotations

import hmac

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from auibridge.adapters.openai_compat.router import router as openai_router
from auibridge.adapters.openai_compat.upstream import UpstreamClient
from auibridge.config.settings import Settings, get_settings
from auibridge.core.errors import error_envelope
from auibridge.util.logger import configure_logger, logger


def _cors_headers(settings: Settings) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": settings.cors_allow_origin,
        "Access-Control-Allow-Methods": "POST, GET, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, Authorization",
    }


def _blocked_response(status_code: int, reason: str, detail: str | None = None) -> JSONResponse:
    detail_text = (detail or reason).strip() or reason
    return JSONResponse(
        status_code=status_code,
        content=error_envelope(detail_text, code=reason),
    )


def _presented_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return header


def is_authorized(request: Request, secret: str) -> bool:
    if not secret:
        return True
    presented = _presented_token(request)
    if not presented:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), secret.encode("utf-8"))


async def bridge_boundary_middleware(request: Request, call_next):
    settings: Settings = request.app.state.settings

    if request.method.upper() == "OPTIONS":
        return Response(status_code=204, headers=_cors_headers(settings))

    if not is_authorized(request, settings.server_api_key):
        logger.warning("boundary reject unauthorized method=%s path=%s", request.method, request.url.path)
        response = _blocked_response(status_code=401, reason="unauthorized", detail="Unauthorized")
        response.headers["Access-Control-Allow-Origin"] = settings.cors_allow_origin
        return response

    try:
        response = await call_next(request)
    except Exception:
        logger.exception("gateway unhandled exception path=%s", request.url.path)
        response = _blocked_response(status_code=500, reason="internal_error", detail="Internal Server Error")
    response.headers["Access-Control-Allow-Origin"] = settings.cors_allow_origin
    return response


async def _not_found_handler(request: Request, exc: StarletteHTTPException):
    # 405 也按 404 处理：只暴露固定的路由集合
    if exc.status_code in {404, 405}:
        return PlainTextResponse("Not Found", status_code=404)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(str(exc.detail), code=f"http_{exc.status_code}"),
    )


def create_app(settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logger(settings.log_level, settings.log_file)

    app = FastAPI(title=settings.app_name, docs_url=None, redoc_url=None, openapi_url=None)
    app.state.settings = settings
    app.state.upstream = UpstreamClient(settings, transport=transport)
    app.include_router(openai_router, prefix="/v1")
    app.add_exception_handler(StarletteHTTPException, _not_found_handler)
    app.middleware("http")(bridge_boundary_middleware)

    @app.on_event("startup")
    async def startup_log() -> None:
        logger.info("%s ready target=%s auth=%s", settings.app_name, settings.target_url, settings.auth_enabled)
        if settings.upstream_proxy:
            logger.info("upstream proxy configured: %s", settings.upstream_proxy)

    @app.on_event("shutdown")
    async def shutdown_cleanup() -> None:
        await app.state.upstream.aclose()

    return app
