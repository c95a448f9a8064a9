from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from time import perf_counter
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.routes import router
from backend.app.dependencies import get_database, get_settings, get_telemetry
from backend.app.logging_config import configure_application_logging

LOGGER = logging.getLogger("link_shelf.app")

REQUEST_ID_HEADER = "X-Request-ID"

CallNext = Callable[[Request], Awaitable[Response]]


def health_check() -> dict[str, str]:
    return {"status": "ok"}


def resolve_request_id(request: Request) -> str:
    """Reuse the caller's request id when it sent one, otherwise mint a new one."""
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return incoming or str(uuid4())


async def request_context_middleware(request: Request, call_next: CallNext) -> Response:
    request_id = resolve_request_id(request)
    path = request.url.path
    context_tokens = bind_contextvars(
        http_request_id=request_id,
        http_method=request.method,
        http_path=path,
    )
    started_at = perf_counter()

    def _emit(event_name: str, **extra: Any) -> None:
        get_telemetry().emit(
            event_name,
            request_id=request_id,
            method=request.method,
            path=path,
            **extra,
        )

    _emit("http.request.start")
    try:
        response = await call_next(request)
    except Exception as exc:
        elapsed_ms = int((perf_counter() - started_at) * 1000)
        _emit("http.request.error", duration_ms=elapsed_ms, error_type=type(exc).__name__)
        raise
    finally:
        reset_contextvars(**context_tokens)

    response.headers[REQUEST_ID_HEADER] = request_id
    elapsed_ms = int((perf_counter() - started_at) * 1000)
    _emit("http.request.finish", duration_ms=elapsed_ms, status_code=response.status_code)
    return response


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    logging_paths = configure_application_logging(settings)
    database = get_database()
    LOGGER.info(
        "link shelf ready db_path=%s log_file=%s metadata_fetch_enabled=%s timeout_ms=%s",
        database.path,
        logging_paths.log_file,
        settings.metadata_fetch_enabled,
        settings.metadata_fetch_timeout_ms,
    )
    yield
    LOGGER.info("link shelf shutting down")


def create_app() -> FastAPI:
    app = FastAPI(title="Link Shelf API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_context_middleware)
    app.include_router(router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )
    return app


app = create_app()
