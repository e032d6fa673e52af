from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request, Response
from structlog.contextvars import bind_contextvars, reset_contextvars

from newsdesk.app.api.routes import router
from newsdesk.app.dependencies import get_settings, get_telemetry
from newsdesk.app.logging_config import configure_application_logging

LOGGER = logging.getLogger("newsdesk.main")

REQUEST_ID_HEADER = "X-Request-ID"


def health_check() -> dict[str, str]:
    return {"status": "ok", "message": "Webhook news endpoint is running"}


@asynccontextmanager
async def app_lifespan(_: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_application_logging(settings)
    LOGGER.info(
        "newsdesk ready cms=%s content_type=%s image_concurrency=%s slug_locale=%s",
        settings.cms_base_url,
        settings.cms_content_type,
        settings.image_upload_concurrency,
        settings.slug_locale,
    )
    yield


def _resolve_request_id(request: Request) -> str:
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    return incoming or str(uuid4())


async def request_context_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    """Tag logs and telemetry of one request with its id, echoed back to the caller."""
    request_id = _resolve_request_id(request)
    context_tokens = bind_contextvars(
        http_request_id=request_id,
        http_method=request.method,
        http_path=request.url.path,
    )
    telemetry = get_telemetry().bind(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )
    try:
        with telemetry.timed("http.request") as outcome:
            response = await call_next(request)
            outcome["status_code"] = response.status_code
    finally:
        reset_contextvars(**context_tokens)

    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def create_app() -> FastAPI:
    app = FastAPI(title="Newsdesk Webhook API", version="0.1.0", lifespan=app_lifespan)
    app.middleware("http")(request_context_middleware)
    app.include_router(router)
    for path, operation_id in (("/ping", "ping"), ("/health", "health_check")):
        app.add_api_route(
            path,
            health_check,
            methods=["GET"],
            tags=["system"],
            operation_id=operation_id,
        )
    return app


app = create_app()
