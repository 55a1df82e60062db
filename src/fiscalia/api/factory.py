"""FastAPI application factory with role-based route mounting."""

from __future__ import annotations

import os
from typing import Literal

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from fiscalia.domain.error_translation import ErrorContext, translate_error
from fiscalia.domain.errors import FiscaliaError, FiscalProviderError
from fiscalia.observability.logging import CORRELATION_ID_HEADER, correlation_scope, get_logger
from fiscalia.observability.redaction import safe_log_context

from .routers import public, worker
from .routes import assistant, tasks_invoices

AppRole = Literal["public", "worker"]

logger = get_logger(__name__)


def error_body(exc: FiscaliaError) -> dict:
    """``{message, code, data?}`` for an error.

    Errors whose messages are not written for end users are translated;
    the technical message stays in the logs.
    """
    if exc.user_facing:
        return exc.to_dict()

    translation = translate_error(exc, ErrorContext(fiscal_operation=isinstance(exc, FiscalProviderError)))
    data = {**exc.data, **translation.to_dict()}
    data.pop("message", None)
    return {"message": translation.message, "code": exc.code, "data": data}


def create_app(role: AppRole | None = None) -> FastAPI:
    """Create the app.

    Args:
        role: "public" (assistant endpoints) or "worker" (task endpoints
            as well). None reads APP_ROLE, default "public".
    """
    if role is None:
        role = os.environ.get("APP_ROLE", "public")  # type: ignore[assignment]

    app = FastAPI(title="Fiscalia", docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with correlation_scope(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    @app.exception_handler(FiscaliaError)
    async def fiscalia_error_handler(request: Request, exc: FiscaliaError) -> JSONResponse:
        log = logger.warning if exc.http_status < 500 else logger.error
        log(
            "request failed",
            extra={
                "extra_fields": safe_log_context(
                    path=request.url.path, code=exc.code, status=exc.http_status
                )
            },
        )
        return JSONResponse(status_code=exc.http_status, content=error_body(exc))

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        # Exception text may carry client data; only the type is logged
        logger.error(
            "unhandled error",
            extra={
                "extra_fields": safe_log_context(path=request.url.path, error_type=type(exc).__name__)
            },
        )
        return JSONResponse(status_code=500, content=error_body(FiscaliaError()))

    app.include_router(public.router)
    app.include_router(assistant.router)

    if role == "worker":
        app.include_router(worker.router)
        app.include_router(tasks_invoices.router)

    return app
