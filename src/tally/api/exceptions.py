from __future__ import annotations

from fastapi import FastAPI, Request  # type: ignore[import-not-found]
from fastapi.exceptions import RequestValidationError  # type: ignore[import-not-found]
from fastapi.responses import JSONResponse  # type: ignore[import-not-found]
from starlette import status  # type: ignore[import-not-found]
from starlette.exceptions import HTTPException as StarletteHTTPException  # type: ignore[import-not-found]

from tally.commons.exceptions import (
    BaseServiceConflictException,
    BaseServiceException,
    BaseServiceNotFoundException,
    BaseServiceRateLimitedException,
    BaseServiceUnauthorizedException,
    BaseServiceUnProcessableException,
)
from tally.commons.logging import logger
from tally.telemetry.middleware import TRACE_ID_HEADER

INVALID_REQUEST_BODY = "Invalid request body"
INTERNAL_SERVER_ERROR = "Internal server error"


def _status_for(exc: BaseServiceException) -> int:
    if isinstance(exc, BaseServiceUnauthorizedException):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, BaseServiceNotFoundException):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, BaseServiceConflictException):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, BaseServiceUnProcessableException):
        return status.HTTP_422_UNPROCESSABLE_CONTENT
    if isinstance(exc, BaseServiceRateLimitedException):
        return status.HTTP_429_TOO_MANY_REQUESTS
    return status.HTTP_400_BAD_REQUEST


def configure_global_exception_handlers(app: FastAPI) -> FastAPI:
    @app.exception_handler(BaseServiceException)
    async def service_exception_handler(
        request: Request, exc: BaseServiceException
    ) -> JSONResponse:
        code = _status_for(exc)
        content: dict = {"error": exc.message}
        if exc.details is not None and code != status.HTTP_401_UNAUTHORIZED:
            content["details"] = exc.details
        headers = None
        if isinstance(exc, BaseServiceRateLimitedException):
            content["retryAfter"] = exc.retry_after
            headers = {"Retry-After": str(exc.retry_after)}
        resp = JSONResponse(status_code=code, content=content, headers=headers)
        services = getattr(request.app.state, "services", None)
        if services is not None and getattr(request.state, "clear_session_cookie", False):
            resp.delete_cookie(key=services.settings.AUTH_COOKIE_NAME, path="/")
        return resp

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": INVALID_REQUEST_BODY},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        # Runs outside the telemetry middleware, so the trace header is re-added here.
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        trace_id = getattr(request.state, "trace_id", None)
        services = getattr(request.app.state, "services", None)
        if services is not None:
            await services.otlp.log_exception(
                exc,
                {
                    "http.method": request.method,
                    "http.target": request.url.path,
                    "trace_id": trace_id,
                },
            )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": INTERNAL_SERVER_ERROR},
            headers={TRACE_ID_HEADER: trace_id} if trace_id else None,
        )

    return app
