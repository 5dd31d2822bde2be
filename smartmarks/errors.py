import logging
import uuid
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException


logger = logging.getLogger(__name__)

LOGIN_PATH = "/auth"


class AppError(Exception):
    """Base class for errors raised by this application."""

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class ConfigError(AppError):
    """Required configuration is missing or invalid."""


class QueryFailed(AppError):
    """The backend rejected a read, insert, delete or subscription."""


class SignInFailed(AppError):
    """The identity provider refused to start an OAuth flow."""


class MalformedRecord(AppError):
    """A backend record lacks a field the application requires."""

    def __init__(self, kind: str, field: str) -> None:
        super().__init__(f"{kind} record is missing required field '{field}'")
        self.kind = kind
        self.field = field


class ControllerStateError(AppError):
    pass


class CallbackError(AppError):
    """Raised while completing an OAuth callback; rendered as a login redirect."""

    error_code = "server_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message, code=self.error_code)


class NoAuthCode(CallbackError):
    error_code = "no_code"


class SessionExchangeFailed(CallbackError):
    error_code = "login_failed"


class ServerError(CallbackError):
    error_code = "server_error"


def login_redirect_url(error_code: str, message: Optional[str] = None) -> str:
    params = {"error": error_code}
    if message:
        params["message"] = message
    return f"{LOGIN_PATH}?{urlencode(params)}"


def _problem(
    *,
    code: str,
    message: str,
    status: int,
    trace_id: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    body = {
        "type": f"about:blank#{code}",
        "title": message,
        "status": status,
        "code": code,
        "message": message,
        "trace_id": trace_id,
    }
    if details:
        body["details"] = details
    return JSONResponse(
        body,
        status_code=status,
        headers={"X-Trace-Id": trace_id},
        media_type="application/problem+json",
    )


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(CallbackError)
    async def callback_exc_handler(request: Request, exc: CallbackError):  # type: ignore[override]
        # Only the provider's rejection message is user-facing.
        message = exc.message if isinstance(exc, SessionExchangeFailed) else None
        return RedirectResponse(login_redirect_url(exc.error_code, message), status_code=303)

    @app.exception_handler(QueryFailed)
    async def query_failed_handler(request: Request, exc: QueryFailed):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        logger.error("Backend query failed at %s: %s", request.url.path, exc.message)
        details = {"backend_code": exc.code} if exc.code else None
        return _problem(
            code="query_failed",
            message=exc.message or "Backend query failed",
            status=502,
            trace_id=trace_id,
            details=details,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        detail = exc.detail
        if isinstance(detail, dict):
            message = detail.get("message") or detail.get("error") or "HTTP error"
            return _problem(
                code="http_error",
                message=str(message),
                status=exc.status_code,
                trace_id=trace_id,
                details=detail,
            )
        return _problem(code="http_error", message=str(detail), status=exc.status_code, trace_id=trace_id)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        return _problem(
            code="validation_error",
            message="Request validation failed",
            status=422,
            trace_id=trace_id,
            details={"errors": exc.errors()},
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        trace_id = str(uuid.uuid4())
        logger.exception("Unhandled error: %s", exc)
        return _problem(
            code="internal_error",
            message="An unexpected error occurred",
            status=500,
            trace_id=trace_id,
        )
