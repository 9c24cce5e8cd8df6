"""
Centralized exception handlers.

Every failure leaves the service in the same shape:
{"error": {"status", "code", "message", "field"}}. Unexpected exceptions are
logged with a trace id and reported as an opaque INTERNAL_ERROR.
"""
import uuid

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException

from shared.errors import AppError, error_payload

logger = structlog.get_logger(__name__)


def _new_trace_id() -> str:
    return f"t_{uuid.uuid4().hex[:12]}"


def _field_from_loc(loc) -> str | None:
    # ("body", "shipping_id") -> "shipping_id"; ("path", "item_id") -> "item_id"
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "header")]
    return ".".join(parts) or None


def _validation_payload(exc: RequestValidationError) -> dict:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = _field_from_loc(first.get("loc", ()))
    if first.get("type") == "missing":
        code = "VALIDATION_MISSING_FIELD"
        message = f"The field {field} is required." if field else "A required field is missing."
    else:
        code = "VALIDATION_INVALID_FIELD"
        message = str(first.get("msg") or "The request is invalid.")
    return error_payload(400, code, message, field)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _app_error(req: Request, exc: AppError):
        logger.info(
            "request_rejected",
            path=req.url.path,
            code=exc.code,
            status=exc.status_code,
            field=exc.field,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(req: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content=_validation_payload(exc))

    @app.exception_handler(HTTPException)
    async def _http_exc(req: Request, exc: HTTPException):
        code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
        return JSONResponse(
            status_code=exc.status_code,
            content=error_payload(exc.status_code, code, str(exc.detail)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(req: Request, exc: RateLimitExceeded):
        return JSONResponse(
            status_code=429,
            content=error_payload(429, "RATE_LIMITED", f"Rate limit exceeded: {exc.detail}"),
        )

    @app.exception_handler(Exception)
    async def _unhandled(req: Request, exc: Exception):
        trace_id = _new_trace_id()
        logger.exception("unhandled_exception", trace_id=trace_id, path=req.url.path)
        return JSONResponse(
            status_code=500,
            content=error_payload(
                500, "INTERNAL_ERROR", f"Internal server error (trace {trace_id})"
            ),
        )
