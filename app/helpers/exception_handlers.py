# app/helpers/exception_handlers.py
"""
Global exception handlers - one response shape for every error:
{"detail": str, "code": str, "errors": [{"field": ..., "message": ...}]}
"""
import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.helpers.exceptions import PharmacyError

logger = logging.getLogger(__name__)


def _field_path(loc) -> str:
    # Drop the "body"/"query"/"form" prefix FastAPI adds
    parts = [str(p) for p in loc if p not in ("body", "query", "path", "form")]
    return ".".join(parts)


def field_errors(raw_errors) -> list:
    """pydantic error dicts -> [{"field", "message"}]."""
    return [
        {"field": _field_path(err.get("loc", ())), "message": err.get("msg", "Invalid value")}
        for err in raw_errors
    ]


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the pharmacy error handlers to the app."""

    @app.exception_handler(PharmacyError)
    async def pharmacy_error_handler(request: Request, exc: PharmacyError):
        if exc.status_code >= 500:
            logger.error(f"❌ {exc.code} on {request.method} {request.url.path}: {exc.message}")
        else:
            logger.warning(f"⚠️  {exc.code} on {request.method} {request.url.path}: {exc.message}")

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code, "errors": exc.errors},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = field_errors(exc.errors())
        logger.warning(f"⚠️  Validation failed on {request.url.path}: {errors}")
        return JSONResponse(
            status_code=400,
            content={"detail": "Validation failed", "code": "VALIDATION_ERROR", "errors": errors},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled Exception: {type(exc).__name__}: {exc}")
        logger.error(f"Traceback: {traceback.format_exc()}")
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "code": "INTERNAL_ERROR", "errors": []},
        )
