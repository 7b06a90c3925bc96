"""
app/core/errors.py

Purpose: HTTP error rendering for the webhook endpoints

- LedgerChatError subclasses map to their own status and code
- Rejected webhook signatures are logged as warnings (possible forgery)
- Anything unhandled becomes a 500 with details hidden in production
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.exceptions import LedgerChatError, IntegrityViolation
from app.schemas.response import ErrorResponse
from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def _error(status_code: int, error: str, code: str, details: Any = None) -> JSONResponse:
    body = ErrorResponse(error=error, code=code, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def add_exception_handlers(app: FastAPI):
    @app.exception_handler(LedgerChatError)
    async def ledgerchat_exception_handler(request: Request, exc: LedgerChatError):
        if isinstance(exc, IntegrityViolation):
            logger.warning(f"🔐 Rejected {request.method} {request.url.path}: {exc.message}")
        elif exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        return _error(exc.status_code, exc.message, exc.code, exc.details)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # Meta's verification handshake answers 403 through here
        return _error(exc.status_code, str(exc.detail), "HTTP_ERROR")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error(422, "Input validation failed", "VALIDATION_ERROR", exc.errors())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.method} {request.url.path}", exc_info=True)
        message = "An internal error occurred. Please try again later." if settings.is_production else str(exc)
        return _error(500, message, "INTERNAL_ERROR")
