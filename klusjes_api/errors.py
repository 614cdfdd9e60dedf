"""API error types and their ``{"error": ...}`` JSON rendering."""

import logging
from contextlib import contextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ApiError):
    """Missing or malformed input the caller can fix."""
    status_code = 400


class NotFoundError(ApiError):
    """A referenced id does not resolve to a live record."""
    status_code = 404


class InternalError(ApiError):
    """Unexpected backend fault. The message never carries internal detail."""
    status_code = 500


@contextmanager
def storage_errors(session: Session, message: str):
    """Map storage faults raised inside the block to an InternalError.

    The session is rolled back and the original exception is logged with its
    traceback; callers only ever see *message*.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception(message)
        session.rollback()
        raise InternalError(message) from exc


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def install_error_handlers(app: FastAPI) -> None:
    """Render every error the API produces as ``{"error": message}``."""

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return _error_response(exc.status_code, exc.message)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        if errors:
            first = errors[0]
            field = ".".join(str(part) for part in first.get("loc", ())[1:])
            message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
        else:
            message = "Invalid request"
        return _error_response(400, message)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        return _error_response(exc.status_code, str(exc.detail))
