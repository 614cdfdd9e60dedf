"""Client-side error types for talking to the Klusjes API."""

from typing import Optional

import httpx


class SyncError(Exception):
    """Base class for everything the sync client raises."""


class ConnectivityError(SyncError):
    """The API could not be reached at all (refused, reset, timed out)."""


class ApiError(SyncError):
    """The API answered with an error status.

    ``message`` is the server's ``error`` text, safe to show to a user.
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class ValidationError(ApiError):
    pass


class NotFoundError(ApiError):
    pass


class InternalError(ApiError):
    pass


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or f"HTTP {response.status_code}"
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return response.reason_phrase or f"HTTP {response.status_code}"


def raise_for_response(response: httpx.Response) -> None:
    """Raise the matching ApiError subclass for a non-2xx response."""
    if response.is_success:
        return
    message = _error_message(response)
    status = response.status_code
    if status == 404:
        raise NotFoundError(message, status)
    if 400 <= status < 500:
        raise ValidationError(message, status)
    raise InternalError(message, status)
