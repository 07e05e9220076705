"""Exceptions for the web API and their HTTP status codes."""

from ..utils.logging import (
    ColonyException,
    ConflictError,
    NotFoundError,
    ValidationError,
)


class ColonyAPIException(Exception):
    """Base exception for errors raised by the web layer itself."""

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class ColonyUnavailableError(ColonyAPIException):
    """Raised when a request arrives before the colony has started."""

    def __init__(self, message: str = "Colony is not running"):
        super().__init__(message, 503)


# Core errors not listed here are server errors.
STATUS_CODES: dict[type[ColonyException], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
}


def status_code_for(exc: ColonyException) -> int:
    """HTTP status code for a core exception."""
    for exc_type, status_code in STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status_code
    return 500
