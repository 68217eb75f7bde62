"""Typed failures raised by the services and the access policy.

Each class carries the HTTP status the API layer answers with, so the
boundary can convert any ``LibraryError`` without knowing the subclass.
"""

from http import HTTPStatus


class LibraryError(Exception):
    """Base class for every expected failure."""

    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LibraryError):
    """A referenced entity does not exist."""

    status_code = HTTPStatus.NOT_FOUND


class InvalidStateError(LibraryError):
    """A business rule was violated (inactive user, no copies, already returned)."""

    status_code = HTTPStatus.BAD_REQUEST


class ValidationFailedError(LibraryError):
    """Malformed input."""

    status_code = HTTPStatus.BAD_REQUEST


class UnauthorizedError(LibraryError):
    """No identity, or the presented credentials are invalid."""

    status_code = HTTPStatus.UNAUTHORIZED


class ForbiddenError(LibraryError):
    """Authenticated, but not allowed to act on this resource."""

    status_code = HTTPStatus.FORBIDDEN
