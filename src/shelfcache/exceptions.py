"""Errors raised by shelfcache, each tied to a process exit code.

:func:`shelfcache.app.main` and the command helpers turn any
:class:`ShelfcacheError` into a one-line message and ``sys.exit(exit_code)``.
Inside the query layer, fetcher and action failures are never raised to the
caller; they are wrapped in :class:`FetchError` or :class:`MutationError`
and stored on the cache entry or mutation handle.

::

    ShelfcacheError               1
        InvalidUsageError         2
            InvalidKeyError
            ValidationError
        AuthError                 3
        NotFoundError             4
        ServerError               5
        ConnectionError_          6
        FetchError                7
        MutationError             8
        ConfigError               1
"""

from __future__ import annotations

from typing import Optional

from shelfcache.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CONNECTION_ERROR,
    EXIT_FETCH_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_MUTATION_ERROR,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class ShelfcacheError(Exception):
    """Root of every error shelfcache reports to the user.

    Subclasses pick their process exit code from :mod:`shelfcache.exit_codes`
    by overriding ``exit_code``; *exit_code* overrides it per instance.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code

    @property
    def message(self) -> str:
        return str(self)


class InvalidUsageError(ShelfcacheError):
    """The user asked for something malformed: such as a bad key or form."""

    exit_code = EXIT_INVALID_USAGE


class InvalidKeyError(InvalidUsageError):
    """Raised when a query key has an empty resource name or a non-primitive segment."""


class ValidationError(InvalidUsageError):
    """Raised when a login, signup, or book form payload fails validation.

    Args:
        message: Summary of the failure.
        errors: Mapping of field name to the first message for that field.
    """

    def __init__(self, message: str, errors: Optional[dict[str, str]] = None):
        super().__init__(message)
        self.errors: dict[str, str] = dict(errors or {})


class AuthError(ShelfcacheError):
    """Raised when the backend rejects the session (HTTP 401 / 403)."""

    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(ShelfcacheError):
    """Raised when the backend returns HTTP 404."""

    exit_code = EXIT_NOT_FOUND


class ServerError(ShelfcacheError):
    """Raised for any other non-success HTTP response."""

    exit_code = EXIT_SERVER_ERROR


class ConnectionError_(ShelfcacheError):
    """The backend could not be reached at all: timeout or refused connection.

    The underscore keeps the builtin ``ConnectionError`` usable.
    """

    exit_code = EXIT_CONNECTION_ERROR


class _OperationError(ShelfcacheError):
    """Opaque failure payload: a message plus the original exception, if any."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    @classmethod
    def wrap(cls, exc: BaseException):
        """Return *exc* unchanged if it already is this type, else wrap it."""
        if isinstance(exc, cls):
            return exc
        return cls(str(exc) or type(exc).__name__, cause=exc)


class FetchError(_OperationError):
    """A fetcher failed: transport failure or non-success response."""

    exit_code = EXIT_FETCH_ERROR


class MutationError(_OperationError):
    """A mutation action (or one of its callbacks) failed."""

    exit_code = EXIT_MUTATION_ERROR


class ConfigError(ShelfcacheError):
    """Raised for configuration problems (invalid JSON, unreadable session file)."""

    exit_code = EXIT_GENERIC_FAILURE
