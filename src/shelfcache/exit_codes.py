"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~shelfcache.exceptions.ShelfcacheError` subclass.
Shell scripts wrapping the ``shelfcache`` CLI can inspect the exit code to
determine the failure class without parsing stderr.

Example::

    $ shelfcache books list
    $ echo $?
    3   # EXIT_AUTH_FAILURE -- the stored session was rejected
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or an invalid form payload."""

EXIT_AUTH_FAILURE = 3
"""Authentication or authorisation failed."""

EXIT_NOT_FOUND = 4
"""The requested resource was not found (HTTP 404)."""

EXIT_SERVER_ERROR = 5
"""The backend returned an HTTP error that is not otherwise classified."""

EXIT_CONNECTION_ERROR = 6
"""A network-level error occurred (timeout, DNS failure, connection refused)."""

EXIT_FETCH_ERROR = 7
"""A cached read settled with an error."""

EXIT_MUTATION_ERROR = 8
"""A write operation settled with an error."""
