"""Catalog and session services built on the query layer.

* :mod:`~shelfcache.services.catalog` -- endpoint fetchers/actions, query
  keys, and the :class:`Catalog` binding.
* :mod:`~shelfcache.services.auth` -- login, signup, logout, active user.
* :mod:`~shelfcache.services.search` -- local search and sort of books.
* :mod:`~shelfcache.services.forms` -- form payload validation.
"""

from shelfcache.services.auth import AuthService
from shelfcache.services.catalog import (
    ACTIVE_USER,
    BOOKS,
    LANGUAGES,
    PUBLISHERS,
    Catalog,
    CatalogService,
    book_key,
)
from shelfcache.services.search import SortField, publisher_names, search_books, sort_books

__all__ = [
    "ACTIVE_USER",
    "AuthService",
    "BOOKS",
    "Catalog",
    "CatalogService",
    "LANGUAGES",
    "PUBLISHERS",
    "SortField",
    "book_key",
    "publisher_names",
    "search_books",
    "sort_books",
]
