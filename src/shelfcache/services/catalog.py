"""Catalog endpoints as fetchers and actions, and their query keys.

:class:`CatalogService` turns each backend endpoint into a coroutine: the
reads (``get_*``) are the fetchers the :class:`~shelfcache.query.QueryCache`
runs, the writes (``add_book``, ``edit_book``, ``delete_book``) are the
actions the :class:`~shelfcache.query.MutationCoordinator` runs.

Query keys::

    books                 every book
    books/<id>            one book (invalidated together with the list)
    publishers            every publisher
    book_language         every language
    active_user           the signed-in user

:class:`Catalog` binds the service, the cache, and the coordinator so that
callers subscribe to ``catalog.books()`` or run ``catalog.delete_book(7)``
without repeating keys or invalidation lists.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from shelfcache.client import AsyncClient
from shelfcache.exceptions import ShelfcacheError
from shelfcache.models import Book, BookInput, Language, Publisher
from shelfcache.query import (
    MutationCoordinator,
    MutationHandle,
    QueryCache,
    QueryKey,
    Subscription,
)
from shelfcache.query.cache import Listener
from shelfcache.query.mutation import ErrorCallback, SuccessCallback

logger = logging.getLogger(__name__)

BOOKS = QueryKey("books")
PUBLISHERS = QueryKey("publishers")
LANGUAGES = QueryKey("book_language")
ACTIVE_USER = QueryKey("active_user")


def book_key(book_id: int) -> QueryKey:
    return BOOKS.child(book_id)


def _unwrap(body: Any, field: str) -> Any:
    """Return ``body[field]`` when the backend wrapped the payload, else *body*."""
    if isinstance(body, dict) and field in body:
        return body[field]
    return body


class CatalogService:
    """Catalog endpoints over an open :class:`~shelfcache.client.AsyncClient`."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    # --- fetchers ---

    async def get_books(self) -> list[Book]:
        """``GET book`` -> ``{"books": [...]}``."""
        body = await self._client.get_json("book")
        return [Book.model_validate(item) for item in _unwrap(body, "books") or []]

    async def get_book(self, book_id: int) -> Book:
        """``GET book/<id>``."""
        body = await self._client.get_json(f"book/{book_id}")
        return Book.model_validate(_unwrap(body, "book"))

    async def get_publishers(self) -> list[Publisher]:
        """``GET publisher`` -> ``{"publishers": [...]}``."""
        body = await self._client.get_json("publisher")
        return [Publisher.model_validate(item) for item in _unwrap(body, "publishers") or []]

    async def get_languages(self) -> list[Language]:
        """``GET book_language``. Any failure yields an empty list."""
        try:
            body = await self._client.get_json("book_language")
        except ShelfcacheError as exc:
            logger.warning("Error fetching languages: %s", exc)
            return []
        return [Language.model_validate(item) for item in _unwrap(body, "languages") or []]

    # --- actions ---

    async def add_book(self, data: BookInput) -> Any:
        """``POST book``."""
        return await self._client.post_json("book", data.model_dump(mode="json"))

    async def edit_book(self, book_id: int, data: BookInput) -> Any:
        """``PUT book/<id>``."""
        return await self._client.put_json(f"book/{book_id}", data.model_dump(mode="json"))

    async def delete_book(self, book_id: int) -> Any:
        """``DELETE book/<id>``."""
        return await self._client.delete(f"book/{book_id}")


class Catalog:
    """Catalog reads and writes wired through the query cache.

    Args:
        service: Endpoint coroutines.
        cache: Shared cache for every read.
        coordinator: Runs writes and invalidates ``books`` afterwards.
            Created over *cache* when omitted.
    """

    def __init__(
        self,
        service: CatalogService,
        cache: QueryCache,
        coordinator: Optional[MutationCoordinator] = None,
    ) -> None:
        self._service = service
        self._cache = cache
        self._coordinator = coordinator or MutationCoordinator(cache)

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def coordinator(self) -> MutationCoordinator:
        return self._coordinator

    # --- reads ---

    def books(self, listener: Optional[Listener] = None) -> Subscription:
        return self._cache.subscribe(BOOKS, self._service.get_books, listener)

    def book(self, book_id: int, listener: Optional[Listener] = None) -> Subscription:
        return self._cache.subscribe(
            book_key(book_id), lambda: self._service.get_book(book_id), listener
        )

    def publishers(self, listener: Optional[Listener] = None) -> Subscription:
        return self._cache.subscribe(PUBLISHERS, self._service.get_publishers, listener)

    def languages(self, listener: Optional[Listener] = None) -> Subscription:
        return self._cache.subscribe(LANGUAGES, self._service.get_languages, listener)

    # --- writes ---

    def add_book(
        self,
        data: BookInput,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationHandle:
        return self._coordinator.mutate(
            lambda: self._service.add_book(data),
            on_success=on_success,
            on_error=on_error,
            invalidates=[BOOKS],
        )

    def edit_book(
        self,
        book_id: int,
        data: BookInput,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationHandle:
        return self._coordinator.mutate(
            lambda: self._service.edit_book(book_id, data),
            on_success=on_success,
            on_error=on_error,
            invalidates=[BOOKS],
        )

    def delete_book(
        self,
        book_id: int,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> MutationHandle:
        return self._coordinator.mutate(
            lambda: self._service.delete_book(book_id),
            on_success=on_success,
            on_error=on_error,
            invalidates=[BOOKS],
        )
