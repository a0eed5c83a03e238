"""Client-side search and sort over the cached book list.

The backend has no search endpoint; the list view filters and orders the
``books`` query's data locally. Nothing here touches the cache or the
network.
"""

from __future__ import annotations

import enum
from typing import Iterable, Optional

from shelfcache.models import Book, Publisher


class SortField(str, enum.Enum):
    """Book list sort orders offered by ``shelfcache books list --sort``."""

    ID = "id"
    TITLE = "title"
    PAGES = "pages"
    PUBLISHED = "published"


def search_books(books: Iterable[Book], query: Optional[str]) -> list[Book]:
    """Return books whose title or ISBN contains *query*, ignoring case.

    An empty or whitespace-only query returns every book. Dashes in the
    query are ignored when matching ISBNs.
    """
    items = list(books)
    needle = (query or "").strip().casefold()
    if not needle:
        return items
    isbn_needle = needle.replace("-", "")
    return [
        book
        for book in items
        if needle in book.title.casefold() or (isbn_needle and isbn_needle in book.isbn13)
    ]


def sort_books(
    books: Iterable[Book],
    field: SortField = SortField.TITLE,
    descending: bool = False,
) -> list[Book]:
    """Return *books* ordered by *field*. Missing publication dates sort last."""
    items = list(books)
    if field is SortField.PUBLISHED:
        dated = [b for b in items if b.publication_date]
        undated = [b for b in items if not b.publication_date]
        dated.sort(key=lambda b: (b.publication_date, b.id), reverse=descending)
        return dated + undated
    if field is SortField.TITLE:
        items.sort(key=lambda b: (b.title.casefold(), b.id), reverse=descending)
    elif field is SortField.PAGES:
        items.sort(key=lambda b: (b.num_pages, b.id), reverse=descending)
    else:
        items.sort(key=lambda b: b.id, reverse=descending)
    return items


def publisher_names(publishers: Iterable[Publisher]) -> dict[int, str]:
    """Map publisher id to name, for showing a publisher column next to books."""
    return {p.id: p.publisher_name for p in publishers}
