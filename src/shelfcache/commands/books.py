"""Book commands -- browse, search, and edit the catalog.

Provides the ``shelfcache books`` sub-command group. Reads go through the
query cache (the list view subscribes to ``books`` and ``publishers`` at
once so both fetches run concurrently); writes go through the mutation
coordinator, which invalidates ``books`` once the backend confirms.

Typical workflow::

    shelfcache books list --search dune --sort published --desc
    shelfcache books show 7
    shelfcache books edit 7 --pages 412
    shelfcache books delete 7
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

import typer

from shelfcache.commands.runtime import execute, open_runtime, require_data, require_success
from shelfcache.models import Book, BookInput
from shelfcache.output import format_response, info, print_table, success
from shelfcache.services import SortField, publisher_names, search_books, sort_books
from shelfcache.services.forms import parse_form

books_app = typer.Typer(no_args_is_help=True)


def _book_rows(books: list[Book], publishers: dict[int, str]) -> list[list[str]]:
    return [
        [
            str(book.id),
            book.title,
            book.isbn13,
            str(book.num_pages),
            _date_part(book.publication_date) if book.publication_date else "",
            publishers.get(book.publisher_id, str(book.publisher_id)),
        ]
        for book in books
    ]


@books_app.command("list")
def books_list(
    ctx: typer.Context,
    search: Optional[str] = typer.Option(
        None, "--search", "-s", help="Filter by title or ISBN."
    ),
    sort: SortField = typer.Option(SortField.TITLE, "--sort", help="Sort order."),
    desc: bool = typer.Option(False, "--desc", help="Sort descending."),
) -> None:
    """List books with their publisher.

    Example::

        shelfcache books list --search "war and" --sort pages
    """

    async def _list() -> None:
        async with open_runtime(ctx) as rt:
            books_sub = rt.catalog.books()
            publishers_sub = rt.catalog.publishers()
            books = require_data(await books_sub.settled())
            names = publisher_names(require_data(await publishers_sub.settled()) or [])

        selected = sort_books(search_books(books or [], search), sort, descending=desc)
        if not selected:
            info("No books found.")
            return
        print_table(
            ["id", "title", "isbn13", "pages", "published", "publisher"],
            _book_rows(selected, names),
            title="Books",
        )

    execute(_list())


@books_app.command("show")
def books_show(
    ctx: typer.Context,
    book_id: int = typer.Argument(help="Book id."),
) -> None:
    """Show one book."""

    async def _show() -> None:
        async with open_runtime(ctx) as rt:
            book = require_data(await rt.catalog.book(book_id).settled())
        format_response(book.model_dump(mode="json"))

    execute(_show())


def _collect_form(
    title: Optional[str],
    isbn: Optional[str],
    pages: Optional[int],
    language_id: Optional[int],
    publisher_id: Optional[int],
    published: Optional[str],
    base: Optional[dict[str, Any]] = None,
) -> BookInput:
    form: dict[str, Any] = dict(base or {})
    for name, value in (
        ("title", title),
        ("isbn13", isbn),
        ("num_pages", pages),
        ("language_id", language_id),
        ("publisher_id", publisher_id),
        ("publication_date", published),
    ):
        if value is not None:
            form[name] = value
    return parse_form(BookInput, form)


@books_app.command("add")
def books_add(
    ctx: typer.Context,
    title: str = typer.Option(..., "--title", help="Book title."),
    isbn: str = typer.Option(..., "--isbn", help="13-digit ISBN."),
    pages: int = typer.Option(..., "--pages", help="Number of pages."),
    language_id: int = typer.Option(..., "--language-id", help="Language id (see `languages list`)."),
    publisher_id: int = typer.Option(..., "--publisher-id", help="Publisher id (see `publishers list`)."),
    published: Optional[str] = typer.Option(
        None, "--published", help="Publication date (YYYY-MM-DD)."
    ),
) -> None:
    """Add a book."""

    async def _add() -> None:
        data = _collect_form(title, isbn, pages, language_id, publisher_id, published)
        async with open_runtime(ctx) as rt:
            require_success(await rt.catalog.add_book(data))
        success(f'Added "{data.title}".')

    execute(_add())


@books_app.command("edit")
def books_edit(
    ctx: typer.Context,
    book_id: int = typer.Argument(help="Book id."),
    title: Optional[str] = typer.Option(None, "--title", help="New title."),
    isbn: Optional[str] = typer.Option(None, "--isbn", help="New ISBN."),
    pages: Optional[int] = typer.Option(None, "--pages", help="New page count."),
    language_id: Optional[int] = typer.Option(None, "--language-id", help="New language id."),
    publisher_id: Optional[int] = typer.Option(None, "--publisher-id", help="New publisher id."),
    published: Optional[str] = typer.Option(None, "--published", help="New publication date."),
) -> None:
    """Edit a book. Fields not given keep their current value."""

    async def _edit() -> None:
        async with open_runtime(ctx) as rt:
            current: Book = require_data(await rt.catalog.book(book_id).settled())
            base = current.model_dump(
                include={"title", "isbn13", "num_pages", "language_id", "publisher_id", "publication_date"}
            )
            if base.get("publication_date"):
                base["publication_date"] = _date_part(base["publication_date"])
            data = _collect_form(title, isbn, pages, language_id, publisher_id, published, base)
            require_success(await rt.catalog.edit_book(book_id, data))
        success(f"Book {book_id} updated.")

    execute(_edit())


@books_app.command("delete")
def books_delete(
    ctx: typer.Context,
    book_id: int = typer.Argument(help="Book id."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a book."""
    force = bool((ctx.find_root().obj or {}).get("force"))
    if not (yes or force):
        typer.confirm(f"Delete book {book_id}?", abort=True)

    async def _delete() -> None:
        async with open_runtime(ctx) as rt:
            require_success(await rt.catalog.delete_book(book_id))
        success(f"Book {book_id} deleted.")

    execute(_delete())


def _date_part(value: str) -> str:
    """Trim a backend timestamp (``2001-05-03T00:00:00.000Z``) to its date."""
    head = value[:10]
    try:
        date.fromisoformat(head)
    except ValueError:
        return value
    return head
