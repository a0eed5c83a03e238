"""Fixtures shared by every test module.

The ``backend`` fixture is a small in-memory catalog served through
``httpx.MockTransport``; ``clock`` drives cache freshness by hand.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterator

import httpx
import pytest
from typer.testing import CliRunner

from shelfcache.output import OutputFormat, OutputManager, reset_output, set_output


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> Iterator[None]:
    """Undo the global state a CLI invocation leaves behind.

    An OutputManager holds on to whichever stdout/stderr were current when
    it was built, and CliRunner swaps those out per invocation. The root
    callback also pins a Rich handler on the ``shelfcache`` logger, which
    would hide records from ``caplog``.
    """
    yield
    reset_output()
    logger = logging.getLogger("shelfcache")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point config and data dirs into *tmp_path* and run from there.

    ``SHELFCACHE_*`` overrides from the developer's shell are dropped.
    """
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.setattr("shelfcache.config._is_xdg_platform", lambda: True)
    for var in ("SHELFCACHE_BASE_URL", "SHELFCACHE_STALE_TIME"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def quiet_output() -> Iterator[OutputManager]:
    """Install a PLAIN-format, quiet OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def json_output() -> Iterator[OutputManager]:
    """Install a JSON-format OutputManager as the global output."""
    output = OutputManager(format=OutputFormat.JSON)
    set_output(output)
    yield output
    reset_output()


class FakeClock:
    """Manually advanced clock for ``QueryCache(clock=...)``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class FakeBackend:
    """Minimal catalog backend behind an ``httpx.MockTransport``.

    Records every request as ``(method, path)`` in :attr:`calls` so tests
    can assert which fetches and writes reached the network.
    """

    def __init__(self) -> None:
        self.books: dict[int, dict[str, Any]] = {
            7: {
                "id": 7,
                "title": "Dune",
                "isbn13": "9780441013593",
                "num_pages": 412,
                "language_id": 1,
                "publisher_id": 2,
                "publication_date": "1965-08-01T00:00:00.000Z",
            },
            8: {
                "id": 8,
                "title": "Emma",
                "isbn13": "9780141439587",
                "num_pages": 474,
                "language_id": 1,
                "publisher_id": 3,
                "publication_date": "1815-12-23T00:00:00.000Z",
            },
        }
        self.publishers = [
            {"id": 2, "publisher_name": "Ace Books", "incorporation_date": "1952-01-01"},
            {"id": 3, "publisher_name": "Penguin Classics", "incorporation_date": "1946-01-01"},
        ]
        self.languages = [
            {"language_id": 1, "language_code": "eng", "language_name": "English"},
        ]
        self.calls: list[tuple[str, str]] = []
        self.bodies: list[Any] = []
        self.headers: list[httpx.Headers] = []
        self.fail: dict[tuple[str, str], int] = {}
        self.next_id = 100

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def count(self, method: str, path: str) -> int:
        return self.calls.count((method, path))

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.lstrip("/")
        method = request.method
        self.calls.append((method, path))
        self.headers.append(request.headers)
        body = json.loads(request.content) if request.content else None
        self.bodies.append(body)

        status = self.fail.get((method, path))
        if status is not None:
            return httpx.Response(status, json={"message": f"{method} {path} failed"})

        if path == "book" and method == "GET":
            return httpx.Response(200, json={"books": list(self.books.values())})
        if path == "book" and method == "POST":
            book = {"id": self.next_id, **body}
            self.books[self.next_id] = book
            self.next_id += 1
            return httpx.Response(201, json={"book": book})
        if path.startswith("book/"):
            book_id = int(path.split("/", 1)[1])
            if book_id not in self.books:
                return httpx.Response(404, json={"message": "Book not found"})
            if method == "GET":
                return httpx.Response(200, json={"book": self.books[book_id]})
            if method == "PUT":
                self.books[book_id] = {"id": book_id, **body}
                return httpx.Response(200, json={"book": self.books[book_id]})
            if method == "DELETE":
                del self.books[book_id]
                return httpx.Response(204)
        if path == "publisher":
            return httpx.Response(200, json={"publishers": self.publishers})
        if path == "book_language":
            return httpx.Response(200, json=self.languages)
        if path == "login":
            if body.get("password") != "secret":
                return httpx.Response(401, json={"message": "Invalid credentials"})
            return httpx.Response(
                200,
                json={
                    "accessToken": "tok-123",
                    "user": {"id": 1, "firstName": "Ada", "lastName": "Lovelace", "email": body["email"]},
                },
            )
        if path == "signup":
            return httpx.Response(201, json={"id": 2, **body})
        return httpx.Response(404, json={"message": "No route"})


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def cli_runner() -> CliRunner:
    """Typer CLI test runner."""
    return CliRunner()

