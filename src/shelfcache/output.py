"""Terminal rendering for shelfcache commands.

Catalog records (books, publishers, languages, profiles) go to stdout so
they can be piped into other tools. Everything else, including cache
freshness notes and failures, goes to stderr.

The active :class:`OutputManager` is installed once per invocation by the
root Typer callback; the module-level functions at the bottom forward to it.
"""

from __future__ import annotations

import json
import os
import sys
from enum import Enum
from typing import Any, Iterator, NamedTuple, Optional

from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table


class OutputFormat(str, Enum):
    """How records are rendered on stdout."""

    AUTO = "auto"
    JSON = "json"
    PLAIN = "plain"
    RICH = "rich"


class _Level(NamedTuple):
    prefix: str
    style: Optional[str]
    hushable: bool


_LEVELS = {
    "info": _Level("", None, True),
    "success": _Level("", "green", True),
    "suggest": _Level("→ ", "dim", True),
    "warning": _Level("Warning: ", "yellow", False),
    "error": _Level("Error: ", "bold red", False),
    "debug": _Level("[debug] ", "dim", False),
}


class OutputManager:
    """Pair of Rich consoles plus the user's rendering preferences.

    ``AUTO`` becomes ``RICH`` on an interactive, colour-capable terminal and
    ``PLAIN`` otherwise. ``quiet`` hides info, success and suggestion lines;
    ``verbose`` reveals debug lines. Warnings and errors always print.
    """

    def __init__(
        self,
        format: OutputFormat = OutputFormat.AUTO,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        if format is OutputFormat.AUTO:
            rich_ok = _is_tty() and not self._no_color
            format = OutputFormat.RICH if rich_ok else OutputFormat.PLAIN
        self._format = format
        self._stdout = Console(
            file=sys.stdout,
            no_color=self._no_color,
            force_terminal=format is OutputFormat.RICH,
        )
        self._stderr = Console(file=sys.stderr, no_color=self._no_color, stderr=True)

    @property
    def format(self) -> OutputFormat:
        return self._format

    # stdout

    def print_data(self, text: str) -> None:
        print(text, file=sys.stdout, flush=True)

    def format_response(self, data: Any) -> None:
        """Write one record (a dict) or several (a list) to stdout."""
        if self._format is OutputFormat.PLAIN:
            for line in _plain_lines(data):
                self.print_data(line)
            return
        text = json.dumps(data, indent=2, ensure_ascii=False, default=str)
        if self._format is OutputFormat.JSON:
            self.print_data(text)
        else:
            self._stdout.print(Syntax(text, "json", theme="monokai", word_wrap=True))

    def print_table(
        self,
        headers: list[str],
        rows: list[list[str]],
        title: Optional[str] = None,
    ) -> None:
        """Write rows as a Rich table, a JSON array of objects, or TSV."""
        if self._format is OutputFormat.JSON:
            self.print_data(
                json.dumps([dict(zip(headers, row)) for row in rows], indent=2, ensure_ascii=False)
            )
            return
        if self._format is OutputFormat.PLAIN:
            for row in [headers, *rows]:
                self.print_data("\t".join(row))
            return
        table = Table(title=title, header_style="bold cyan")
        for header in headers:
            table.add_column(header)
        for row in rows:
            # Titles are user data and may contain square brackets.
            table.add_row(*map(escape, row))
        self._stdout.print(table)

    # stderr

    def info(self, message: str) -> None:
        self._say("info", message)

    def success(self, message: str) -> None:
        self._say("success", message)

    def suggest(self, message: str) -> None:
        self._say("suggest", message)

    def warning(self, message: str) -> None:
        self._say("warning", message)

    def error(self, message: str) -> None:
        self._say("error", message)

    def debug(self, message: str) -> None:
        if self._verbose:
            self._say("debug", message)

    def _say(self, level: str, message: str) -> None:
        lvl = _LEVELS[level]
        if lvl.hushable and self._quiet:
            return
        if self._no_color or lvl.style is None:
            print(f"{lvl.prefix}{message}", file=sys.stderr, flush=True)
        elif level in ("warning", "error"):
            label = lvl.prefix.rstrip()
            self._stderr.print(f"[{lvl.style}]{label}[/{lvl.style}] {escape(message)}")
        else:
            self._stderr.print(f"[{lvl.style}]{escape(lvl.prefix + message)}[/{lvl.style}]")


def _plain_lines(data: Any) -> Iterator[str]:
    if isinstance(data, dict):
        for key, value in data.items():
            yield f"{key}\t{value}"
    elif isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                yield "\t".join(str(v) for v in item.values())
            else:
                yield str(item)
    else:
        yield str(data)


def _is_tty() -> bool:
    isatty = getattr(sys.stdout, "isatty", None)
    return bool(isatty and isatty())


def _should_disable_color() -> bool:
    """``NO_COLOR`` (any value, even empty) or ``TERM=dumb`` turns colour off."""
    return "NO_COLOR" in os.environ or os.environ.get("TERM") == "dumb"


_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    global _output
    _output = output


def reset_output() -> None:
    global _output
    _output = None


def format_response(data: Any) -> None:
    get_output().format_response(data)


def print_table(headers: list[str], rows: list[list[str]], title: Optional[str] = None) -> None:
    get_output().print_table(headers, rows, title)


def info(message: str) -> None:
    get_output().info(message)


def success(message: str) -> None:
    get_output().success(message)


def suggest(message: str) -> None:
    get_output().suggest(message)


def warning(message: str) -> None:
    get_output().warning(message)


def error(message: str) -> None:
    get_output().error(message)


def debug(message: str) -> None:
    get_output().debug(message)
