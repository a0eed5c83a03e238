"""``shelfcache`` command line: root options and the ``main`` entry point.

Sub-command groups live in :mod:`shelfcache.commands`; each one opens its own
query cache and backend client through :func:`~shelfcache.commands.runtime.open_runtime`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler

from shelfcache import __version__
from shelfcache.commands.auth import auth_app
from shelfcache.commands.books import books_app
from shelfcache.commands.config import config_app
from shelfcache.commands.reference import languages_app, publishers_app
from shelfcache.config import get_data_dir
from shelfcache.exceptions import ShelfcacheError
from shelfcache.exit_codes import EXIT_GENERIC_FAILURE
from shelfcache.output import OutputFormat, OutputManager, error, set_output

_EXIT_INTERRUPTED = 130

app = typer.Typer(
    name="shelfcache",
    help="Browse and edit a book catalog through a query cache.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

for _group, _name, _help in (
    (books_app, "books", "List, show, add, edit and delete books."),
    (publishers_app, "publishers", "Publishers known to the catalog."),
    (languages_app, "languages", "Languages known to the catalog."),
    (auth_app, "auth", "Log in, sign up, log out, and show the profile."),
    (config_app, "config", "Show and change stored settings."),
):
    app.add_typer(_group, name=_name, help=_help)


def _print_version(value: bool) -> None:
    if value:
        typer.echo(f"shelfcache {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    """Send ``shelfcache.*`` log records to stderr via Rich.

    Only warnings show by default. ``--verbose`` also shows the cache's
    debug records for fetches, invalidations and evictions.
    """
    level = logging.DEBUG if verbose else logging.WARNING
    handler = RichHandler(
        console=Console(stderr=True),
        level=level,
        show_time=False,
        show_path=verbose,
        markup=False,
        rich_tracebacks=True,
    )
    logger = logging.getLogger("shelfcache")
    logger.handlers[:] = [handler]
    logger.setLevel(level)
    logger.propagate = False


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False, "--version", callback=_print_version, is_eager=True, help="Show version and exit."
    ),
    base_url: Optional[str] = typer.Option(
        None, "--base-url", help="Catalog backend URL for this run."
    ),
    json_output: bool = typer.Option(False, "--json", help="Print records as JSON."),
    plain_output: bool = typer.Option(False, "--plain", help="Print records as tab-separated text."),
    no_color: bool = typer.Option(False, "--no-color", help="Never use colour."),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Only print data, warnings and errors."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show cache and HTTP debug lines."),
    force: bool = typer.Option(False, "--force", "-f", help="Answer yes to confirmations."),
) -> None:
    """Set up output and logging, then stash the shared options on ``ctx.obj``.

    Anything the caller already put in ``ctx.obj`` (tests pass an httpx
    transport this way) is left in place.
    """
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    else:
        fmt = OutputFormat.AUTO
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet, verbose=verbose))
    _configure_logging(verbose)

    ctx.ensure_object(dict)
    ctx.obj.update(base_url=base_url, force=force, verbose=verbose)


def _on_sigint(signum: int, frame: Any) -> None:
    sys.stderr.write("\nCancelled.\n")
    sys.exit(_EXIT_INTERRUPTED)


def _write_crash_log() -> Path:
    """Dump the traceback being handled to ``<data dir>/logs``."""
    logs = get_data_dir() / "logs"
    logs.mkdir(parents=True, exist_ok=True)
    path = logs / f"crash-{datetime.now():%Y%m%d-%H%M%S}.log"
    path.write_text(traceback.format_exc(), encoding="utf-8")
    return path


def main() -> None:
    """Console-script entry point.

    A :class:`~shelfcache.exceptions.ShelfcacheError` that escapes a command
    exits with its own code. Anything else is a bug: the traceback goes to a
    crash log and the exit code is generic.
    """
    signal.signal(signal.SIGINT, _on_sigint)
    try:
        app()
    except KeyboardInterrupt:
        _on_sigint(signal.SIGINT, None)
    except ShelfcacheError as exc:
        error(str(exc))
        sys.exit(exc.exit_code)
    except Exception:
        error(f"Unexpected error. Debug log: {_write_crash_log()}")
        sys.exit(EXIT_GENERIC_FAILURE)
