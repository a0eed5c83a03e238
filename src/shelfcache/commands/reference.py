"""Reference-data commands -- publishers and languages.

These lists feed the publisher and language ids that ``books add`` and
``books edit`` expect.
"""

from __future__ import annotations

import typer

from shelfcache.commands.runtime import execute, open_runtime, require_data
from shelfcache.output import info, print_table

publishers_app = typer.Typer(no_args_is_help=True)
languages_app = typer.Typer(no_args_is_help=True)


@publishers_app.command("list")
def publishers_list(ctx: typer.Context) -> None:
    """List publishers."""

    async def _list() -> None:
        async with open_runtime(ctx) as rt:
            publishers = require_data(await rt.catalog.publishers().settled()) or []
        if not publishers:
            info("No publishers found.")
            return
        print_table(
            ["id", "name", "incorporated"],
            [[str(p.id), p.publisher_name, p.incorporation_date or ""] for p in publishers],
            title="Publishers",
        )

    execute(_list())


@languages_app.command("list")
def languages_list(ctx: typer.Context) -> None:
    """List book languages."""

    async def _list() -> None:
        async with open_runtime(ctx) as rt:
            languages = require_data(await rt.catalog.languages().settled()) or []
        if not languages:
            info("No languages found.")
            return
        print_table(
            ["id", "code", "name"],
            [[str(lang.language_id), lang.language_code or "", lang.language_name] for lang in languages],
            title="Languages",
        )

    execute(_list())
