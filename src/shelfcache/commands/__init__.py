"""CLI sub-commands for shelfcache.

* :mod:`~shelfcache.commands.books` -- list, search, show, add, edit, delete.
* :mod:`~shelfcache.commands.reference` -- publishers and languages.
* :mod:`~shelfcache.commands.auth` -- login, signup, logout, profile.
* :mod:`~shelfcache.commands.config` -- view and modify global settings.

Each module exports a :class:`typer.Typer` sub-application. Shared setup
(config resolution, the HTTP client, the cache and services) lives in
:mod:`~shelfcache.commands.runtime`.
"""
