"""Shared plumbing for CLI commands.

Every command builds one :class:`Runtime` per invocation: the resolved
config, an open :class:`~shelfcache.client.AsyncClient`, a fresh
:class:`~shelfcache.query.QueryCache`, and the services over them. Commands
are plain synchronous Typer callbacks that hand a coroutine to
:func:`run_async`.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Optional, TypeVar

import httpx
import typer

from shelfcache.auth import SessionStore
from shelfcache.client import AsyncClient
from shelfcache.config import resolve_config
from shelfcache.exceptions import FetchError, MutationError, ShelfcacheError, ValidationError
from shelfcache.models import GlobalConfig
from shelfcache.output import debug, error, warning
from shelfcache.query import MutationCoordinator, MutationHandle, QueryCache, QueryState
from shelfcache.services import AuthService, Catalog, CatalogService

T = TypeVar("T")


@dataclass
class Runtime:
    """Everything a command needs for one invocation."""

    config: GlobalConfig
    cache: QueryCache
    catalog: Catalog
    auth: AuthService
    session_store: SessionStore


def _options(ctx: typer.Context) -> dict[str, Any]:
    root = ctx.find_root()
    return root.obj if isinstance(root.obj, dict) else {}


@asynccontextmanager
async def open_runtime(ctx: typer.Context) -> AsyncIterator[Runtime]:
    """Resolve config and open the backend client for the duration of a command."""
    opts = _options(ctx)
    config = resolve_config(cli_base_url=opts.get("base_url"))
    store = SessionStore()
    cache = QueryCache(config.cache)
    transport: Optional[httpx.AsyncBaseTransport] = opts.get("transport")
    debug(f"Backend: {config.request.base_url}")
    try:
        async with AsyncClient(config.request, session_store=store, transport=transport) as client:
            coordinator = MutationCoordinator(cache)
            yield Runtime(
                config=config,
                cache=cache,
                catalog=Catalog(CatalogService(client), cache, coordinator),
                auth=AuthService(client, store, cache, coordinator),
                session_store=store,
            )
            # Let refetches started by a mutation land before the client closes.
            await cache.wait_idle()
    finally:
        cache.close()


def run_async(awaitable: Awaitable[T]) -> T:
    """Run *awaitable* on a fresh event loop."""

    async def _main() -> T:
        return await awaitable

    return asyncio.run(_main())


def execute(awaitable: Awaitable[T]) -> T:
    """Run *awaitable*, turning a :class:`ShelfcacheError` into a clean exit with its code."""
    try:
        return run_async(awaitable)
    except ShelfcacheError as exc:
        error(str(exc))
        if isinstance(exc, ValidationError):
            for field, message in exc.errors.items():
                error(f"  {field}: {message}")
        raise typer.Exit(code=exc.exit_code) from None


def _unwrap_error(exc: ShelfcacheError) -> ShelfcacheError:
    """Prefer the transport error inside a fetch/mutation failure for its exit code."""
    if isinstance(exc, (FetchError, MutationError)) and isinstance(exc.cause, ShelfcacheError):
        return exc.cause
    return exc


def require_data(state: QueryState) -> Any:
    """Return the state's data, raising its error only when there is nothing to show.

    A failed refresh over previously cached data is reported as a warning
    and the cached data is returned.

    Raises:
        ShelfcacheError: If the fetch failed and no data was ever cached.
    """
    if state.error is not None:
        if not state.has_data:
            raise _unwrap_error(state.error)
        warning(f"Showing cached {state.key}; refresh failed: {state.error}")
    return state.data


def require_success(handle: MutationHandle) -> Any:
    """Return a settled mutation's result or raise its error.

    Raises:
        ShelfcacheError: If the mutation failed.
    """
    if handle.error is not None:
        raise _unwrap_error(handle.error)
    return handle.data
