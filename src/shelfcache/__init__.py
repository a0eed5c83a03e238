"""shelfcache -- a query cache and mutation coordinator for a book catalog.

The core is :mod:`shelfcache.query`: a keyed cache of asynchronous fetch
results that coalesces concurrent fetches, serves stale data while it
revalidates, notifies subscribers of every state change, and invalidates by
key prefix. Writes run through a mutation coordinator that invalidates the
affected keys once the backend confirms.

Typical workflow::

    shelfcache config set request.base_url https://books.example.com/api
    shelfcache auth login --email ada@example.com
    shelfcache books list --sort published
    shelfcache books delete 7

Modules:
    app: Typer application and CLI entry point.
    query: Query keys, the cache, and the mutation coordinator.
    services: Catalog and auth endpoints bound to the cache.
    client: Async HTTP client for the catalog backend.
    models: Pydantic models shared across the entire package.
    config: XDG-aware configuration loading.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
