"""HTTP transport for the catalog backend.

:class:`AsyncClient` is the only component that talks to the network. The
query cache never sees it directly; it only runs the fetchers and actions
built on top of it in :mod:`shelfcache.services`.
"""

from shelfcache.client.async_client import AsyncClient
from shelfcache.client.response import extract_response_data

__all__ = ["AsyncClient", "extract_response_data"]
