"""Query cache and mutation coordination.

The read side is :class:`QueryCache`: request-keyed, coalescing,
stale-while-revalidate, with explicit subscribe/notify. The write side is
:class:`MutationCoordinator`, which runs an action and then invalidates the
keys it affects. :class:`QueryKey` ties the two together through prefix
matching.
"""

from shelfcache.query.cache import (
    CacheEntry,
    QueryCache,
    QueryState,
    QueryStatus,
    Subscription,
)
from shelfcache.query.keys import QueryKey, matches
from shelfcache.query.mutation import MutationCoordinator, MutationHandle, MutationStatus

__all__ = [
    "CacheEntry",
    "MutationCoordinator",
    "MutationHandle",
    "MutationStatus",
    "QueryCache",
    "QueryKey",
    "QueryState",
    "QueryStatus",
    "Subscription",
    "matches",
]
