"""Request-keyed query cache with coalescing and stale-while-revalidate reads.

:class:`QueryCache` is the single source of truth for remote reads. Every
list, detail, and profile view asks it for a :class:`~shelfcache.query.keys.QueryKey`
together with a *fetcher* (a no-argument coroutine function) and gets back a
:class:`Subscription` whose state is kept current as fetches settle.

Per key the cache guarantees:

* **Coalescing** -- at most one fetch is in flight. Subscribers, one-off
  :meth:`QueryCache.fetch` calls, and invalidation-triggered refetches
  all attach to the same :class:`asyncio.Task`.
* **Stale-while-revalidate** -- cached data is returned immediately. If the
  entry is older than ``stale_time`` or was invalidated, a background
  refetch starts while the old value stays visible.
* **Stale retention** -- a failed refetch sets ``error`` and ``status`` but
  never clears ``data``.
* **Ordered notification** -- listeners are called synchronously, on the
  event loop, each time an entry's visible state changes.

Fetch failures never propagate out of the cache; they are recorded as a
:class:`~shelfcache.exceptions.FetchError` on the entry. There are no
retries here; a fetcher that wants them wraps its own.

Entries whose last subscriber leaves are kept for ``gc_time`` seconds so a
quick resubscription is instant, then evicted.

The cache is not thread-safe and must be used from a single running event
loop, the same way the rest of the client is.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from shelfcache.exceptions import FetchError, InvalidKeyError
from shelfcache.models import CacheConfig
from shelfcache.query.keys import KeyLike, QueryKey

logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Any]]


class QueryStatus(str, enum.Enum):
    """Lifecycle of a cache entry."""

    IDLE = "idle"
    FETCHING = "fetching"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """Immutable view of a cache entry at one point in time.

    Attributes:
        key: The entry's key.
        status: Current :class:`QueryStatus`.
        data: Last successfully fetched value (kept while refetching and
            after a failed refetch).
        error: Last failure, cleared by the next success.
        updated_at: Clock reading of the last success, ``None`` if the entry
            never succeeded.
        is_invalidated: The entry was invalidated and has not been
            refetched successfully since.
        is_stale: Invalidated, never fetched, or older than ``stale_time``.
        subscriber_count: Number of active subscriptions.
    """

    key: QueryKey
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: Optional[FetchError] = None
    updated_at: Optional[float] = None
    is_invalidated: bool = False
    is_stale: bool = True
    subscriber_count: int = 0

    @property
    def is_fetching(self) -> bool:
        return self.status is QueryStatus.FETCHING

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    @property
    def has_data(self) -> bool:
        return self.updated_at is not None


Listener = Callable[[QueryState], None]


@dataclass(eq=False)
class CacheEntry:
    """Mutable per-key record. Only :class:`QueryCache` touches these fields."""

    key: QueryKey
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: Optional[FetchError] = None
    updated_at: Optional[float] = None
    invalidated: bool = False
    fetcher: Optional[Fetcher] = None
    in_flight: Optional[asyncio.Task] = None
    refetch_pending: bool = False
    subscriptions: list[Subscription] = field(default_factory=list)
    gc_handle: Optional[asyncio.TimerHandle] = None

    @property
    def subscriber_count(self) -> int:
        return len(self.subscriptions)


class Subscription:
    """One observer's interest in a key.

    Reading :attr:`state` (or the ``status``/``data``/``error`` shortcuts)
    always returns the entry's current state while the subscription is
    active. After :meth:`unsubscribe` it keeps returning the last state it
    was shown.

    Can be used as a context manager; leaving the block unsubscribes.
    """

    def __init__(self, cache: QueryCache, key: QueryKey, listener: Optional[Listener]) -> None:
        self._cache = cache
        self._key = key
        self._listener = listener
        self._active = True
        self._last_state = QueryState(key=key)

    @property
    def key(self) -> QueryKey:
        return self._key

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def state(self) -> QueryState:
        if self._active:
            current = self._cache.get_snapshot(self._key)
            if current is not None:
                return current
        return self._last_state

    @property
    def status(self) -> QueryStatus:
        return self.state.status

    @property
    def data(self) -> Any:
        return self.state.data

    @property
    def error(self) -> Optional[FetchError]:
        return self.state.error

    async def settled(self) -> QueryState:
        """Wait until no fetch is in flight for this key, then return the state.

        Follow-up fetches started by an invalidation that arrived mid-flight
        are waited for as well.
        """
        while self._active:
            task = self._cache._in_flight_for(self._key)
            if task is None:
                break
            await asyncio.shield(task)
        return self.state

    def unsubscribe(self) -> None:
        self._cache.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *args: object) -> None:
        self.unsubscribe()

    def __repr__(self) -> str:
        return f"<Subscription {self._key} active={self._active}>"

    def _deliver(self, state: QueryState) -> None:
        self._last_state = state
        if self._listener is not None:
            self._listener(state)

    def _detach(self, state: Optional[QueryState]) -> None:
        if state is not None:
            self._last_state = state
        self._active = False


class QueryCache:
    """In-memory cache of remote reads keyed by :class:`~shelfcache.query.keys.QueryKey`.

    Construct one per application (or per test) and pass it to whatever
    needs it; there is no module-level instance.

    Args:
        config: Freshness window (``stale_time``) and eviction delay
            (``gc_time``). Defaults to :class:`~shelfcache.models.CacheConfig`.
        clock: Returns the current time in seconds. Injected by tests.

    Example::

        cache = QueryCache(CacheConfig(stale_time=30))
        sub = cache.subscribe(QueryKey("books"), catalog.get_books, listener=render)
        state = await sub.settled()
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[QueryKey, CacheEntry] = {}

    @property
    def config(self) -> CacheConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Observation
    # ------------------------------------------------------------------ #

    def subscribe(
        self,
        key: KeyLike,
        fetcher: Fetcher,
        listener: Optional[Listener] = None,
    ) -> Subscription:
        """Register interest in *key* and start a fetch if the entry needs one.

        A new key is created ``idle`` and moves to ``fetching`` at once. A
        fresh entry is served as-is. A stale or never-fetched entry keeps
        its current data visible while a background fetch runs.

        Must be called from the running event loop.

        Args:
            key: Key, resource name, or segment sequence.
            fetcher: Coroutine function producing the value. The most
                recently supplied fetcher is the one used for refetches.
            listener: Called with a :class:`QueryState` on every visible
                state change of the entry.
        """
        key = QueryKey.of(key)
        entry = self._entry_for(key)
        entry.fetcher = fetcher
        self._cancel_gc(entry)

        subscription = Subscription(self, key, listener)
        entry.subscriptions.append(subscription)
        subscription._last_state = self._snapshot(entry)
        logger.debug("Subscribed to %s (%d subscribers)", key, entry.subscriber_count)

        if entry.in_flight is None and self._is_stale(entry):
            self._start_fetch(entry)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop notifying *subscription*. Safe to call more than once.

        The entry itself is kept; once nobody observes it, eviction is
        scheduled after ``gc_time``. An in-flight fetch is not aborted.
        """
        if not subscription.is_active:
            return
        entry = self._entries.get(subscription.key)
        subscription._detach(self._snapshot(entry) if entry is not None else None)
        if entry is None or subscription not in entry.subscriptions:
            return
        entry.subscriptions.remove(subscription)
        logger.debug(
            "Unsubscribed from %s (%d subscribers)", entry.key, entry.subscriber_count
        )
        if not entry.subscriptions:
            self._schedule_gc(entry)

    def get_snapshot(self, key: KeyLike) -> Optional[QueryState]:
        """Return the current state of *key* without subscribing, or ``None``."""
        entry = self._entries.get(QueryKey.of(key))
        if entry is None:
            return None
        return self._snapshot(entry)

    async def fetch(self, key: KeyLike, fetcher: Optional[Fetcher] = None) -> QueryState:
        """Return fresh data for *key*, fetching (or joining a fetch) if needed.

        Does not subscribe. Never raises for fetch failures; check
        :attr:`QueryState.error` on the result.

        Args:
            key: Key to read.
            fetcher: Coroutine function producing the value. May be omitted
                when the entry already knows its fetcher.

        Raises:
            LookupError: If the entry needs a fetch and no fetcher is known.
        """
        key = QueryKey.of(key)
        entry = self._entry_for(key)
        if fetcher is not None:
            entry.fetcher = fetcher
        if entry.in_flight is None and not self._is_stale(entry):
            return self._snapshot(entry)

        task = self._start_fetch(entry)
        if task is None:
            raise LookupError(f"No fetcher registered for {key}")
        return await asyncio.shield(task)

    async def wait_idle(self) -> None:
        """Wait until no entry has a fetch in flight, follow-up fetches included."""
        while True:
            tasks = [e.in_flight for e in self._entries.values() if e.in_flight is not None]
            if not tasks:
                return
            await asyncio.wait(tasks)

    # ------------------------------------------------------------------ #
    # Writes to the table
    # ------------------------------------------------------------------ #

    def invalidate(self, key_or_prefix: KeyLike) -> list[QueryKey]:
        """Mark every entry equal to or under *key_or_prefix* as stale.

        Observed entries refetch immediately. If such an entry already has a
        fetch in flight, exactly one follow-up fetch runs after it settles.
        Unobserved entries refetch on their next subscription.

        Returns:
            The keys that matched.
        """
        prefix = QueryKey.of(key_or_prefix)
        matched = [entry for key, entry in self._entries.items() if prefix.is_prefix_of(key)]
        for entry in matched:
            entry.invalidated = True
            if entry.in_flight is not None:
                # The running fetch may predate the write; its result stays stale.
                entry.refetch_pending = True
            elif entry.subscriptions:
                self._start_fetch(entry)
        logger.debug("Invalidated %s: %d entries", prefix, len(matched))
        return [entry.key for entry in matched]

    def set_data(self, key: KeyLike, data: Any) -> QueryState:
        """Store *data* for *key* as if a fetch had just succeeded and notify subscribers."""
        key = QueryKey.of(key)
        entry = self._entry_for(key)
        entry.data = data
        entry.error = None
        entry.updated_at = self._clock()
        entry.invalidated = False
        if entry.in_flight is None:
            entry.status = QueryStatus.SUCCESS
        self._notify(entry)
        if not entry.subscriptions:
            self._schedule_gc(entry)
        return self._snapshot(entry)

    def remove(self, key_or_prefix: KeyLike) -> list[QueryKey]:
        """Drop every entry equal to or under *key_or_prefix*.

        Their subscriptions are detached and any in-flight result for them
        is discarded.
        """
        prefix = QueryKey.of(key_or_prefix)
        removed = [key for key in self._entries if prefix.is_prefix_of(key)]
        for key in removed:
            self._drop(key)
        return removed

    def clear(self) -> None:
        """Drop every entry."""
        for key in list(self._entries):
            self._drop(key)

    def close(self) -> None:
        """Cancel pending evictions and drop every entry."""
        self.clear()

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    def keys(self) -> list[QueryKey]:
        return list(self._entries)

    def fetching_count(self, prefix: Optional[KeyLike] = None) -> int:
        """Number of entries (optionally under *prefix*) with a fetch in flight."""
        match = QueryKey.of(prefix) if prefix is not None else None
        return sum(
            1
            for key, entry in self._entries.items()
            if entry.in_flight is not None and (match is None or match.is_prefix_of(key))
        )

    def stats(self) -> dict[str, Any]:
        """Return entry, subscriber, and in-flight counts plus the active config."""
        return {
            "entries": len(self._entries),
            "subscribers": sum(e.subscriber_count for e in self._entries.values()),
            "fetching": self.fetching_count(),
            "stale_time": self._config.stale_time,
            "gc_time": self._config.gc_time,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        try:
            return QueryKey.of(key) in self._entries  # type: ignore[arg-type]
        except (InvalidKeyError, TypeError):
            return False

    # ------------------------------------------------------------------ #
    # Fetch algorithm
    # ------------------------------------------------------------------ #

    def _start_fetch(self, entry: CacheEntry) -> Optional[asyncio.Task]:
        """Return the in-flight task for *entry*, starting one if none is running."""
        if entry.in_flight is not None:
            return entry.in_flight
        if entry.fetcher is None:
            return None

        loop = asyncio.get_running_loop()
        entry.status = QueryStatus.FETCHING
        entry.in_flight = loop.create_task(
            self._run_fetch(entry, entry.fetcher), name=f"shelfcache-fetch:{entry.key}"
        )
        logger.debug("Fetching %s", entry.key)
        self._notify(entry)
        return entry.in_flight

    async def _run_fetch(self, entry: CacheEntry, fetcher: Fetcher) -> QueryState:
        try:
            data = await fetcher()
        except asyncio.CancelledError:
            entry.in_flight = None
            entry.status = self._resting_status(entry)
            raise
        except Exception as exc:
            entry.error = FetchError.wrap(exc)
            entry.status = QueryStatus.ERROR
            logger.debug("Fetch for %s failed: %s", entry.key, entry.error)
        else:
            entry.data = data
            entry.error = None
            entry.status = QueryStatus.SUCCESS
            entry.updated_at = self._clock()
            entry.invalidated = entry.refetch_pending
            logger.debug("Fetched %s", entry.key)
        entry.in_flight = None

        state = self._snapshot(entry)
        if self._entries.get(entry.key) is not entry:
            # Removed while in flight.
            return state
        self._notify(entry)
        self._after_settle(entry)
        return state

    def _after_settle(self, entry: CacheEntry) -> None:
        if entry.refetch_pending:
            entry.refetch_pending = False
            if entry.subscriptions:
                self._start_fetch(entry)
                return
        if not entry.subscriptions:
            self._schedule_gc(entry)

    def _is_stale(self, entry: CacheEntry) -> bool:
        if entry.invalidated or entry.updated_at is None:
            return True
        return self._clock() - entry.updated_at >= self._config.stale_time

    @staticmethod
    def _resting_status(entry: CacheEntry) -> QueryStatus:
        if entry.error is not None:
            return QueryStatus.ERROR
        if entry.updated_at is not None:
            return QueryStatus.SUCCESS
        return QueryStatus.IDLE

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _entry_for(self, key: QueryKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key)
            self._entries[key] = entry
            logger.debug("Created cache entry %s", key)
        return entry

    def _in_flight_for(self, key: QueryKey) -> Optional[asyncio.Task]:
        entry = self._entries.get(key)
        return entry.in_flight if entry is not None else None

    def _snapshot(self, entry: CacheEntry) -> QueryState:
        return QueryState(
            key=entry.key,
            status=entry.status,
            data=entry.data,
            error=entry.error,
            updated_at=entry.updated_at,
            is_invalidated=entry.invalidated,
            is_stale=self._is_stale(entry),
            subscriber_count=entry.subscriber_count,
        )

    def _notify(self, entry: CacheEntry) -> None:
        if not entry.subscriptions:
            return
        state = self._snapshot(entry)
        for subscription in list(entry.subscriptions):
            try:
                subscription._deliver(state)
            except Exception:
                logger.exception("Listener for %s raised", entry.key)

    def _schedule_gc(self, entry: CacheEntry) -> None:
        gc_time = self._config.gc_time
        if gc_time is None:
            return
        self._cancel_gc(entry)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, %s will not be evicted", entry.key)
            return
        entry.gc_handle = loop.call_later(gc_time, self._evict, entry.key)

    @staticmethod
    def _cancel_gc(entry: CacheEntry) -> None:
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

    def _evict(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.gc_handle = None
        if entry.subscriptions or entry.in_flight is not None:
            # Rescheduled by _after_settle once the fetch lands.
            return
        del self._entries[key]
        logger.debug("Evicted %s", key)

    def _drop(self, key: QueryKey) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        self._cancel_gc(entry)
        state = self._snapshot(entry)
        for subscription in entry.subscriptions:
            subscription._detach(state)
        entry.subscriptions.clear()
        logger.debug("Removed %s", key)
