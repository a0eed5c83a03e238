"""Tests for QueryCache: coalescing, freshness, invalidation, notification, eviction."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import pytest

from shelfcache.exceptions import FetchError
from shelfcache.models import CacheConfig
from shelfcache.query import QueryCache, QueryKey, QueryStatus

BOOKS = QueryKey("books")


class Fetcher:
    """Counts calls and returns (or raises) scripted results.

    When ``gate`` is set, every call blocks until the event is set, which
    keeps a fetch in flight for as long as a test needs.
    """

    def __init__(self, *results: Any, gate: Optional[asyncio.Event] = None) -> None:
        self.results = list(results) or [None]
        self.calls = 0
        self.gate = gate

    async def __call__(self) -> Any:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        result = self.results[min(self.calls, len(self.results)) - 1]
        if isinstance(result, BaseException):
            raise result
        return result


# ------------------------------------------------------------------ #
# Subscribe and coalescing
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
class TestSubscribe:
    async def test_new_key_fetches_and_notifies(self) -> None:
        cache = QueryCache()
        seen = []
        sub = cache.subscribe(BOOKS, Fetcher(["dune"]), seen.append)

        assert sub.status is QueryStatus.FETCHING
        state = await sub.settled()

        assert state.status is QueryStatus.SUCCESS
        assert state.data == ["dune"]
        assert state.error is None
        assert [s.status for s in seen] == [QueryStatus.FETCHING, QueryStatus.SUCCESS]

    async def test_concurrent_subscribers_share_one_fetch(self) -> None:
        cache = QueryCache()
        gate = asyncio.Event()
        fetcher = Fetcher(["dune"], gate=gate)

        first = cache.subscribe(BOOKS, fetcher)
        second = cache.subscribe(BOOKS, fetcher)
        await asyncio.sleep(0)
        assert fetcher.calls == 1
        assert cache.fetching_count() == 1

        gate.set()
        await first.settled()
        await second.settled()

        assert fetcher.calls == 1
        assert first.data == second.data == ["dune"]

    async def test_fetch_joins_in_flight_subscription_fetch(self) -> None:
        cache = QueryCache()
        gate = asyncio.Event()
        fetcher = Fetcher("v1", gate=gate)
        cache.subscribe(BOOKS, fetcher)

        joined = asyncio.gather(cache.fetch(BOOKS), cache.fetch(BOOKS, fetcher))
        await asyncio.sleep(0)
        gate.set()
        a, b = await joined

        assert fetcher.calls == 1
        assert a.data == b.data == "v1"

    async def test_different_keys_fetch_concurrently(self) -> None:
        cache = QueryCache()
        gate = asyncio.Event()
        books = Fetcher("books", gate=gate)
        publishers = Fetcher("publishers", gate=gate)

        cache.subscribe(BOOKS, books)
        cache.subscribe("publishers", publishers)
        await asyncio.sleep(0)

        assert books.calls == 1
        assert publishers.calls == 1
        assert cache.fetching_count() == 2
        gate.set()

    async def test_stale_entry_served_while_revalidating(self) -> None:
        cache = QueryCache(CacheConfig(stale_time=0))
        gate = asyncio.Event()
        gate.set()
        fetcher = Fetcher("v1", "v2", gate=gate)
        await cache.subscribe(BOOKS, fetcher).settled()

        gate.clear()
        second = cache.subscribe(BOOKS, fetcher)

        assert second.status is QueryStatus.FETCHING
        assert second.data == "v1"
        gate.set()
        assert (await second.settled()).data == "v2"

    async def test_latest_fetcher_is_used_for_refetch(self) -> None:
        cache = QueryCache()
        old = Fetcher("old")
        new = Fetcher("new")
        sub = cache.subscribe(BOOKS, old)
        await sub.settled()
        cache.subscribe(BOOKS, new)

        assert (await sub.settled()).data == "new"
        assert old.calls == 1
        assert new.calls == 1


# ------------------------------------------------------------------ #
# Freshness
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
class TestStaleTime:
    @pytest.mark.parametrize(
        "elapsed,expected_calls",
        [(0, 1), (29.9, 1), (30, 2), (120, 2)],
    )
    async def test_refetch_only_after_stale_time(self, clock, elapsed, expected_calls) -> None:
        cache = QueryCache(CacheConfig(stale_time=30), clock=clock)
        fetcher = Fetcher("v1", "v2")
        await cache.subscribe(BOOKS, fetcher).settled()

        clock.advance(elapsed)
        sub = cache.subscribe(BOOKS, fetcher)
        await sub.settled()

        assert fetcher.calls == expected_calls

    async def test_fresh_snapshot_is_not_stale(self, clock) -> None:
        cache = QueryCache(CacheConfig(stale_time=30), clock=clock)
        await cache.subscribe(BOOKS, Fetcher("v1")).settled()

        state = cache.get_snapshot(BOOKS)
        assert state.is_stale is False
        assert state.updated_at == clock.now
        clock.advance(31)
        assert cache.get_snapshot(BOOKS).is_stale is True

    async def test_fetch_returns_fresh_entry_without_refetch(self, clock) -> None:
        cache = QueryCache(CacheConfig(stale_time=30), clock=clock)
        fetcher = Fetcher("v1", "v2")

        first = await cache.fetch(BOOKS, fetcher)
        second = await cache.fetch(BOOKS)

        assert first.data == second.data == "v1"
        assert fetcher.calls == 1


# ------------------------------------------------------------------ #
# Failures
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
class TestFetchErrors:
    async def test_first_fetch_failure(self) -> None:
        cache = QueryCache()
        boom = RuntimeError("boom")
        state = await cache.subscribe(BOOKS, Fetcher(boom)).settled()

        assert state.status is QueryStatus.ERROR
        assert state.data is None
        assert state.has_data is False
        assert isinstance(state.error, FetchError)
        assert state.error.cause is boom

    async def test_failed_refetch_keeps_previous_data(self) -> None:
        cache = QueryCache()
        sub = cache.subscribe(BOOKS, Fetcher(["dune"], RuntimeError("offline")))
        await sub.settled()

        cache.invalidate(BOOKS)
        state = await sub.settled()

        assert state.status is QueryStatus.ERROR
        assert state.data == ["dune"]
        assert state.has_data is True
        assert "offline" in str(state.error)

    async def test_success_after_failure_clears_error(self) -> None:
        cache = QueryCache()
        sub = cache.subscribe(BOOKS, Fetcher(RuntimeError("offline"), "v2"))
        await sub.settled()

        cache.invalidate(BOOKS)
        state = await sub.settled()

        assert state.status is QueryStatus.SUCCESS
        assert state.error is None
        assert state.data == "v2"

    async def test_fetch_without_fetcher_raises(self) -> None:
        cache = QueryCache()
        with pytest.raises(LookupError):
            await cache.fetch(BOOKS)

    async def test_fetch_reports_failure_on_state(self) -> None:
        cache = QueryCache()
        state = await cache.fetch(BOOKS, Fetcher(ValueError("bad json")))
        assert state.is_error
        assert isinstance(state.error.cause, ValueError)


# ------------------------------------------------------------------ #
# Invalidation
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
class TestInvalidate:
    async def test_observed_entry_refetches(self) -> None:
        cache = QueryCache()
        fetcher = Fetcher("v1", "v2")
        sub = cache.subscribe(BOOKS, fetcher)
        await sub.settled()

        assert cache.invalidate(BOOKS) == [BOOKS]
        assert sub.status is QueryStatus.FETCHING
        assert sub.data == "v1"

        state = await sub.settled()
        assert state.data == "v2"
        assert state.is_invalidated is False
        assert fetcher.calls == 2

    async def test_prefix_invalidates_children_only(self) -> None:
        cache = QueryCache()
        books = Fetcher("all")
        detail = Fetcher("one")
        publishers = Fetcher("pubs")
        subs = [
            cache.subscribe(BOOKS, books),
            cache.subscribe(BOOKS.child(7), detail),
            cache.subscribe("publishers", publishers),
            cache.subscribe("bookshelf", Fetcher("shelf")),
        ]
        for sub in subs:
            await sub.settled()

        matched = cache.invalidate("books")
        for sub in subs:
            await sub.settled()

        assert set(matched) == {BOOKS, BOOKS.child(7)}
        assert books.calls == 2
        assert detail.calls == 2
        assert publishers.calls == 1

    async def test_invalidation_during_fetch_runs_one_follow_up(self) -> None:
        cache = QueryCache()
        gate = asyncio.Event()
        fetcher = Fetcher("v1", "v2", "v3", gate=gate)
        seen = []
        sub = cache.subscribe(BOOKS, fetcher, seen.append)
        await asyncio.sleep(0)

        cache.invalidate(BOOKS)
        cache.invalidate(BOOKS)
        gate.set()
        state = await sub.settled()

        assert fetcher.calls == 2
        assert state.data == "v2"
        assert state.is_invalidated is False
        # The first result was shown, still flagged as invalidated.
        assert any(s.data == "v1" and s.is_invalidated for s in seen)

    async def test_unobserved_entry_refetches_on_next_subscribe(self) -> None:
        cache = QueryCache(CacheConfig(stale_time=600))
        fetcher = Fetcher("v1", "v2")
        sub = cache.subscribe(BOOKS, fetcher)
        await sub.settled()
        sub.unsubscribe()

        cache.invalidate(BOOKS)
        await asyncio.sleep(0)
        assert fetcher.calls == 1
        assert cache.get_snapshot(BOOKS).is_invalidated is True

        state = await cache.subscribe(BOOKS, fetcher).settled()
        assert fetcher.calls == 2
        assert state.data == "v2"

    async def test_invalidation_during_unobserved_fetch_stays_stale(self) -> None:
        cache = QueryCache(CacheConfig(stale_time=600))
        gate = asyncio.Event()
        fetcher = Fetcher("pre-write", "post-write", gate=gate)
        pending = asyncio.ensure_future(cache.fetch(BOOKS, fetcher))
        await asyncio.sleep(0)

        cache.invalidate(BOOKS)
        gate.set()
        await pending

        snapshot = cache.get_snapshot(BOOKS)
        assert snapshot.data == "pre-write"
        assert snapshot.is_invalidated is True
        assert snapshot.is_stale is True
        assert fetcher.calls == 1

        state = await cache.subscribe(BOOKS, fetcher).settled()
        assert state.data == "post-write"
        assert fetcher.calls == 2

    async def test_invalidation_after_unsubscribe_mid_fetch(self) -> None:
        cache = QueryCache(CacheConfig(stale_time=600))
        gate = asyncio.Event()
        fetcher = Fetcher("pre-write", "post-write", gate=gate)
        sub = cache.subscribe(BOOKS, fetcher)
        await asyncio.sleep(0)
        sub.unsubscribe()

        cache.invalidate(BOOKS)
        gate.set()
        await cache.wait_idle()
        assert fetcher.calls == 1

        state = await cache.subscribe(BOOKS, fetcher).settled()
        assert state.data == "post-write"
        assert fetcher.calls == 2

    async def test_wait_idle_covers_follow_up_fetches(self) -> None:
        cache = QueryCache()
        fetcher = Fetcher("v1", "v2")
        cache.subscribe(BOOKS, fetcher)
        cache.invalidate(BOOKS)

        await cache.wait_idle()

        assert fetcher.calls == 2
        assert cache.fetching_count() == 0
        assert cache.get_snapshot(BOOKS).data == "v2"

    async def test_invalidate_on_empty_cache(self) -> None:
        cache = QueryCache()
        assert cache.invalidate(BOOKS) == []
        assert len(cache) == 0


# ------------------------------------------------------------------ #
# Notification
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
class TestNotification:
    async def test_every_subscriber_sees_the_same_sequence(self) -> None:
        cache = QueryCache()
        fetcher = Fetcher("v1", "v2")
        first_seen, second_seen = [], []
        first = cache.subscribe(BOOKS, fetcher, first_seen.append)
        cache.subscribe(BOOKS, fetcher, second_seen.append)
        await first.settled()
        cache.invalidate(BOOKS)
        await first.settled()

        assert [s.data for s in first_seen][-3:] == [s.data for s in second_seen][-3:]
        assert first_seen[-1].data == second_seen[-1].data == "v2"

    async def test_raising_listener_does_not_break_others(self, caplog) -> None:
        cache = QueryCache()
        seen = []

        def broken(state):
            raise RuntimeError("listener bug")

        cache.subscribe(BOOKS, Fetcher("v1"), broken)
        sub = cache.subscribe(BOOKS, Fetcher("v1"), seen.append)
        with caplog.at_level(logging.ERROR, logger="shelfcache.query.cache"):
            state = await sub.settled()

        assert state.data == "v1"
        assert seen[-1].status is QueryStatus.SUCCESS
        assert "Listener for books raised" in caplog.text

    async def test_unsubscribed_listener_is_not_called(self) -> None:
        cache = QueryCache()
        fetcher = Fetcher("v1", "v2")
        seen = []
        watcher = cache.subscribe(BOOKS, fetcher, seen.append)
        keeper = cache.subscribe(BOOKS, fetcher)
        await keeper.settled()

        watcher.unsubscribe()
        watcher.unsubscribe()
        count = len(seen)
        cache.invalidate(BOOKS)
        await keeper.settled()

        assert len(seen) == count
        assert watcher.is_active is False
        assert watcher.data == "v1"

    async def test_context_manager_unsubscribes(self) -> None:
        cache = QueryCache()
        with cache.subscribe(BOOKS, Fetcher("v1")) as sub:
            await sub.settled()
            assert cache.get_snapshot(BOOKS).subscriber_count == 1
        assert cache.get_snapshot(BOOKS).subscriber_count == 0


# ------------------------------------------------------------------ #
# Eviction and table writes
# ------------------------------------------------------------------ #


@pytest.mark.asyncio
class TestEviction:
    async def test_unobserved_entry_evicted_after_gc_time(self) -> None:
        cache = QueryCache(CacheConfig(gc_time=0.01))
        sub = cache.subscribe(BOOKS, Fetcher("v1"))
        await sub.settled()
        sub.unsubscribe()

        await asyncio.sleep(0.05)
        assert BOOKS not in cache

    async def test_resubscribe_cancels_eviction(self) -> None:
        cache = QueryCache(CacheConfig(gc_time=0.02))
        fetcher = Fetcher("v1")
        sub = cache.subscribe(BOOKS, fetcher)
        await sub.settled()
        sub.unsubscribe()
        cache.subscribe(BOOKS, fetcher)

        await asyncio.sleep(0.05)
        assert BOOKS in cache

    async def test_no_gc_time_keeps_entries(self) -> None:
        cache = QueryCache(CacheConfig(gc_time=None))
        sub = cache.subscribe(BOOKS, Fetcher("v1"))
        await sub.settled()
        sub.unsubscribe()

        await asyncio.sleep(0.02)
        assert BOOKS in cache

    async def test_remove_discards_in_flight_result(self) -> None:
        cache = QueryCache()
        gate = asyncio.Event()
        seen = []
        sub = cache.subscribe(BOOKS.child(7), Fetcher("v1", gate=gate), seen.append)
        task = cache._in_flight_for(BOOKS.child(7))

        assert cache.remove(BOOKS) == [BOOKS.child(7)]
        gate.set()
        await task

        assert BOOKS.child(7) not in cache
        assert sub.is_active is False
        assert [s.status for s in seen] == [QueryStatus.FETCHING]

    async def test_set_data_notifies_and_marks_fresh(self, clock) -> None:
        cache = QueryCache(CacheConfig(stale_time=30), clock=clock)
        seen = []
        sub = cache.subscribe(BOOKS, Fetcher("v1"), seen.append)
        await sub.settled()

        state = cache.set_data(BOOKS, "local")
        assert state.data == "local"
        assert state.is_stale is False
        assert seen[-1].data == "local"

    async def test_clear_and_stats(self) -> None:
        cache = QueryCache(CacheConfig(stale_time=5, gc_time=60))
        sub = cache.subscribe(BOOKS, Fetcher("v1"))
        await sub.settled()
        cache.subscribe(["book", 7], Fetcher("one"))

        stats = cache.stats()
        assert stats["entries"] == 2
        assert stats["subscribers"] == 2
        assert stats["fetching"] == 1
        assert stats["stale_time"] == 5
        assert set(cache.keys()) == {BOOKS, QueryKey("book", 7)}
        assert ("book", 7) in cache
        assert ("book", 1.5) not in cache

        await asyncio.sleep(0)
        cache.close()
        assert len(cache) == 0
        assert sub.is_active is False
