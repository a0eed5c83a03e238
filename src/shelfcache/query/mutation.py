"""Write coordination: run an action once, then invalidate the reads it affects.

:class:`MutationCoordinator` is the counterpart of
:class:`~shelfcache.query.cache.QueryCache` for create/update/delete calls.
Each :meth:`~MutationCoordinator.mutate` call runs its action exactly once;
unlike reads, identical concurrent mutations are never merged.

Settlement order is fixed:

1. the action's result (or failure) is stored on the :class:`MutationHandle`;
2. ``on_success`` / ``on_error`` runs to completion (awaited if it returns
   an awaitable);
3. only after a successful callback are the ``invalidates`` keys handed to
   :meth:`QueryCache.invalidate <shelfcache.query.cache.QueryCache.invalidate>`,
   which is what starts any refetch.

Failures are recorded on the handle as
:class:`~shelfcache.exceptions.MutationError`; they are never raised out of
the coordinator. There is no retry and no cancellation of a started action.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from shelfcache.exceptions import InvalidKeyError, MutationError
from shelfcache.query.cache import QueryCache
from shelfcache.query.keys import KeyLike, QueryKey

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[Any]]
SuccessCallback = Callable[[Any], Any]
ErrorCallback = Callable[[MutationError], Any]


class MutationStatus(str, enum.Enum):
    """Lifecycle of one mutation. ``SUCCESS`` and ``ERROR`` are terminal."""

    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


class MutationHandle:
    """Result holder for a single :meth:`MutationCoordinator.mutate` call.

    Awaiting the handle waits for settlement and returns the handle itself::

        handle = coordinator.mutate(lambda: catalog.delete_book(7), invalidates=[BOOKS])
        await handle
        if handle.is_error:
            print(handle.error)
    """

    def __init__(self, invalidates: tuple[QueryKey, ...]) -> None:
        self._invalidates = invalidates
        self._status = MutationStatus.IDLE
        self._data: Any = None
        self._error: Optional[MutationError] = None
        self._invalidated: list[QueryKey] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def status(self) -> MutationStatus:
        return self._status

    @property
    def data(self) -> Any:
        return self._data

    @property
    def error(self) -> Optional[MutationError]:
        return self._error

    @property
    def invalidates(self) -> tuple[QueryKey, ...]:
        """Keys (or prefixes) this mutation invalidates on success."""
        return self._invalidates

    @property
    def invalidated(self) -> list[QueryKey]:
        """Cache keys that actually matched when the invalidation ran."""
        return list(self._invalidated)

    @property
    def is_pending(self) -> bool:
        return self._status is MutationStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self._status is MutationStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self._status is MutationStatus.ERROR

    @property
    def is_settled(self) -> bool:
        return self._status in (MutationStatus.SUCCESS, MutationStatus.ERROR)

    async def wait(self) -> MutationHandle:
        """Wait until the mutation settles and return this handle."""
        if self._task is not None:
            await asyncio.shield(self._task)
        return self

    def __await__(self):
        return self.wait().__await__()

    def __repr__(self) -> str:
        return f"<MutationHandle status={self._status.value}>"


class MutationCoordinator:
    """Runs write actions and invalidates the affected queries on success.

    Args:
        cache: The cache whose entries are invalidated after successful
            mutations.
    """

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache
        self._pending = 0

    @property
    def cache(self) -> QueryCache:
        return self._cache

    @property
    def pending_count(self) -> int:
        """Number of mutations started and not yet settled."""
        return self._pending

    def mutate(
        self,
        action: Action,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        invalidates: Union[KeyLike, Iterable[KeyLike]] = (),
    ) -> MutationHandle:
        """Start *action* and return its handle, already ``pending``.

        Must be called from the running event loop.

        Args:
            action: Coroutine function performing the write.
            on_success: Called with the action's result before any
                invalidation happens.
            on_error: Called with the :class:`~shelfcache.exceptions.MutationError`.
            invalidates: A key, or several keys, to invalidate after success.
                Each one also invalidates every key it prefixes.

        Raises:
            InvalidKeyError: If *invalidates* does not describe valid keys.
        """
        handle = MutationHandle(_coerce_keys(invalidates))
        loop = asyncio.get_running_loop()
        handle._status = MutationStatus.PENDING
        self._pending += 1
        handle._task = loop.create_task(self._execute(handle, action, on_success, on_error))
        return handle

    async def run(
        self,
        action: Action,
        on_success: Optional[SuccessCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        invalidates: Union[KeyLike, Iterable[KeyLike]] = (),
    ) -> MutationHandle:
        """Like :meth:`mutate`, but returns once the mutation has settled."""
        return await self.mutate(action, on_success, on_error, invalidates)

    async def _execute(
        self,
        handle: MutationHandle,
        action: Action,
        on_success: Optional[SuccessCallback],
        on_error: Optional[ErrorCallback],
    ) -> None:
        try:
            try:
                result = await action()
            except Exception as exc:
                await self._fail(handle, MutationError.wrap(exc), on_error)
                return

            handle._data = result
            if on_success is not None:
                try:
                    await _resolve(on_success(result))
                except Exception as exc:
                    logger.debug("on_success callback raised: %s", exc)
                    await self._fail(handle, MutationError.wrap(exc), on_error)
                    return

            handle._status = MutationStatus.SUCCESS
            for key in handle.invalidates:
                handle._invalidated.extend(self._cache.invalidate(key))
        finally:
            self._pending -= 1

    @staticmethod
    async def _fail(
        handle: MutationHandle,
        error: MutationError,
        on_error: Optional[ErrorCallback],
    ) -> None:
        handle._error = error
        handle._status = MutationStatus.ERROR
        logger.debug("Mutation failed: %s", error)
        if on_error is None:
            return
        try:
            await _resolve(on_error(error))
        except Exception:
            logger.exception("on_error callback raised")


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _coerce_keys(value: Union[KeyLike, Iterable[KeyLike]]) -> tuple[QueryKey, ...]:
    # A single QueryKey is itself iterable, so check for it before iterating.
    if isinstance(value, (QueryKey, str)):
        return (QueryKey.of(value),)
    items = list(value)
    if any(isinstance(item, int) for item in items):
        raise InvalidKeyError(
            f"invalidates={items!r} mixes bare segments with keys; "
            "pass QueryKey(...) or a list of keys such as [['book', 7]]"
        )
    return tuple(QueryKey.of(item) for item in items)
