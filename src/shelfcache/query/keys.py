"""Structured query keys and prefix matching.

A :class:`QueryKey` names one cacheable read: a resource name followed by
zero or more ``int``/``str`` identifiers. Keys compare and hash
segment-wise, so ``QueryKey("book", 42) == QueryKey.of(["book", 42])``.

Prefix matching drives bulk invalidation: ``QueryKey("books")`` is a prefix
of ``QueryKey("books", "filtered", "x")`` but not of
``QueryKey("publishers")`` or ``QueryKey("bookshelf")``.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Union

from shelfcache.exceptions import InvalidKeyError

Segment = Union[str, int]
KeyLike = Union["QueryKey", str, Iterable[Segment]]


class QueryKey:
    """Immutable resource name plus identifiers.

    Args:
        resource: Non-empty resource name (``"books"``, ``"book"``).
        *identifiers: Optional ``int`` or ``str`` segments narrowing the
            resource (``42``, ``"filtered"``).

    Raises:
        InvalidKeyError: If *resource* is empty or any identifier is not a
            ``str``/``int`` (``bool`` is rejected explicitly).
    """

    __slots__ = ("_resource", "_identifiers")

    def __init__(self, resource: str, *identifiers: Segment) -> None:
        if not isinstance(resource, str) or not resource:
            raise InvalidKeyError(f"Query key resource must be a non-empty string, got {resource!r}")
        for ident in identifiers:
            if isinstance(ident, bool) or not isinstance(ident, (str, int)):
                raise InvalidKeyError(
                    f"Query key segments must be str or int, got {type(ident).__name__}: {ident!r}"
                )
        self._resource = resource
        self._identifiers: tuple[Segment, ...] = tuple(identifiers)

    @classmethod
    def of(cls, value: KeyLike) -> QueryKey:
        """Coerce a key, a bare resource name, or a segment sequence into a key.

        Raises:
            InvalidKeyError: If *value* is none of those.
        """
        if isinstance(value, QueryKey):
            return value
        if isinstance(value, str):
            return cls(value)
        try:
            segments = list(value)
        except TypeError:
            raise InvalidKeyError(
                f"Expected a query key, resource name or segment list, got {type(value).__name__}: {value!r}"
            ) from None
        if not segments:
            raise InvalidKeyError("Query key must have at least one segment")
        return cls(segments[0], *segments[1:])  # type: ignore[arg-type]

    @property
    def resource(self) -> str:
        return self._resource

    @property
    def identifiers(self) -> tuple[Segment, ...]:
        return self._identifiers

    @property
    def segments(self) -> tuple[Segment, ...]:
        """All segments, resource name first."""
        return (self._resource, *self._identifiers)

    def is_prefix_of(self, other: QueryKey) -> bool:
        """True when every segment of this key equals the leading segments of *other*.

        A key is a prefix of itself. ``1`` and ``"1"`` are different segments.
        """
        mine = self.segments
        theirs = other.segments
        if len(mine) > len(theirs):
            return False
        return all(
            type(a) is type(b) and a == b for a, b in zip(mine, theirs)
        )

    def child(self, *identifiers: Segment) -> QueryKey:
        """Return a longer key with *identifiers* appended."""
        return QueryKey(self._resource, *self._identifiers, *identifiers)

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def __len__(self) -> int:
        return 1 + len(self._identifiers)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QueryKey):
            return NotImplemented
        return self._typed() == other._typed()

    def __hash__(self) -> int:
        return hash(self._typed())

    def __repr__(self) -> str:
        args = ", ".join(repr(s) for s in self.segments)
        return f"QueryKey({args})"

    def __str__(self) -> str:
        return "/".join(str(s) for s in self.segments)

    def _typed(self) -> tuple[tuple[str, Segment], ...]:
        # Keeps 1 and "1" distinct for equality and hashing.
        return tuple((type(s).__name__, s) for s in self.segments)


def matches(prefix: KeyLike, key: KeyLike) -> bool:
    """Return True when *prefix* equals *key* or is a leading part of it."""
    return QueryKey.of(prefix).is_prefix_of(QueryKey.of(key))
