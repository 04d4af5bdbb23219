"""
Caller-facing query objects.

A Query maps a field key to a value or value expression. Values may carry an
operator prefix ("!=", ">", "<", ">=", "<=", "~") and list separators
("," for OR, ";" for AND). Queries are immutable: every augmentation returns
a new Query so the compiler never changes caller-owned input.
"""

from __future__ import annotations

import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Query(Mapping[str, Any]):
    """Immutable mapping of query keys to value expressions.

    Example:
        >>> q = Query({"name": "ALL,CONTROL", "nattributes.age": ">20"})
        >>> q2 = q.append("type", "CASE_CONTROL")
        >>> "type" in q
        False
    """

    __slots__ = ("_params",)

    def __init__(self, params: Mapping[str, Any] | None = None, **kwargs: Any) -> None:
        data = dict(params or {})
        data.update(kwargs)
        self._params = data

    def __getitem__(self, key: str) -> Any:
        return self._params[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._params)

    def __len__(self) -> int:
        return len(self._params)

    def __repr__(self) -> str:
        return f"Query({self._params!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Mapping):
            return dict(self._params) == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def append(self, key: str, value: Any) -> Query:
        """Return a copy with ``key`` set to ``value``."""
        data = dict(self._params)
        data[key] = value
        return Query(data)

    def without(self, key: str) -> Query:
        """Return a copy without ``key``."""
        data = dict(self._params)
        data.pop(key, None)
        return Query(data)

    def to_dict(self) -> dict[str, Any]:
        return dict(self._params)


@dataclass(frozen=True)
class QueryOptions:
    """Projection, ordering and paging options for reads.

    Field names are public query keys; adaptors translate them to storage
    paths.

    Attributes:
        include: Only return these fields (plus the identifier)
        exclude: Return everything but these fields
        sort: Field to order by
        ascending: Sort direction
        limit: Maximum number of results
        skip: Number of results to skip
    """

    include: tuple[str, ...] = ()
    exclude: tuple[str, ...] = ()
    sort: str | None = None
    ascending: bool = True
    limit: int | None = None
    skip: int = 0


@dataclass
class QueryResult(Generic[T]):
    """Results of a read together with timing and paging metadata.

    Attributes:
        id: Operation name
        results: Entities returned
        num_total_results: Matches before skip/limit were applied
        db_time_ms: Time spent in the store
    """

    id: str
    results: list[T] = field(default_factory=list)
    num_total_results: int = 0
    db_time_ms: int = 0

    @property
    def num_results(self) -> int:
        return len(self.results)

    def first(self) -> T | None:
        return self.results[0] if self.results else None


class Stopwatch:
    """Measures elapsed wall time in milliseconds."""

    def __init__(self) -> None:
        self._start = time.perf_counter()

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._start) * 1000)
