"""
Query primitives shared by every filter struct and repository.

Responsibility:
    Filters are explicit dataclasses with enumerated optional fields (one per
    entity).  Each one renders itself as a tuple of ``Criterion`` values,
    which both repository implementations translate: the SQL store into
    column expressions, the in-memory store into attribute comparisons.

Invariants enforced:
    - Only the operators in ``Operator`` exist; there is no free-form map.
    - ``Page`` arithmetic: ``pages == ceil(total / page_size)``.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class Operator(str, Enum):
    """Comparison operators supported by every repository."""

    EQ = "eq"
    IN = "in"
    PREFIX = "prefix"
    GTE = "gte"
    LTE = "lte"


@dataclass(frozen=True)
class Criterion:
    """One ``field <op> value`` condition.  Criteria are AND-ed together."""

    field: str
    op: Operator
    value: Any

    def matches(self, record: Any) -> bool:
        actual = getattr(record, self.field)
        if isinstance(actual, Enum):
            actual = actual.value
        expected = self.value
        if isinstance(expected, Enum):
            expected = expected.value

        if self.op is Operator.EQ:
            return actual == expected
        if self.op is Operator.IN:
            values = {v.value if isinstance(v, Enum) else v for v in expected}
            return actual in values
        if actual is None:
            return False
        if self.op is Operator.PREFIX:
            return str(actual).startswith(expected)
        if self.op is Operator.GTE:
            return actual >= expected
        if self.op is Operator.LTE:
            return actual <= expected
        raise ValueError(f"Unsupported operator: {self.op}")


def eq(field: str, value: Any) -> Criterion | None:
    """Build an equality criterion, or None when the filter field is unset."""
    return None if value is None else Criterion(field, Operator.EQ, value)


def compact(*criteria: Criterion | None) -> tuple[Criterion, ...]:
    """Drop unset criteria."""
    return tuple(c for c in criteria if c is not None)


@dataclass(frozen=True)
class SortSpec:
    """Sort order for ``Repository.find``."""

    field: str
    descending: bool = False


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of query results."""

    items: tuple[T, ...]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return math.ceil(self.total / self.page_size)

    @classmethod
    def of(cls, items: Sequence[T], total: int, page: int, page_size: int) -> Page[T]:
        return cls(items=tuple(items), total=total, page=page, page_size=page_size)


def page_window(page: int, page_size: int) -> tuple[int, int]:
    """Translate a 1-based page number into ``(skip, limit)``."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    return (page - 1) * page_size, page_size
