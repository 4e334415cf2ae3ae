"""
Repository -- the persistence contract every kernel component uses.

Responsibility:
    A keyed store of frozen DTOs grouped in named collections, with basic
    equality / prefix / range filtering.  Two implementations:

    - ``InMemoryRepository`` (this module): dict-backed, thread-safe, with an
      undo log so ``transaction()`` is all-or-nothing.
    - ``SqlRepository`` (``erp_kernel.db.sql_repository``): SQLAlchemy-backed,
      one session per unit of work.

Contract:
    ``create``, ``find_by_id``, ``find``, ``update``, ``delete``, ``count``
    take a collection name.  Filters are explicit filter structs exposing
    ``criteria()`` (see ``erp_kernel.domain.query``).  Two operations extend
    the plain keyed store:

    - ``transaction()`` -- groups writes; an exception inside the block
      undoes every write made in it.  Nested blocks join the outer one.
    - ``next_sequence(name)`` -- atomic, strictly increasing counter.

Invariants enforced:
    - Collections in ``IMMUTABLE_COLLECTIONS`` reject ``update`` and
      ``delete`` with ``ImmutabilityViolationError``.
    - The store performs no cross-collection locking.  Serialising writers
      on the same record is the caller's job (see ``KeyedLockManager``).
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import replace
from enum import Enum
from typing import Any, Protocol

from erp_kernel.domain.query import Criterion, SortSpec
from erp_kernel.exceptions import ImmutabilityViolationError, NotFoundError
from erp_kernel.logging_config import get_logger

logger = get_logger("db.repository")


class Collection(str, Enum):
    """Well-known collection names."""

    INVENTORY = "inventory"
    STOCK_MOVEMENTS = "stock_movements"
    ORDERS = "orders"
    PURCHASES = "purchases"
    CUSTOMERS = "customers"
    SUPPLIERS = "suppliers"
    PRODUCTS = "products"


IMMUTABLE_COLLECTIONS: frozenset[str] = frozenset({Collection.STOCK_MOVEMENTS.value})


class QueryFilter(Protocol):
    def criteria(self) -> tuple[Criterion, ...]: ...


def _name(collection: str | Collection) -> str:
    return collection.value if isinstance(collection, Collection) else collection


class Repository(ABC):
    """Abstract persistence contract."""

    @abstractmethod
    def create(self, collection: str, entity: Any) -> Any:
        """Insert a new entity.  Raises ValueError on duplicate id."""

    @abstractmethod
    def find_by_id(self, collection: str, entity_id: str) -> Any | None:
        """Return the entity or None."""

    @abstractmethod
    def find(
        self,
        collection: str,
        filter: QueryFilter | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Any]:
        """Return matching entities."""

    @abstractmethod
    def update(self, collection: str, entity_id: str, patch: Mapping[str, Any]) -> Any:
        """Apply ``patch`` field values and return the new entity."""

    @abstractmethod
    def delete(self, collection: str, entity_id: str) -> bool:
        """Delete an entity.  Returns False if it did not exist."""

    @abstractmethod
    def count(self, collection: str, filter: QueryFilter | None = None) -> int:
        """Count matching entities."""

    @abstractmethod
    def transaction(self) -> Any:
        """Context manager grouping writes into one atomic unit."""

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Return the next value (>= 1) of a named counter."""

    @staticmethod
    def _guard_mutable(collection: str, entity_id: str, action: str) -> None:
        if collection in IMMUTABLE_COLLECTIONS:
            logger.error(
                "immutable_collection_write_rejected",
                extra={"collection": collection, "entity_id": entity_id, "action": action},
            )
            raise ImmutabilityViolationError(
                collection, entity_id, f"{action} is not permitted on an append-only collection"
            )


class InMemoryRepository(Repository):
    """
    Dict-backed repository.

    Guarantees:
        - Every public method is atomic with respect to other threads.
        - ``transaction()`` keeps a per-thread undo log; on exception the
          writes made inside the block are reverted in reverse order.
        - Sequence allocations are not reverted (gaps are allowed).
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self._sequences: dict[str, int] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    # -- transactions ---------------------------------------------------------

    def _undo_log(self) -> list[tuple[str, str, str, Any]] | None:
        return getattr(self._local, "undo", None)

    def _record(self, op: str, collection: str, entity_id: str, previous: Any = None) -> None:
        undo = self._undo_log()
        if undo is not None:
            undo.append((op, collection, entity_id, previous))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self._undo_log() is not None:
            yield
            return
        self._local.undo = []
        try:
            yield
        except Exception:
            undo = self._local.undo
            with self._lock:
                for op, collection, entity_id, previous in reversed(undo):
                    bucket = self._data.setdefault(collection, {})
                    if op == "create":
                        bucket.pop(entity_id, None)
                    else:
                        bucket[entity_id] = previous
            logger.warning(
                "transaction_rolled_back",
                extra={"undone_writes": len(undo)},
            )
            raise
        finally:
            self._local.undo = None

    # -- writes ---------------------------------------------------------------

    def create(self, collection: str, entity: Any) -> Any:
        collection = _name(collection)
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            if entity.id in bucket:
                raise ValueError(f"Duplicate id in {collection}: {entity.id}")
            bucket[entity.id] = entity
            self._record("create", collection, entity.id)
        return entity

    def update(self, collection: str, entity_id: str, patch: Mapping[str, Any]) -> Any:
        collection = _name(collection)
        self._guard_mutable(collection, entity_id, "update")
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            current = bucket.get(entity_id)
            if current is None:
                raise NotFoundError(f"{collection}/{entity_id}")
            updated = replace(current, **dict(patch))
            bucket[entity_id] = updated
            self._record("update", collection, entity_id, current)
        return updated

    def delete(self, collection: str, entity_id: str) -> bool:
        collection = _name(collection)
        self._guard_mutable(collection, entity_id, "delete")
        with self._lock:
            bucket = self._data.setdefault(collection, {})
            current = bucket.pop(entity_id, None)
            if current is None:
                return False
            self._record("delete", collection, entity_id, current)
        return True

    def next_sequence(self, name: str) -> int:
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
        logger.debug("sequence_allocated", extra={"sequence_name": name, "value": value})
        return value

    # -- reads ----------------------------------------------------------------

    def find_by_id(self, collection: str, entity_id: str) -> Any | None:
        with self._lock:
            return self._data.get(_name(collection), {}).get(entity_id)

    def _matching(self, collection: str, filter: QueryFilter | None) -> list[Any]:
        criteria = filter.criteria() if filter is not None else ()
        with self._lock:
            records = list(self._data.get(_name(collection), {}).values())
        return [r for r in records if all(c.matches(r) for c in criteria)]

    def find(
        self,
        collection: str,
        filter: QueryFilter | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Any]:
        records = self._matching(collection, filter)
        if sort is not None:
            records.sort(key=lambda r: _sort_key(getattr(r, sort.field)), reverse=sort.descending)
        end = None if limit is None else skip + limit
        return records[skip:end]

    def count(self, collection: str, filter: QueryFilter | None = None) -> int:
        return len(self._matching(collection, filter))


def _sort_key(value: Any) -> tuple[bool, Any]:
    if isinstance(value, Enum):
        value = value.value
    return (value is None, value if value is not None else 0)
