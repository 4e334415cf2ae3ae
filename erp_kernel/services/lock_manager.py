"""
KeyedLockManager -- exclusive per-record critical sections.

Responsibility:
    Serialises every read-validate-write sequence on the same inventory item
    or document.  Callers name the records they touch by key
    (``inventory:<id>``, ``order:<id>``, ``purchase:<id>``) and run their
    check-then-act inside ``hold(keys)``.

Architecture position:
    Kernel > Services.  Used by ``InventoryLedger`` and both fulfillment
    engines.  Works the same over either repository implementation.

Invariants enforced:
    - Keys of one ``hold`` are acquired in sorted order, so two callers
      locking overlapping key sets cannot deadlock.
    - Locks are re-entrant per thread: an engine holding ``order:<id>`` may
      call into the ledger, which then takes ``inventory:<id>`` keys.
    - Document keys are taken before item keys (engines lock the document
      first, then call the ledger).
    - Inside ``unit_of_work`` no key is released before the unit exits, so
      an engine's outer transaction commits or rolls back while every item
      it touched is still locked.
    - The registry holds only keys with a current holder or waiter.

Failure modes:
    - ConcurrencyConflictError when the full key set cannot be acquired
      within ``max_attempts`` tries.  Partially acquired locks are released
      between attempts and nothing is applied.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from erp_kernel.exceptions import ConcurrencyConflictError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.lock_manager")


def inventory_key(inventory_id: str) -> str:
    return f"inventory:{inventory_id}"


def order_key(order_id: str) -> str:
    return f"order:{order_id}"


def purchase_key(purchase_id: str) -> str:
    return f"purchase:{purchase_id}"


class _KeyLock:
    """A re-entrant lock plus the number of threads holding or awaiting it."""

    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLockManager:
    """
    Named re-entrant locks with bounded, backed-off acquisition.

    A key's lock exists only while some thread holds or waits for it; the
    registry drops it when the last user checks it back in.

    Args:
        timeout_seconds: Wait per lock per attempt.
        max_attempts: Attempts before ConcurrencyConflictError.
        backoff_seconds: Base sleep between attempts (multiplied by the
            attempt number).
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.05,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._timeout = timeout_seconds
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._locks: dict[str, _KeyLock] = {}
        self._registry_lock = threading.Lock()
        self._local = threading.local()

    @property
    def active_keys(self) -> tuple[str, ...]:
        """Keys currently held or awaited by any thread."""
        with self._registry_lock:
            return tuple(sorted(self._locks))

    def _checkout(self, key: str) -> _KeyLock:
        with self._registry_lock:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _KeyLock()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _KeyLock) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def _release(self, held: list[tuple[str, _KeyLock]]) -> None:
        for key, entry in reversed(held):
            entry.lock.release()
            self._checkin(key, entry)

    def _try_acquire(self, ordered: list[str]) -> list[tuple[str, _KeyLock]] | None:
        acquired: list[tuple[str, _KeyLock]] = []
        for key in ordered:
            entry = self._checkout(key)
            if not entry.lock.acquire(timeout=self._timeout):
                self._checkin(key, entry)
                self._release(acquired)
                return None
            acquired.append((key, entry))
        return acquired

    @contextmanager
    def hold(self, keys: Iterable[str]) -> Iterator[None]:
        """
        Hold every key in ``keys`` for the duration of the block.

        Inside ``unit_of_work`` the keys stay held until the unit exits.
        """
        ordered = sorted(set(keys))

        acquired = None
        for attempt in range(1, self._max_attempts + 1):
            acquired = self._try_acquire(ordered)
            if acquired is not None:
                break
            logger.warning(
                "lock_acquire_retry",
                extra={"keys": ordered, "attempt": attempt},
            )
            if attempt < self._max_attempts:
                time.sleep(self._backoff * attempt)

        if acquired is None:
            logger.error(
                "lock_acquire_failed",
                extra={"keys": ordered, "attempts": self._max_attempts},
            )
            raise ConcurrencyConflictError(ordered, self._max_attempts)

        try:
            yield
        finally:
            deferred = getattr(self._local, "deferred", None)
            if deferred is None:
                self._release(acquired)
            else:
                deferred.extend(acquired)

    @contextmanager
    def unit_of_work(self) -> Iterator[None]:
        """
        Keep every lock taken by ``hold`` in this block until the block exits.

        Wrap a repository transaction in it so nested ledger calls keep their
        item locks until the outer commit or rollback has finished.
        Nested units join the outermost one.
        """
        if getattr(self._local, "deferred", None) is not None:
            yield
            return

        self._local.deferred = []
        try:
            yield
        finally:
            deferred = self._local.deferred
            self._local.deferred = None
            if deferred:
                logger.debug(
                    "unit_of_work_locks_released",
                    extra={"keys": sorted({key for key, _ in deferred})},
                )
            self._release(deferred)
