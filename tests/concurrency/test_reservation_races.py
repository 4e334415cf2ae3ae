"""
True concurrency tests over the in-memory repository.

Threads released together by a ``Barrier`` race for the same stock.  The
ledger's keyed locks must serialise every check-then-act so that stock
never goes negative and no reservation is lost or double-applied.
"""

import threading
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest

from erp_kernel.db.repository import Collection, InMemoryRepository
from erp_kernel.domain.inventory import StockLine
from erp_kernel.exceptions import ConcurrencyConflictError, InsufficientStockError
from erp_kernel.services.inventory_ledger import InventoryLedger
from erp_kernel.services.lock_manager import KeyedLockManager, inventory_key
from erp_modules.sales.models import OrderLineRequest, OrderStatus
from erp_modules.sales.service import OrderFulfillmentEngine

from tests.conftest import CEMENT, CUSTOMER, TEST_ACTOR, seed_reference_data

WORKERS = 8


class TestKeyedLockManager:
    def test_locks_are_reentrant(self):
        locks = KeyedLockManager(timeout_seconds=0.1, max_attempts=1)

        with locks.hold(["order:1"]):
            with locks.hold(["order:1", "inventory:9"]):
                pass

    def test_conflict_after_bounded_retries(self, captured_logs):
        locks = KeyedLockManager(timeout_seconds=0.05, max_attempts=2, backoff_seconds=0.01)
        holding = threading.Event()
        done = threading.Event()

        def holder():
            with locks.hold([inventory_key("A")]):
                holding.set()
                done.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            holding.wait(timeout=5)
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                with locks.hold([inventory_key("A")]):
                    pass
        finally:
            done.set()
            thread.join()

        assert exc_info.value.keys == ("inventory:A",)
        assert exc_info.value.attempts == 2
        messages = [r["event"] for r in captured_logs()]
        assert messages.count("lock_acquire_retry") == 2
        assert "lock_acquire_failed" in messages

    def test_partial_acquisition_is_released(self):
        locks = KeyedLockManager(timeout_seconds=0.05, max_attempts=1)
        holding = threading.Event()
        done = threading.Event()

        def holder():
            with locks.hold(["b"]):
                holding.set()
                done.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        holding.wait(timeout=5)
        with pytest.raises(ConcurrencyConflictError):
            with locks.hold(["a", "b"]):
                pass
        done.set()
        thread.join()

        acquired = []

        def other():
            with locks.hold(["a"]):
                acquired.append(True)

        worker = threading.Thread(target=other)
        worker.start()
        worker.join()
        assert acquired == [True]


    def test_idle_keys_are_evicted(self):
        locks = KeyedLockManager(timeout_seconds=0.1, max_attempts=1)

        with locks.hold(["order:1", "inventory:9"]):
            with locks.hold(["order:1"]):
                assert locks.active_keys == ("inventory:9", "order:1")
            assert locks.active_keys == ("inventory:9", "order:1")

        assert locks.active_keys == ()

    def test_failed_acquisition_leaves_no_entry(self):
        locks = KeyedLockManager(timeout_seconds=0.05, max_attempts=1)
        holding = threading.Event()
        done = threading.Event()

        def holder():
            with locks.hold(["a"]):
                holding.set()
                done.wait(timeout=5)

        thread = threading.Thread(target=holder)
        thread.start()
        holding.wait(timeout=5)
        with pytest.raises(ConcurrencyConflictError):
            with locks.hold(["a", "b"]):
                pass
        assert locks.active_keys == ("a",)
        done.set()
        thread.join()

        assert locks.active_keys == ()

    def test_unit_of_work_keeps_locks_until_exit(self):
        locks = KeyedLockManager(timeout_seconds=0.05, max_attempts=1)

        def acquired_elsewhere():
            outcome = []

            def run():
                try:
                    with locks.hold([inventory_key("A")]):
                        outcome.append(True)
                except ConcurrencyConflictError:
                    outcome.append(False)

            worker = threading.Thread(target=run)
            worker.start()
            worker.join()
            return outcome[0]

        with locks.unit_of_work():
            with locks.hold([inventory_key("A")]):
                pass
            assert acquired_elsewhere() is False
            assert locks.active_keys == ("inventory:A",)

        assert acquired_elsewhere() is True
        assert locks.active_keys == ()
    @pytest.mark.parametrize(
        "kwargs",
        [{"timeout_seconds": 0}, {"max_attempts": 0}],
    )
    def test_invalid_settings_rejected(self, kwargs):
        with pytest.raises(ValueError):
            KeyedLockManager(**kwargs)


class TestConcurrentReservations:
    def test_oversubscribed_reservations_never_go_negative(self, repository, clock, notifier):
        ledger = InventoryLedger(
            repository,
            locks=KeyedLockManager(timeout_seconds=5.0),
            clock=clock,
            notifier=notifier,
        )
        item = ledger.create_item(CEMENT, 100, "Yard A", TEST_ACTOR, minimum_stock=20)
        barrier = Barrier(WORKERS)

        def reserve(n):
            barrier.wait()
            try:
                ledger.reserve_many([StockLine(item.id, 30)], f"ORD-{n}", TEST_ACTOR)
                return True
            except InsufficientStockError:
                return False

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            outcomes = list(pool.map(reserve, range(WORKERS)))

        final = ledger.get_item(item.id)
        assert outcomes.count(True) == 3
        assert final.quantity == 100 - 30 * 3
        assert ledger.reconcile(item.id).balanced

    def test_parallel_receipts_all_apply(self, repository, clock, notifier):
        ledger = InventoryLedger(
            repository,
            locks=KeyedLockManager(timeout_seconds=5.0),
            clock=clock,
            notifier=notifier,
        )
        item = ledger.create_item(CEMENT, 0, "Yard A", TEST_ACTOR)
        barrier = Barrier(WORKERS)

        def receive(n):
            barrier.wait()
            ledger.receive(item.id, n + 1, f"PO-{n}", TEST_ACTOR)

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            list(pool.map(receive, range(WORKERS)))

        assert ledger.get_item(item.id).quantity == sum(range(1, WORKERS + 1))
        assert ledger.reconcile(item.id).balanced


class TestConcurrentOrderConfirmation:
    def test_competing_confirms_reserve_at_most_available(self, repository, clock, notifier):
        locks = KeyedLockManager(timeout_seconds=5.0)
        ledger = InventoryLedger(repository, locks=locks, clock=clock, notifier=notifier)
        engine = OrderFulfillmentEngine(
            repository, ledger, clock=clock, locks=locks, notifier=notifier
        )
        item = ledger.create_item(CEMENT, 100, "Yard A", TEST_ACTOR, minimum_stock=20)
        orders = [
            engine.create_order(
                CUSTOMER,
                [OrderLineRequest(CEMENT, 40, Decimal("12.00"), inventory_id=item.id)],
                TEST_ACTOR,
            )
            for _ in range(4)
        ]
        barrier = Barrier(len(orders))

        def confirm(order):
            barrier.wait()
            try:
                engine.confirm(order.id, TEST_ACTOR)
            except InsufficientStockError:
                pass

        with ThreadPoolExecutor(max_workers=len(orders)) as pool:
            list(pool.map(confirm, orders))

        statuses = [engine.get_order(o.id).status for o in orders]
        assert statuses.count(OrderStatus.CONFIRMED) == 2
        assert statuses.count(OrderStatus.DRAFT) == 2
        assert ledger.get_item(item.id).quantity == 20
        assert ledger.reconcile(item.id).balanced

    def test_order_numbers_are_unique_under_contention(self, orders):
        barrier = Barrier(WORKERS)

        def create(_):
            barrier.wait()
            return orders.create_order(
                CUSTOMER, [OrderLineRequest(CEMENT, 1, Decimal("5.00"))], TEST_ACTOR
            ).order_number

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            numbers = list(pool.map(create, range(WORKERS)))

        assert len(set(numbers)) == WORKERS
        assert all(n.startswith("ORD-202401-") for n in numbers)


class StallingOrderRepository(InMemoryRepository):
    """Parks the write that confirms an order, then fails it."""

    def __init__(self):
        super().__init__()
        self.stalled = threading.Event()
        self.resume = threading.Event()

    def update(self, collection, entity_id, patch):
        if collection == Collection.ORDERS and patch.get("status") is OrderStatus.CONFIRMED:
            self.stalled.set()
            self.resume.wait(timeout=5)
            raise RuntimeError("order write failed")
        return super().update(collection, entity_id, patch)


class TestOuterRollback:
    def test_item_stays_locked_until_confirm_rolls_back(self, clock, notifier):
        repository = StallingOrderRepository()
        seed_reference_data(repository)
        locks = KeyedLockManager(timeout_seconds=5.0)
        ledger = InventoryLedger(repository, locks=locks, clock=clock, notifier=notifier)
        engine = OrderFulfillmentEngine(
            repository, ledger, clock=clock, locks=locks, notifier=notifier
        )
        item = ledger.create_item(CEMENT, 100, "Yard A", TEST_ACTOR, item_id="INV-CEMENT")
        order = engine.create_order(
            CUSTOMER,
            [OrderLineRequest(CEMENT, 10, Decimal("12.00"), inventory_id=item.id)],
            TEST_ACTOR,
        )
        errors = []
        reserved = threading.Event()

        def confirm():
            try:
                engine.confirm(order.id, TEST_ACTOR)
            except RuntimeError as exc:
                errors.append(exc)

        def reserve_elsewhere():
            ledger.reserve_many([StockLine(item.id, 5)], "OTHER", TEST_ACTOR)
            reserved.set()

        confirming = threading.Thread(target=confirm)
        confirming.start()
        assert repository.stalled.wait(timeout=5)

        competing = threading.Thread(target=reserve_elsewhere)
        competing.start()
        assert not reserved.wait(timeout=0.2)

        repository.resume.set()
        confirming.join()
        competing.join()

        assert len(errors) == 1
        assert reserved.is_set()
        assert engine.get_order(order.id).status is OrderStatus.DRAFT
        assert ledger.journal.movements_for_reference(order.id) == []
        assert ledger.get_item(item.id).quantity == 95
        assert ledger.reconcile(item.id).balanced
        assert locks.active_keys == ()
