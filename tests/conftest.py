"""
Pytest fixtures for the materials ERP test suite.

Provides:
- Deterministic clock and a recording notifier
- In-memory repository (default) and a SQLite-backed ``SqlRepository``
- Ledger / order / purchase engines wired to the same lock manager
- Seeded reference data (products, a customer, suppliers)
- Captured structured logs as parsed JSON dicts
"""

import json
import logging
from decimal import Decimal
from io import StringIO

import pytest

from erp_kernel.db.engine import (
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from erp_kernel.db.immutability import unregister_immutability_listeners
from erp_kernel.db.repository import Collection, InMemoryRepository
from erp_kernel.db.sql_repository import SqlRepository
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.parties import Customer, PartyStatus, Product, Supplier
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from erp_kernel.services.inventory_ledger import InventoryLedger
from erp_kernel.services.lock_manager import KeyedLockManager
from erp_kernel.services.notification import Notifier
from erp_modules._orm_registry import create_all_tables, default_model_registry
from erp_modules.procurement.service import PurchaseReceivingEngine
from erp_modules.sales.service import OrderFulfillmentEngine

TEST_ACTOR = "test-user"

CEMENT = "P-CEMENT"
REBAR = "P-REBAR"
SAND = "P-SAND"
CUSTOMER = "CUST-1"
SUPPLIER = "SUP-1"
SMALL_SUPPLIER = "SUP-SMALL"
INACTIVE_SUPPLIER = "SUP-OLD"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture erp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.adjust_to(...)
            assert any(r["event"] == "stock_adjusted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("erp_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Collaborators
# =============================================================================


class RecordingNotifier(Notifier):
    """Keeps every notification it is handed."""

    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)

    def of_type(self, notification_type):
        return [n for n in self.sent if n.type is notification_type]


class FailingNotifier(Notifier):
    def send(self, notification):
        raise ConnectionError("mail relay unavailable")


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def locks():
    return KeyedLockManager(timeout_seconds=1.0, max_attempts=2, backoff_seconds=0.01)


# =============================================================================
# Repositories
# =============================================================================


def seed_reference_data(repository):
    """Products, one customer and three suppliers."""
    for product in (
        Product(CEMENT, "CEM-50", "Portland Cement 50kg", "cement", "BAG"),
        Product(REBAR, "RB-12", "Rebar 12mm", "steel", "EA"),
        Product(SAND, "SND-T", "Washed Sand", "aggregate", "TON"),
    ):
        repository.create(Collection.PRODUCTS, product)
    repository.create(
        Collection.CUSTOMERS,
        Customer(CUSTOMER, "Acme Builders", email="orders@acme.example"),
    )
    repository.create(
        Collection.SUPPLIERS,
        Supplier(SUPPLIER, "Quarry Supply Co", email="sales@quarry.example"),
    )
    repository.create(
        Collection.SUPPLIERS,
        Supplier(
            SMALL_SUPPLIER,
            "Corner Hardware",
            payment_terms="Net 15",
            credit_limit=Decimal("1000"),
        ),
    )
    repository.create(
        Collection.SUPPLIERS,
        Supplier(INACTIVE_SUPPLIER, "Closed Yard", status=PartyStatus.INACTIVE),
    )


@pytest.fixture
def repository():
    repo = InMemoryRepository()
    seed_reference_data(repo)
    return repo


@pytest.fixture
def sql_repository():
    """SqlRepository over an in-memory SQLite database, schema created fresh."""
    init_engine_from_url("sqlite://")
    create_all_tables()
    repo = SqlRepository(get_session_factory(), default_model_registry())
    seed_reference_data(repo)
    yield repo
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


# =============================================================================
# Engines
# =============================================================================


@pytest.fixture
def ledger(repository, locks, clock, notifier):
    return InventoryLedger(repository, locks=locks, clock=clock, notifier=notifier)


@pytest.fixture
def orders(repository, ledger, locks, clock, notifier):
    return OrderFulfillmentEngine(
        repository, ledger, clock=clock, locks=locks, notifier=notifier
    )


@pytest.fixture
def purchases(repository, ledger, locks, clock, notifier):
    return PurchaseReceivingEngine(
        repository, ledger, clock=clock, locks=locks, notifier=notifier
    )


@pytest.fixture
def stock_item(ledger):
    """Cement at the main yard: 100 bags, reorder point 20."""
    return ledger.create_item(
        CEMENT, 100, "Yard A", TEST_ACTOR, minimum_stock=20, item_id="INV-CEMENT"
    )


@pytest.fixture
def rebar_item(ledger):
    return ledger.create_item(
        REBAR, 50, "Rack 3", TEST_ACTOR, minimum_stock=5, item_id="INV-REBAR"
    )
