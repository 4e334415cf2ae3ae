"""
Tests for OrderFulfillmentEngine.

Covers:
- Creation: pricing, numbering, validation, confirmation notice
- Confirm: all-or-nothing reservation, inventory resolution
- Advance / cancel / delete legality and side effects
- Tracking and overview queries
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from erp_kernel.db.repository import Collection
from erp_kernel.domain.inventory import MovementType
from erp_kernel.exceptions import (
    CustomerNotFoundError,
    InsufficientStockError,
    InvalidStateTransitionError,
    ItemNotFoundError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from erp_kernel.services.notification import NotificationType
from erp_modules.sales.models import (
    Address,
    OrderFilter,
    OrderLineRequest,
    OrderStatus,
    PaymentStatus,
)
from erp_modules.sales.service import OrderFulfillmentEngine, release_reference

from tests.conftest import CEMENT, CUSTOMER, REBAR, SAND, TEST_ACTOR, FailingNotifier

SITE = Address("1 Main St", "Springfield", "IL", "62701")


def cement(quantity, price="50.00", **kwargs):
    return OrderLineRequest(CEMENT, quantity, Decimal(price), **kwargs)


class TestCreateOrder:
    def test_priced_and_numbered(self, orders):
        order = orders.create_order(CUSTOMER, [cement(12)], TEST_ACTOR, shipping_address=SITE)

        assert order.order_number == "ORD-202401-0001"
        assert order.status is OrderStatus.DRAFT
        assert order.payment_status is PaymentStatus.PENDING
        assert order.subtotal == Decimal("600.00")
        assert order.tax == Decimal("48.00")
        assert order.shipping == Decimal("0")
        assert order.total == Decimal("648.00")
        assert order.customer_name == "Acme Builders"
        assert order.billing_address == SITE
        assert order.lines[0].product_name == "Portland Cement 50kg"
        assert order.lines[0].line_total == Decimal("600.00")

    def test_numbers_increase(self, orders):
        first = orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        second = orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        assert (first.order_number, second.order_number) == ("ORD-202401-0001", "ORD-202401-0002")

    def test_numbering_restarts_each_month(self, orders, clock):
        orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        clock.set_time(datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc))
        february = orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        assert february.order_number == "ORD-202402-0001"

    def test_expected_delivery_is_a_week_out(self, orders, clock):
        order = orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        assert (order.expected_delivery - clock.today()).days == 7

    def test_confirmation_notice_sent(self, orders, notifier):
        order = orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)

        [notice] = notifier.of_type(NotificationType.ORDER_CONFIRMATION)
        assert notice.recipient_email == "orders@acme.example"
        assert order.order_number in notice.message

    def test_notifier_failure_does_not_fail_create(self, repository, ledger, clock):
        engine = OrderFulfillmentEngine(
            repository, ledger, clock=clock, notifier=FailingNotifier()
        )
        order = engine.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        assert engine.get_order(order.id) == order

    def test_unknown_customer(self, orders):
        with pytest.raises(CustomerNotFoundError):
            orders.create_order("CUST-404", [cement(1)], TEST_ACTOR)

    def test_unknown_product(self, orders):
        with pytest.raises(ProductNotFoundError):
            orders.create_order(
                CUSTOMER, [OrderLineRequest("P-404", 1, Decimal("1"))], TEST_ACTOR
            )

    @pytest.mark.parametrize(
        "lines",
        [
            [],
            [OrderLineRequest(CEMENT, 0, Decimal("1"))],
            [OrderLineRequest(CEMENT, 1, Decimal("-1"))],
        ],
    )
    def test_invalid_lines_rejected(self, orders, repository, lines):
        with pytest.raises(ValidationError):
            orders.create_order(CUSTOMER, lines, TEST_ACTOR)
        assert repository.count(Collection.ORDERS) == 0


class TestUpdateOrder:
    def test_update_recomputes_totals(self, orders):
        order = orders.create_order(CUSTOMER, [cement(12)], TEST_ACTOR)

        updated = orders.update_order(
            order.id, TEST_ACTOR, lines=[cement(2, "12.50")], notes="Deliver to gate 2"
        )

        assert updated.subtotal == Decimal("25.00")
        assert updated.shipping == Decimal("50")
        assert updated.total == Decimal("77.00")
        assert updated.notes == "Deliver to gate 2"
        assert updated.order_number == order.order_number

    def test_discount_only_update(self, orders):
        order = orders.create_order(CUSTOMER, [cement(12)], TEST_ACTOR)
        updated = orders.update_order(order.id, TEST_ACTOR, discount=Decimal("48.00"))
        assert updated.total == Decimal("600.00")

    def test_update_after_confirm_rejected(self, orders, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)

        with pytest.raises(InvalidStateTransitionError):
            orders.update_order(order.id, TEST_ACTOR, notes="too late")


class TestConfirm:
    def test_confirm_reserves_stock(self, orders, ledger, stock_item):
        order = orders.create_order(CUSTOMER, [cement(30)], TEST_ACTOR)

        confirmed = orders.confirm(order.id, TEST_ACTOR)

        assert confirmed.status is OrderStatus.CONFIRMED
        assert confirmed.confirmed_at is not None
        assert confirmed.lines[0].inventory_id == stock_item.id
        assert ledger.get_item(stock_item.id).quantity == 70
        [movement] = ledger.journal.movements_for_reference(order.id)
        assert movement.movement_type is MovementType.OUT
        assert movement.delta == -30

    def test_confirm_from_pending(self, orders, stock_item):
        order = orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR)
        orders.submit(order.id, TEST_ACTOR)
        assert orders.confirm(order.id, TEST_ACTOR).status is OrderStatus.CONFIRMED

    def test_insufficient_stock_changes_nothing(self, orders, ledger, stock_item, rebar_item):
        order = orders.create_order(
            CUSTOMER,
            [cement(10), OrderLineRequest(REBAR, 80, Decimal("9.00"))],
            TEST_ACTOR,
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            orders.confirm(order.id, TEST_ACTOR)

        [shortfall] = exc_info.value.shortfalls
        assert (shortfall.product_id, shortfall.requested, shortfall.available) == (REBAR, 80, 50)
        assert orders.get_order(order.id).status is OrderStatus.DRAFT
        assert ledger.get_item(stock_item.id).quantity == 100
        assert ledger.get_item(rebar_item.id).quantity == 50
        assert ledger.journal.movements_for_reference(order.id) == []

    def test_best_stocked_item_is_chosen(self, orders, ledger, stock_item):
        overflow = ledger.create_item(CEMENT, 400, "Yard B", TEST_ACTOR)
        order = orders.create_order(CUSTOMER, [cement(150)], TEST_ACTOR)

        confirmed = orders.confirm(order.id, TEST_ACTOR)

        assert confirmed.lines[0].inventory_id == overflow.id
        assert ledger.get_item(overflow.id).quantity == 250
        assert ledger.get_item(stock_item.id).quantity == 100

    def test_explicit_item_for_wrong_product_rejected(self, orders, rebar_item):
        order = orders.create_order(
            CUSTOMER, [cement(1, inventory_id=rebar_item.id)], TEST_ACTOR
        )
        with pytest.raises(ValidationError):
            orders.confirm(order.id, TEST_ACTOR)

    def test_product_without_stock_item(self, orders):
        order = orders.create_order(
            CUSTOMER, [OrderLineRequest(SAND, 1, Decimal("30"))], TEST_ACTOR
        )
        with pytest.raises(ItemNotFoundError):
            orders.confirm(order.id, TEST_ACTOR)

    def test_confirm_twice_rejected(self, orders, ledger, stock_item):
        order = orders.create_order(CUSTOMER, [cement(10)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)

        with pytest.raises(InvalidStateTransitionError):
            orders.confirm(order.id, TEST_ACTOR)
        assert ledger.get_item(stock_item.id).quantity == 90

    def test_low_stock_alert_on_confirm(self, orders, notifier, stock_item):
        order = orders.create_order(CUSTOMER, [cement(85)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)

        [alert] = notifier.of_type(NotificationType.LOW_STOCK_ALERT)
        assert alert.data["inventory_id"] == stock_item.id


class TestAdvance:
    def test_forward_chain_stamps_times(self, orders, clock, notifier, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)

        orders.advance(order.id, OrderStatus.PROCESSING, TEST_ACTOR)
        clock.advance(days=2)
        shipped = orders.advance(order.id, "shipped", TEST_ACTOR, notify_customer=True)
        clock.advance(days=1)
        delivered = orders.advance(order.id, OrderStatus.DELIVERED, TEST_ACTOR)

        assert shipped.shipped_at is not None
        assert delivered.status is OrderStatus.DELIVERED
        assert delivered.actual_delivery == clock.now()
        [update] = notifier.of_type(NotificationType.ORDER_STATUS_UPDATE)
        assert update.data["status"] == "shipped"

    def test_cannot_skip_steps(self, orders, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)

        with pytest.raises(InvalidStateTransitionError):
            orders.advance(order.id, OrderStatus.DELIVERED, TEST_ACTOR)

    def test_draft_cannot_advance(self, orders):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        with pytest.raises(InvalidStateTransitionError):
            orders.advance(order.id, OrderStatus.PROCESSING, TEST_ACTOR)

    def test_advance_to_cancelled_releases(self, orders, ledger, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)

        cancelled = orders.advance(order.id, "cancelled", TEST_ACTOR, notes="Customer called")

        assert cancelled.status is OrderStatus.CANCELLED
        assert ledger.get_item(stock_item.id).quantity == 100


class TestCancel:
    def test_draft_cancel_moves_no_stock(self, orders, ledger, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)

        orders.cancel(order.id, TEST_ACTOR)

        assert ledger.journal.movements_for_reference(release_reference(order.id)) == []
        assert ledger.get_item(stock_item.id).quantity == 100

    def test_shipped_cancel_releases_once(self, orders, ledger, stock_item):
        order = orders.create_order(CUSTOMER, [cement(40)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)
        orders.advance(order.id, OrderStatus.PROCESSING, TEST_ACTOR)
        orders.advance(order.id, OrderStatus.SHIPPED, TEST_ACTOR)

        orders.cancel(order.id, TEST_ACTOR, reason="Damaged in transit")
        with pytest.raises(InvalidStateTransitionError):
            orders.cancel(order.id, TEST_ACTOR)

        releases = ledger.journal.movements_for_reference(release_reference(order.id))
        assert [m.delta for m in releases] == [40]
        assert ledger.get_item(stock_item.id).quantity == 100
        assert ledger.reconcile(stock_item.id).balanced

    def test_delivered_cannot_cancel(self, orders, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)
        for status in ("processing", "shipped", "delivered"):
            orders.advance(order.id, status, TEST_ACTOR)

        with pytest.raises(InvalidStateTransitionError):
            orders.cancel(order.id, TEST_ACTOR)


class TestDelete:
    def test_delete_draft(self, orders):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)

        orders.delete_order(order.id, TEST_ACTOR)

        with pytest.raises(OrderNotFoundError):
            orders.get_order(order.id)

    def test_delete_pending_rejected(self, orders):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.submit(order.id, TEST_ACTOR)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            orders.delete_order(order.id, TEST_ACTOR)
        assert exc_info.value.action == "delete"


class TestQueries:
    def test_tracking_stages(self, orders, stock_item):
        order = orders.create_order(CUSTOMER, [cement(5)], TEST_ACTOR)
        orders.confirm(order.id, TEST_ACTOR)
        orders.advance(order.id, OrderStatus.PROCESSING, TEST_ACTOR)

        tracking = orders.tracking(order.id)

        assert tracking.current_status is OrderStatus.PROCESSING
        assert [s.name for s in tracking.stages] == [
            "Order Placed", "Confirmed", "Processing", "Shipped", "Delivered",
        ]
        assert [s.completed for s in tracking.stages] == [True, True, True, False, False]

    def test_list_filters_and_pages(self, orders):
        created = [orders.create_order(CUSTOMER, [cement(1)], TEST_ACTOR) for _ in range(5)]
        orders.submit(created[0].id, TEST_ACTOR)

        pending = orders.list_orders(OrderFilter(status=OrderStatus.PENDING))
        page = orders.list_orders(page=2, page_size=2)

        assert [o.id for o in pending.items] == [created[0].id]
        assert page.total == 5
        assert page.pages == 3
        assert len(page.items) == 2

    def test_overview(self, orders):
        first = orders.create_order(CUSTOMER, [cement(12)], TEST_ACTOR)
        orders.create_order(CUSTOMER, [cement(2, "12.50")], TEST_ACTOR)
        orders.submit(first.id, TEST_ACTOR)
        orders.set_payment_status(first.id, PaymentStatus.OVERDUE, TEST_ACTOR)

        overview = orders.overview()

        assert overview.total_orders == 2
        assert overview.total_revenue == Decimal("725.00")
        assert overview.average_order_value == Decimal("362.50")
        assert overview.by_status == {"pending": 1, "draft": 1}
        assert overview.pending_orders == 1
        assert overview.overdue_payments == 1

    def test_empty_overview(self, orders):
        overview = orders.overview()
        assert overview.total_orders == 0
        assert overview.average_order_value == Decimal("0")
