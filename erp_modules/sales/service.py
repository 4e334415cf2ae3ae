"""
Sales Module Service (``erp_modules.sales.service``).

Responsibility
--------------
``OrderFulfillmentEngine`` owns the sales-order state machine.  It prices
orders through ``PricingCalculator``, numbers them through the atomic
document counter, and moves stock only through ``InventoryLedger``.

Architecture
------------
Layer: **Modules** -- orchestration over the kernel.

1. ``ORDER_WORKFLOW.require`` authorises every status write.
2. ``PricingCalculator`` recomputes totals whenever lines or discount change.
3. ``InventoryLedger.reserve_many`` / ``release`` run on confirm / cancel,
   inside the same repository transaction as the order write.

Invariants
----------
- Per-order serialisation: every mutation holds ``order:<id>``; the ledger
  then takes item keys (documents before items).
- A failed ``confirm`` leaves order and stock exactly as they were.
- Cancelling a confirmed (or later) order releases its stock once, under
  the reference ``<order id>:release``.
- ``total == subtotal + tax + shipping - discount`` (checked by ``Order``).

Failure Modes
-------------
- ValidationError, CustomerNotFoundError, ProductNotFoundError on create.
- OrderNotFoundError for unknown ids.
- InvalidStateTransitionError for actions illegal in the current status.
- InsufficientStockError / ItemNotFoundError from confirm.
- ConcurrencyConflictError when locks cannot be taken.

Usage::

    engine = OrderFulfillmentEngine(repository, ledger, clock=clock)
    order = engine.create_order(
        customer_id="CUST-1",
        lines=[OrderLineRequest("P-100", 12, Decimal("50.00"))],
        actor="clerk",
    )
    engine.confirm(order.id, actor="clerk")
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from erp_engines.pricing import PricingCalculator, PricingLine, PricingResult
from erp_kernel.db.repository import Collection, Repository
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.inventory import StockLine
from erp_kernel.domain.query import Page, SortSpec, page_window
from erp_kernel.exceptions import (
    CustomerNotFoundError,
    InvalidStateTransitionError,
    ItemNotFoundError,
    OrderNotFoundError,
    ProductNotFoundError,
    ValidationError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.services.inventory_ledger import InventoryLedger
from erp_kernel.services.lock_manager import KeyedLockManager, order_key
from erp_kernel.services.notification import (
    LoggingNotifier,
    Notification,
    NotificationType,
    Notifier,
    safe_send,
)
from erp_kernel.services.sequence_service import DocumentNumberAllocator
from erp_modules._workflow import Transition
from erp_modules.sales.config import SalesConfig
from erp_modules.sales.models import (
    Address,
    Order,
    OrderFilter,
    OrderLine,
    OrderLineRequest,
    OrderOverview,
    OrderStatus,
    OrderTracking,
    PaymentStatus,
    TrackingStage,
)
from erp_modules.sales.workflows import DELETABLE_STATES, ORDER_WORKFLOW

logger = get_logger("modules.sales.service")


def release_reference(order_id: str) -> str:
    return f"{order_id}:release"


class OrderFulfillmentEngine:
    """
    Sales order lifecycle over the inventory ledger.

    Non-goals
    ---------
    - Does NOT write inventory quantities; the ledger does.
    - Does NOT deliver notifications; it hands them to a ``Notifier`` after
      the state change is written.
    """

    def __init__(
        self,
        repository: Repository,
        ledger: InventoryLedger,
        clock: Clock | None = None,
        locks: KeyedLockManager | None = None,
        notifier: Notifier | None = None,
        config: SalesConfig | None = None,
    ):
        self._repository = repository
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLockManager()
        self._notifier = notifier or LoggingNotifier()
        self._config = config or SalesConfig.with_defaults()
        self._pricing = PricingCalculator(self._config.pricing)
        self._numbers = DocumentNumberAllocator(
            repository, self._config.number_prefix, self._config.number_width
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load(self, order_id: str) -> Order:
        order = self._repository.find_by_id(Collection.ORDERS, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _build_lines(self, requests: Sequence[OrderLineRequest]) -> tuple[OrderLine, ...]:
        if not requests:
            raise ValidationError("lines", "Order must contain at least one item")
        lines = []
        for number, request in enumerate(requests, start=1):
            quantity = request.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")
            unit_price = Decimal(request.unit_price)
            if unit_price < Decimal("0"):
                raise ValidationError("unit_price", f"cannot be negative, got {unit_price}")

            product = self._repository.find_by_id(Collection.PRODUCTS, request.product_id)
            if product is None:
                raise ProductNotFoundError(request.product_id)

            lines.append(
                OrderLine(
                    line_number=number,
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=unit_price,
                    line_total=PricingLine(quantity, unit_price).line_total,
                    inventory_id=request.inventory_id,
                    notes=request.notes,
                )
            )
        return tuple(lines)

    def _price(self, lines: Sequence[OrderLine], discount: Decimal) -> PricingResult:
        return self._pricing.calculate(
            [PricingLine(line.quantity, line.unit_price) for line in lines],
            discount=Decimal(discount),
        )

    def _resolve_inventory(self, lines: Sequence[OrderLine]) -> tuple[OrderLine, ...]:
        """Pin every line to a stock item; lines without one use the product's best-stocked item."""
        resolved = []
        for line in lines:
            if line.inventory_id is not None:
                item = self._ledger.get_item(line.inventory_id)
                if item.product_id != line.product_id:
                    raise ValidationError(
                        "inventory_id",
                        f"item {item.id} holds {item.product_id}, not {line.product_id}",
                    )
                resolved.append(line)
                continue

            candidates = self._ledger.find_by_product(line.product_id)
            if not candidates:
                raise ItemNotFoundError(line.product_id)
            best = max(candidates, key=lambda item: (item.quantity, item.id))
            resolved.append(replace(line, inventory_id=best.id))
        return tuple(resolved)

    def _write_status(
        self,
        order: Order,
        transition: Transition,
        actor: str,
        **fields,
    ) -> Order:
        now = self._clock.now()
        updated = self._repository.update(
            Collection.ORDERS,
            order.id,
            {"status": OrderStatus(transition.to_state), "updated_at": now, **fields},
        )
        logger.info(
            "order_status_changed",
            extra={
                "order_id": order.id,
                "order_number": order.order_number,
                "from_status": order.status.value,
                "to_status": transition.to_state,
                "action": transition.action,
                "actor": actor,
            },
        )
        return updated

    def _notify_status(self, order: Order, notes: str | None = None) -> None:
        customer = self._repository.find_by_id(Collection.CUSTOMERS, order.customer_id)
        if customer is None:
            return
        safe_send(
            self._notifier,
            Notification(
                type=NotificationType.ORDER_STATUS_UPDATE,
                title="Order Status Update",
                message=f"Order {order.order_number} status changed to {order.status.value}",
                data={"order_id": order.id, "status": order.status.value, "notes": notes},
                recipient_id=customer.id,
                recipient_email=customer.email,
            ),
        )

    @staticmethod
    def _stock_lines(lines: Sequence[OrderLine]) -> list[StockLine]:
        return [StockLine(line.inventory_id, line.quantity, line.product_id) for line in lines]

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def create_order(
        self,
        customer_id: str,
        lines: Sequence[OrderLineRequest],
        actor: str,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
        discount: Decimal = Decimal("0"),
        notes: str | None = None,
    ) -> Order:
        """Create a draft order with priced lines and a fresh order number."""
        customer = self._repository.find_by_id(Collection.CUSTOMERS, customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)

        order_lines = self._build_lines(lines)
        totals = self._price(order_lines, discount)
        now = self._clock.now()

        with self._repository.transaction():
            order = Order(
                id=str(uuid4()),
                order_number=self._numbers.allocate(now),
                customer_id=customer.id,
                customer_name=customer.company_name,
                lines=order_lines,
                subtotal=totals.subtotal,
                tax=totals.tax,
                shipping=totals.shipping,
                discount=totals.discount,
                total=totals.total,
                status=OrderStatus(ORDER_WORKFLOW.initial_state),
                payment_status=PaymentStatus.PENDING,
                shipping_address=shipping_address,
                billing_address=billing_address or shipping_address,
                notes=notes,
                expected_delivery=(now + timedelta(days=self._config.expected_delivery_days)).date(),
                created_at=now,
                updated_at=now,
                created_by=actor,
            )
            self._repository.create(Collection.ORDERS, order)

        logger.info(
            "order_created",
            extra={
                "order_id": order.id,
                "order_number": order.order_number,
                "customer_id": customer.id,
                "line_count": len(order_lines),
                "total": order.total,
                "actor": actor,
            },
        )
        safe_send(
            self._notifier,
            Notification(
                type=NotificationType.ORDER_CONFIRMATION,
                title="Order Confirmation",
                message=f"Order {order.order_number} has been created successfully",
                data={"order_id": order.id, "order_number": order.order_number, "total": order.total},
                recipient_id=customer.id,
                recipient_email=customer.email,
            ),
        )
        return order

    def submit(self, order_id: str, actor: str) -> Order:
        """draft -> pending."""
        with self._locks.hold([order_key(order_id)]), self._repository.transaction():
            order = self._load(order_id)
            transition = ORDER_WORKFLOW.require(order.id, order.status, "submit")
            return self._write_status(order, transition, actor)

    def update_order(
        self,
        order_id: str,
        actor: str,
        lines: Sequence[OrderLineRequest] | None = None,
        discount: Decimal | None = None,
        notes: str | None = None,
        shipping_address: Address | None = None,
        billing_address: Address | None = None,
    ) -> Order:
        """
        Edit a draft or pending order.

        Totals are recomputed from the (new or existing) lines and discount.
        """
        with self._locks.hold([order_key(order_id)]), self._repository.transaction():
            order = self._load(order_id)
            ORDER_WORKFLOW.require(order.id, order.status, "update")

            order_lines = self._build_lines(lines) if lines is not None else order.lines
            new_discount = order.discount if discount is None else Decimal(discount)
            totals = self._price(order_lines, new_discount)

            patch = {
                "lines": order_lines,
                "subtotal": totals.subtotal,
                "tax": totals.tax,
                "shipping": totals.shipping,
                "discount": totals.discount,
                "total": totals.total,
                "updated_at": self._clock.now(),
            }
            if notes is not None:
                patch["notes"] = notes
            if shipping_address is not None:
                patch["shipping_address"] = shipping_address
            if billing_address is not None:
                patch["billing_address"] = billing_address
            updated = self._repository.update(Collection.ORDERS, order.id, patch)

        logger.info(
            "order_updated",
            extra={
                "order_id": order.id,
                "fields": sorted(patch),
                "total": updated.total,
                "actor": actor,
            },
        )
        return updated

    def confirm(self, order_id: str, actor: str) -> Order:
        """
        Reserve stock for every line and move to confirmed.

        Raises:
            InsufficientStockError: itemised shortfalls; nothing changed.
        """
        with LogContext.bind(actor_id=actor, reference=order_id):
            with self._locks.hold([order_key(order_id)]):
                order = self._load(order_id)
                transition = ORDER_WORKFLOW.require(order.id, order.status, "confirm")
                lines = self._resolve_inventory(order.lines)

                with self._locks.unit_of_work(), self._repository.transaction():
                    self._ledger.reserve_many(self._stock_lines(lines), order.id, actor)
                    now = self._clock.now()
                    return self._write_status(
                        order, transition, actor, lines=lines, confirmed_at=now
                    )

    def advance(
        self,
        order_id: str,
        to_status: OrderStatus | str,
        actor: str,
        notify_customer: bool = False,
        notes: str | None = None,
    ) -> Order:
        """
        Move one step along confirmed -> processing -> shipped -> delivered.

        ``to_status="cancelled"`` is handed to ``cancel``.
        """
        to_status = OrderStatus(to_status)
        if to_status is OrderStatus.CANCELLED:
            return self.cancel(order_id, actor, reason=notes or "Order cancelled")

        with self._locks.hold([order_key(order_id)]), self._repository.transaction():
            order = self._load(order_id)
            transition = ORDER_WORKFLOW.require(order.id, order.status, "advance", to_status)
            now = self._clock.now()
            fields = {}
            if to_status is OrderStatus.SHIPPED:
                fields["shipped_at"] = now
            elif to_status is OrderStatus.DELIVERED:
                fields["actual_delivery"] = now
            updated = self._write_status(order, transition, actor, **fields)

        if notify_customer:
            self._notify_status(updated, notes)
        return updated

    def cancel(self, order_id: str, actor: str, reason: str = "Order cancelled") -> Order:
        """Cancel; orders holding stock release it first."""
        with LogContext.bind(actor_id=actor, reference=order_id):
            with (
                self._locks.hold([order_key(order_id)]),
                self._locks.unit_of_work(),
                self._repository.transaction(),
            ):
                order = self._load(order_id)
                transition = ORDER_WORKFLOW.require(order.id, order.status, "cancel")
                if order.holds_stock:
                    self._ledger.release(
                        self._stock_lines(order.lines), release_reference(order.id), actor
                    )
                updated = self._write_status(order, transition, actor)

            logger.info(
                "order_cancelled",
                extra={
                    "order_id": order.id,
                    "released_stock": order.holds_stock,
                    "reason": reason,
                },
            )
        return updated

    def delete_order(self, order_id: str, actor: str) -> None:
        """Delete a draft order."""
        with self._locks.hold([order_key(order_id)]), self._repository.transaction():
            order = self._load(order_id)
            if order.status.value not in DELETABLE_STATES:
                raise InvalidStateTransitionError("order", order.id, order.status.value, "delete")
            self._repository.delete(Collection.ORDERS, order.id)

        logger.info(
            "order_deleted",
            extra={"order_id": order.id, "order_number": order.order_number, "actor": actor},
        )

    def set_payment_status(
        self,
        order_id: str,
        payment_status: PaymentStatus | str,
        actor: str,
    ) -> Order:
        payment_status = PaymentStatus(payment_status)
        with self._locks.hold([order_key(order_id)]), self._repository.transaction():
            order = self._load(order_id)
            updated = self._repository.update(
                Collection.ORDERS,
                order.id,
                {"payment_status": payment_status, "updated_at": self._clock.now()},
            )
        logger.info(
            "order_payment_status_changed",
            extra={
                "order_id": order.id,
                "from_payment_status": order.payment_status.value,
                "to_payment_status": payment_status.value,
                "actor": actor,
            },
        )
        return updated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        return self._load(order_id)

    def list_orders(
        self,
        filter: OrderFilter | None = None,
        page: int = 1,
        page_size: int = 50,
        sort: SortSpec | None = None,
    ) -> Page[Order]:
        skip, limit = page_window(page, page_size)
        sort = sort or SortSpec("created_at", descending=True)
        items = self._repository.find(
            Collection.ORDERS, filter, sort=sort, skip=skip, limit=limit
        )
        total = self._repository.count(Collection.ORDERS, filter)
        return Page.of(items, total, page, page_size)

    def tracking(self, order_id: str) -> OrderTracking:
        order = self._load(order_id)
        status = order.status
        after_processing = status in (
            OrderStatus.PROCESSING,
            OrderStatus.SHIPPED,
            OrderStatus.DELIVERED,
        )
        stages = (
            TrackingStage("Order Placed", True, order.created_at),
            TrackingStage("Confirmed", order.confirmed_at is not None, order.confirmed_at),
            TrackingStage("Processing", after_processing),
            TrackingStage("Shipped", order.shipped_at is not None, order.shipped_at),
            TrackingStage(
                "Delivered", status is OrderStatus.DELIVERED, order.actual_delivery
            ),
        )
        return OrderTracking(
            order_number=order.order_number,
            current_status=status,
            expected_delivery=order.expected_delivery,
            actual_delivery=order.actual_delivery,
            stages=stages,
        )

    def overview(
        self,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> OrderOverview:
        orders = self._repository.find(
            Collection.ORDERS,
            OrderFilter(created_from=created_from, created_to=created_to),
        )
        revenue = sum((order.total for order in orders), Decimal("0"))
        average = (revenue / len(orders)).quantize(Decimal("0.01")) if orders else Decimal("0")
        return OrderOverview(
            total_orders=len(orders),
            total_revenue=revenue,
            average_order_value=average,
            by_status=dict(Counter(order.status.value for order in orders)),
            by_payment_status=dict(Counter(order.payment_status.value for order in orders)),
            pending_orders=sum(1 for order in orders if order.status is OrderStatus.PENDING),
            overdue_payments=sum(
                1 for order in orders if order.payment_status is PaymentStatus.OVERDUE
            ),
        )
