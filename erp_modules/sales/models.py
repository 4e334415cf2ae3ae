"""
Sales Domain Models.

The nouns of order fulfillment: orders, order lines, addresses, and the
request/filter/tracking shapes the service accepts and returns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from erp_kernel.domain.query import Criterion, Operator, compact, eq
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.sales.models")


class OrderStatus(str, Enum):
    """Sales order lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    REFUNDED = "refunded"


# Statuses in which the order holds reserved stock.
RESERVED_STATUSES = frozenset({
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
})


@dataclass(frozen=True)
class Address:
    street: str
    city: str
    state: str
    zip_code: str
    country: str = "USA"

    def to_dict(self) -> dict[str, str]:
        return {
            "street": self.street,
            "city": self.city,
            "state": self.state,
            "zip_code": self.zip_code,
            "country": self.country,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> Address | None:
        if not data:
            return None
        return cls(
            street=data["street"],
            city=data["city"],
            state=data["state"],
            zip_code=data["zip_code"],
            country=data.get("country", "USA"),
        )


@dataclass(frozen=True)
class OrderLineRequest:
    """A line as submitted by the caller, before pricing."""
    product_id: str
    quantity: int
    unit_price: Decimal
    inventory_id: str | None = None  # resolved from the product when omitted
    notes: str | None = None


@dataclass(frozen=True)
class OrderLine:
    """A priced line on a sales order."""
    line_number: int
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    inventory_id: str | None = None
    notes: str | None = None

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValueError(f"quantity must be a positive integer (got {self.quantity!r})")
        if self.unit_price < Decimal("0"):
            raise ValueError(f"unit_price cannot be negative (got {self.unit_price})")


@dataclass(frozen=True)
class Order:
    """
    A sales order.

    Invariant: total == subtotal + tax + shipping - discount.
    """
    id: str
    order_number: str
    customer_id: str
    customer_name: str
    lines: tuple[OrderLine, ...]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    status: OrderStatus = OrderStatus.DRAFT
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping_address: Address | None = None
    billing_address: Address | None = None
    notes: str | None = None
    expected_delivery: date | None = None
    actual_delivery: datetime | None = None
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = "system"

    def __post_init__(self):
        if self.total != self.subtotal + self.tax + self.shipping - self.discount:
            logger.warning(
                "order_total_mismatch",
                extra={"order_id": self.id, "total": self.total},
            )
            raise ValueError(
                f"total {self.total} != subtotal + tax + shipping - discount for order {self.id}"
            )

    @property
    def holds_stock(self) -> bool:
        return self.status in RESERVED_STATUSES


@dataclass(frozen=True)
class OrderFilter:
    """Explicit query fields for orders."""
    status: OrderStatus | None = None
    statuses: tuple[OrderStatus, ...] | None = None
    payment_status: PaymentStatus | None = None
    customer_id: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    order_number_prefix: str | None = None

    def criteria(self) -> tuple[Criterion, ...]:
        return compact(
            eq("status", self.status),
            Criterion("status", Operator.IN, self.statuses) if self.statuses else None,
            eq("payment_status", self.payment_status),
            eq("customer_id", self.customer_id),
            Criterion("created_at", Operator.GTE, self.created_from) if self.created_from else None,
            Criterion("created_at", Operator.LTE, self.created_to) if self.created_to else None,
            (
                Criterion("order_number", Operator.PREFIX, self.order_number_prefix)
                if self.order_number_prefix
                else None
            ),
        )


@dataclass(frozen=True)
class TrackingStage:
    name: str
    completed: bool
    timestamp: datetime | None = None


@dataclass(frozen=True)
class OrderTracking:
    order_number: str
    current_status: OrderStatus
    expected_delivery: date | None
    actual_delivery: datetime | None
    stages: tuple[TrackingStage, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OrderOverview:
    """Aggregate figures over a set of orders."""
    total_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    by_status: dict[str, int]
    by_payment_status: dict[str, int]
    pending_orders: int
    overdue_payments: int
