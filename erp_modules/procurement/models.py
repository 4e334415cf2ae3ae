"""
Procurement Domain Models.

Purchase orders, their lines, and the receipt request/result shapes.
A purchase line is identified by its product: a purchase never lists the
same product twice, so a receipt line ``(product_id, quantity)`` maps to
exactly one purchase line.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from erp_kernel.domain.query import Criterion, Operator, compact, eq
from erp_kernel.domain.inventory import StockMovement
from erp_kernel.logging_config import get_logger
from erp_modules.sales.models import PaymentStatus

logger = get_logger("modules.procurement.models")


class PurchaseStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


RECEIVABLE_STATUSES = frozenset({PurchaseStatus.APPROVED, PurchaseStatus.ORDERED})


@dataclass(frozen=True)
class PurchaseLineRequest:
    product_id: str
    quantity: int
    unit_cost: Decimal
    inventory_id: str | None = None


@dataclass(frozen=True)
class PurchaseLine:
    """A priced line on a purchase order with its receiving progress."""
    line_number: int
    product_id: str
    product_name: str
    quantity: int
    unit_cost: Decimal
    line_total: Decimal
    received_quantity: int = 0
    inventory_id: str | None = None

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity <= 0:
            raise ValueError(f"quantity must be a positive integer (got {self.quantity!r})")
        if self.unit_cost < Decimal("0"):
            raise ValueError(f"unit_cost cannot be negative (got {self.unit_cost})")
        if not 0 <= self.received_quantity <= self.quantity:
            raise ValueError(
                f"received_quantity must be within 0..{self.quantity} "
                f"(got {self.received_quantity})"
            )

    @property
    def outstanding(self) -> int:
        return self.quantity - self.received_quantity

    @property
    def is_complete(self) -> bool:
        return self.received_quantity == self.quantity


@dataclass(frozen=True)
class PurchaseOrder:
    """
    A purchase order placed with a supplier.

    Invariants:
        total == subtotal + tax + shipping - discount.
        status == received iff every line is fully received.
    """
    id: str
    purchase_number: str
    supplier_id: str
    supplier_name: str
    lines: tuple[PurchaseLine, ...]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    status: PurchaseStatus = PurchaseStatus.DRAFT
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_terms: str = "Net 30"
    notes: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    expected_delivery: date | None = None
    actual_delivery: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str = "system"

    def __post_init__(self):
        if self.total != self.subtotal + self.tax + self.shipping - self.discount:
            raise ValueError(
                f"total {self.total} != subtotal + tax + shipping - discount "
                f"for purchase {self.id}"
            )
        if (self.status is PurchaseStatus.RECEIVED) != self.fully_received:
            logger.warning(
                "purchase_receipt_state_mismatch",
                extra={"purchase_id": self.id, "status": self.status.value},
            )
            raise ValueError(
                f"purchase {self.id} is {self.status.value} but "
                f"{'all' if self.fully_received else 'not all'} lines are received"
            )

    @property
    def fully_received(self) -> bool:
        return bool(self.lines) and all(line.is_complete for line in self.lines)

    def line_for(self, product_id: str) -> PurchaseLine | None:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None


@dataclass(frozen=True)
class PurchaseFilter:
    """Explicit query fields for purchase orders."""
    status: PurchaseStatus | None = None
    statuses: tuple[PurchaseStatus, ...] | None = None
    supplier_id: str | None = None
    payment_status: PaymentStatus | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None
    purchase_number_prefix: str | None = None

    def criteria(self) -> tuple[Criterion, ...]:
        return compact(
            eq("status", self.status),
            Criterion("status", Operator.IN, self.statuses) if self.statuses else None,
            eq("supplier_id", self.supplier_id),
            eq("payment_status", self.payment_status),
            Criterion("created_at", Operator.GTE, self.created_from) if self.created_from else None,
            Criterion("created_at", Operator.LTE, self.created_to) if self.created_to else None,
            (
                Criterion("purchase_number", Operator.PREFIX, self.purchase_number_prefix)
                if self.purchase_number_prefix
                else None
            ),
        )


@dataclass(frozen=True)
class ReceiptLine:
    """Quantity of one product arriving against a purchase."""
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ReceiptLineResult:
    product_id: str
    requested: int
    accepted: int

    @property
    def clamped(self) -> int:
        """Quantity beyond the outstanding amount that was not booked."""
        return self.requested - self.accepted


@dataclass(frozen=True)
class ReceiptResult:
    purchase: PurchaseOrder
    lines: tuple[ReceiptLineResult, ...]
    movements: tuple[StockMovement, ...] = ()

    @property
    def complete(self) -> bool:
        return self.purchase.status is PurchaseStatus.RECEIVED

    @property
    def total_clamped(self) -> int:
        return sum(line.clamped for line in self.lines)


@dataclass(frozen=True)
class SupplierSpend:
    supplier_id: str
    supplier_name: str
    total_spend: Decimal
    purchase_count: int


@dataclass(frozen=True)
class PurchaseOverview:
    """
    Aggregate figures over a set of purchases.

    ``overdue_deliveries`` counts open purchases whose expected delivery
    date has passed; ``top_suppliers`` is ordered by spend, highest first.
    """
    total_purchases: int
    total_spend: Decimal
    average_purchase_value: Decimal
    by_status: dict[str, int]
    by_payment_status: dict[str, int]
    pending_approvals: int
    overdue_deliveries: int
    top_suppliers: tuple[SupplierSpend, ...]
