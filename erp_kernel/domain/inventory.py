"""
Inventory Domain Models (``erp_kernel.domain.inventory``).

Responsibility
--------------
Frozen value objects for stock items and their movement journal, plus the
pure status-derivation function and the explicit filter structs used to
query them.

Invariants
----------
- ``InventoryItem.quantity`` is a non-negative ``int``; construction with a
  negative quantity raises ``ValueError``.
- Stock status is never stored.  ``derive_status`` is a pure function of
  (quantity, minimum_stock, expiration_date, today).
- ``StockMovement.quantity`` is the positive magnitude; ``delta`` is the
  signed effect on on-hand quantity.  Summing ``delta`` over an item's
  journal gives its current quantity.
- All monetary fields use ``Decimal``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from erp_kernel.domain.query import Criterion, compact, eq


class InventoryStatus(str, Enum):
    """Derived stock status.  Values are the wire vocabulary."""

    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    EXPIRED = "expired"


class MovementType(str, Enum):
    """Stock movement categories.  Values are the wire vocabulary."""

    IN = "in"
    OUT = "out"
    TRANSFER = "transfer"
    ADJUSTMENT = "adjustment"


def derive_status(
    quantity: int,
    minimum_stock: int,
    expiration_date: date | None,
    today: date,
) -> InventoryStatus:
    """
    Derive stock status.

    Precedence: expired > out_of_stock > low_stock > in_stock.
    """
    if expiration_date is not None and expiration_date < today:
        return InventoryStatus.EXPIRED
    if quantity <= 0:
        return InventoryStatus.OUT_OF_STOCK
    if quantity <= minimum_stock:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.IN_STOCK


@dataclass(frozen=True)
class InventoryItem:
    """
    A stock item: current on-hand quantity of one product at one location.

    Contract: Immutable.  Only ``InventoryLedger`` produces copies with a new
    ``quantity``.
    """

    id: str
    product_id: str
    product_name: str
    quantity: int
    location: str
    category: str = ""
    unit: str = "EA"
    minimum_stock: int = 10
    maximum_stock: int = 1000
    unit_cost: Decimal = Decimal("0")
    supplier_id: str | None = None
    expiration_date: date | None = None
    batch_number: str | None = None
    last_updated: datetime | None = None
    created_at: datetime | None = None

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"quantity must be an int (got {self.quantity!r})")
        if self.quantity < 0:
            raise ValueError(f"quantity cannot be negative (got {self.quantity})")
        if self.minimum_stock < 0:
            raise ValueError("minimum_stock cannot be negative")
        if self.maximum_stock < self.minimum_stock:
            raise ValueError("maximum_stock cannot be below minimum_stock")

    def status(self, today: date) -> InventoryStatus:
        return derive_status(self.quantity, self.minimum_stock, self.expiration_date, today)

    @property
    def stock_value(self) -> Decimal:
        return self.unit_cost * self.quantity


@dataclass(frozen=True)
class StockMovement:
    """One immutable journal entry describing a quantity change."""

    id: str
    sequence: int
    inventory_id: str
    movement_type: MovementType
    quantity: int
    delta: int
    reason: str
    reference: str
    recorded_at: datetime
    actor: str


@dataclass(frozen=True)
class StockLine:
    """A requested quantity against one inventory item."""

    inventory_id: str
    quantity: int
    product_id: str | None = None


@dataclass(frozen=True)
class StockShortfall:
    """One under-stocked reservation line."""

    inventory_id: str
    product_id: str
    requested: int
    available: int

    @property
    def reason(self) -> str:
        return (
            f"Insufficient stock for {self.product_id}. "
            f"Available: {self.available}, Required: {self.requested}"
        )


@dataclass(frozen=True)
class InventoryFilter:
    """Explicit query fields for inventory items."""

    product_id: str | None = None
    category: str | None = None
    location: str | None = None
    supplier_id: str | None = None

    def criteria(self) -> tuple[Criterion, ...]:
        return compact(
            eq("product_id", self.product_id),
            eq("category", self.category),
            eq("location", self.location),
            eq("supplier_id", self.supplier_id),
        )


@dataclass(frozen=True)
class MovementFilter:
    """Explicit query fields for stock movements."""

    inventory_id: str | None = None
    reference: str | None = None
    movement_type: MovementType | None = None

    def criteria(self) -> tuple[Criterion, ...]:
        return compact(
            eq("inventory_id", self.inventory_id),
            eq("reference", self.reference),
            eq("movement_type", self.movement_type),
        )
