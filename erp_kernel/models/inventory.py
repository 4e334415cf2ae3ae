"""
Module: erp_kernel.models.inventory
Responsibility: SQLAlchemy ORM persistence for inventory items and the stock
    movement journal.  Maps the frozen DTOs in ``erp_kernel.domain.inventory``
    to relational tables.

Invariants enforced:
    - No ``status`` column: stock status is derived, never stored.
    - ``quantity`` has a CHECK constraint (>= 0); movement magnitude > 0.
    - Stock movements are append-only; ``db/immutability.py`` rejects ORM
      UPDATE/DELETE of ``StockMovementModel`` rows.
    - Enum fields are stored as String(20) using the wire vocabulary.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, as_decimal, as_utc
from erp_kernel.domain.inventory import InventoryItem, MovementType, StockMovement


class InventoryItemModel(Base):
    """
    ORM model for stock items.

    Maps to: erp_kernel.domain.inventory.InventoryItem.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_quantity_non_negative"),
        Index("idx_inventory_product", "product_id"),
        Index("idx_inventory_location", "location"),
        Index("idx_inventory_category", "category"),
    )

    product_id: Mapped[str] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(100), default="")
    unit: Mapped[str] = mapped_column(String(20), default="EA")
    quantity: Mapped[int] = mapped_column(default=0)
    minimum_stock: Mapped[int] = mapped_column(default=10)
    maximum_stock: Mapped[int] = mapped_column(default=1000)
    unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    location: Mapped[str] = mapped_column(String(100))
    supplier_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expiration_date: Mapped[date | None] = mapped_column(nullable=True)
    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_updated: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> InventoryItem:
        return InventoryItem(
            id=self.id,
            product_id=self.product_id,
            product_name=self.product_name,
            category=self.category,
            unit=self.unit,
            quantity=int(self.quantity),
            minimum_stock=int(self.minimum_stock),
            maximum_stock=int(self.maximum_stock),
            unit_cost=as_decimal(self.unit_cost),
            location=self.location,
            supplier_id=self.supplier_id,
            expiration_date=self.expiration_date,
            batch_number=self.batch_number,
            last_updated=as_utc(self.last_updated),
            created_at=as_utc(self.created_at),
        )

    @classmethod
    def from_dto(cls, dto: InventoryItem) -> "InventoryItemModel":
        return cls(
            id=dto.id,
            product_id=dto.product_id,
            product_name=dto.product_name,
            category=dto.category,
            unit=dto.unit,
            quantity=dto.quantity,
            minimum_stock=dto.minimum_stock,
            maximum_stock=dto.maximum_stock,
            unit_cost=dto.unit_cost,
            location=dto.location,
            supplier_id=dto.supplier_id,
            expiration_date=dto.expiration_date,
            batch_number=dto.batch_number,
            last_updated=dto.last_updated,
            created_at=dto.created_at,
        )

    def __repr__(self) -> str:
        return f"<InventoryItemModel {self.id} product={self.product_id} qty={self.quantity}>"


class StockMovementModel(Base):
    """
    ORM model for the append-only stock movement journal.

    Maps to: erp_kernel.domain.inventory.StockMovement.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_stock_movement_positive_magnitude"),
        Index("idx_stock_movement_inventory", "inventory_id", "sequence"),
        Index("idx_stock_movement_reference", "reference"),
    )

    sequence: Mapped[int] = mapped_column(unique=True)
    inventory_id: Mapped[str] = mapped_column(String(64))
    movement_type: Mapped[str] = mapped_column(String(20))
    quantity: Mapped[int] = mapped_column()
    delta: Mapped[int] = mapped_column()
    reason: Mapped[str] = mapped_column(String(255))
    reference: Mapped[str] = mapped_column(String(255))
    recorded_at: Mapped[datetime] = mapped_column()
    actor: Mapped[str] = mapped_column(String(100))

    def to_dto(self) -> StockMovement:
        return StockMovement(
            id=self.id,
            sequence=int(self.sequence),
            inventory_id=self.inventory_id,
            movement_type=MovementType(self.movement_type),
            quantity=int(self.quantity),
            delta=int(self.delta),
            reason=self.reason,
            reference=self.reference,
            recorded_at=as_utc(self.recorded_at),
            actor=self.actor,
        )

    @classmethod
    def from_dto(cls, dto: StockMovement) -> "StockMovementModel":
        return cls(
            id=dto.id,
            sequence=dto.sequence,
            inventory_id=dto.inventory_id,
            movement_type=dto.movement_type.value,
            quantity=dto.quantity,
            delta=dto.delta,
            reason=dto.reason,
            reference=dto.reference,
            recorded_at=dto.recorded_at,
            actor=dto.actor,
        )

    def __repr__(self) -> str:
        return (
            f"<StockMovementModel {self.id} inv={self.inventory_id} "
            f"{self.movement_type} delta={self.delta}>"
        )
