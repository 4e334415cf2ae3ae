"""
SQLAlchemy ORM persistence models for the Procurement module.

Invariants enforced
-------------------
* Monetary fields are Numeric(38,9) via the shared type map.
* ``purchase_number`` is unique.
* Line ids are ``<purchase id>:<line number>``.
"""

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import Base, as_decimal, as_utc
from erp_modules.procurement.models import PurchaseLine, PurchaseOrder, PurchaseStatus
from erp_modules.sales.models import PaymentStatus


class PurchaseOrderModel(Base):
    """
    A purchase order.

    Maps to the ``PurchaseOrder`` DTO in ``erp_modules.procurement.models``.
    """

    __tablename__ = "purchase_orders"

    __table_args__ = (
        UniqueConstraint("purchase_number", name="uq_purchase_number"),
        Index("idx_purchase_status", "status"),
        Index("idx_purchase_supplier", "supplier_id"),
    )

    purchase_number: Mapped[str] = mapped_column(String(50))
    supplier_id: Mapped[str] = mapped_column(String(64))
    supplier_name: Mapped[str] = mapped_column(String(255))
    subtotal: Mapped[Decimal]
    tax: Mapped[Decimal]
    shipping: Mapped[Decimal]
    discount: Mapped[Decimal]
    total: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), default=PurchaseStatus.DRAFT.value)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)
    payment_terms: Mapped[str] = mapped_column(String(100), default="Net 30")
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    expected_delivery: Mapped[date | None] = mapped_column(nullable=True)
    actual_delivery: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), default="system")

    lines: Mapped[list["PurchaseLineModel"]] = relationship(
        "PurchaseLineModel",
        back_populates="purchase",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="PurchaseLineModel.line_number",
    )

    def to_dto(self) -> PurchaseOrder:
        return PurchaseOrder(
            id=self.id,
            purchase_number=self.purchase_number,
            supplier_id=self.supplier_id,
            supplier_name=self.supplier_name,
            lines=tuple(line.to_dto() for line in self.lines),
            subtotal=as_decimal(self.subtotal),
            tax=as_decimal(self.tax),
            shipping=as_decimal(self.shipping),
            discount=as_decimal(self.discount),
            total=as_decimal(self.total),
            status=PurchaseStatus(self.status),
            payment_status=PaymentStatus(self.payment_status),
            payment_terms=self.payment_terms,
            notes=self.notes,
            approved_by=self.approved_by,
            approved_at=as_utc(self.approved_at),
            expected_delivery=self.expected_delivery,
            actual_delivery=as_utc(self.actual_delivery),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            created_by=self.created_by,
        )

    @classmethod
    def from_dto(cls, dto: PurchaseOrder) -> "PurchaseOrderModel":
        return cls(
            id=dto.id,
            purchase_number=dto.purchase_number,
            supplier_id=dto.supplier_id,
            supplier_name=dto.supplier_name,
            subtotal=dto.subtotal,
            tax=dto.tax,
            shipping=dto.shipping,
            discount=dto.discount,
            total=dto.total,
            status=dto.status.value,
            payment_status=dto.payment_status.value,
            payment_terms=dto.payment_terms,
            notes=dto.notes,
            approved_by=dto.approved_by,
            approved_at=dto.approved_at,
            expected_delivery=dto.expected_delivery,
            actual_delivery=dto.actual_delivery,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            created_by=dto.created_by,
            lines=[PurchaseLineModel.from_dto(line, dto.id) for line in dto.lines],
        )

    def apply_dto(self, dto: PurchaseOrder) -> None:
        """Copy header columns, then update lines in place by line number."""
        super().apply_dto(dto)
        existing = {line.line_number: line for line in self.lines}
        wanted = {line.line_number for line in dto.lines}
        for line in dto.lines:
            row = existing.get(line.line_number)
            if row is None:
                self.lines.append(PurchaseLineModel.from_dto(line, self.id))
            else:
                row.update_from(line)
        for number, row in existing.items():
            if number not in wanted:
                self.lines.remove(row)

    def __repr__(self) -> str:
        return f"<PurchaseOrderModel {self.purchase_number} [{self.status}]>"


class PurchaseLineModel(Base):
    __tablename__ = "purchase_order_lines"

    __table_args__ = (
        UniqueConstraint("purchase_id", "line_number", name="uq_purchase_line"),
    )

    purchase_id: Mapped[str] = mapped_column(ForeignKey("purchase_orders.id"))
    line_number: Mapped[int]
    product_id: Mapped[str] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[int]
    unit_cost: Mapped[Decimal]
    line_total: Mapped[Decimal]
    received_quantity: Mapped[int] = mapped_column(default=0)
    inventory_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    purchase: Mapped["PurchaseOrderModel"] = relationship(
        "PurchaseOrderModel", back_populates="lines"
    )

    def to_dto(self) -> PurchaseLine:
        return PurchaseLine(
            line_number=int(self.line_number),
            product_id=self.product_id,
            product_name=self.product_name,
            quantity=int(self.quantity),
            unit_cost=as_decimal(self.unit_cost),
            line_total=as_decimal(self.line_total),
            received_quantity=int(self.received_quantity),
            inventory_id=self.inventory_id,
        )

    @classmethod
    def from_dto(cls, dto: PurchaseLine, purchase_id: str) -> "PurchaseLineModel":
        return cls(
            id=f"{purchase_id}:{dto.line_number}",
            purchase_id=purchase_id,
            line_number=dto.line_number,
            product_id=dto.product_id,
            product_name=dto.product_name,
            quantity=dto.quantity,
            unit_cost=dto.unit_cost,
            line_total=dto.line_total,
            received_quantity=dto.received_quantity,
            inventory_id=dto.inventory_id,
        )

    def update_from(self, dto: PurchaseLine) -> None:
        self.product_id = dto.product_id
        self.product_name = dto.product_name
        self.quantity = dto.quantity
        self.unit_cost = dto.unit_cost
        self.line_total = dto.line_total
        self.received_quantity = dto.received_quantity
        self.inventory_id = dto.inventory_id
