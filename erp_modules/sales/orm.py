"""
SQLAlchemy ORM persistence models for the Sales module.

Responsibility
--------------
Database-backed persistence for sales orders and their lines.

Invariants enforced
-------------------
* All monetary fields use ``Decimal`` (Numeric(38,9)) -- never float.
* Enum fields stored as String(20) using the wire vocabulary.
* ``order_number`` is unique; numbers come from the atomic counter, the
  constraint is the backstop.
* ``OrderLineModel`` belongs to exactly one ``OrderModel``; its id is
  ``<order id>:<line number>``.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import Base, as_decimal, as_utc
from erp_modules.sales.models import (
    Address,
    Order,
    OrderLine,
    OrderStatus,
    PaymentStatus,
)


class OrderModel(Base):
    """
    A sales order.

    Maps to the ``Order`` DTO in ``erp_modules.sales.models``.
    """

    __tablename__ = "sales_orders"

    __table_args__ = (
        UniqueConstraint("order_number", name="uq_sales_order_number"),
        Index("idx_sales_order_status", "status"),
        Index("idx_sales_order_customer", "customer_id"),
        Index("idx_sales_order_created", "created_at"),
    )

    order_number: Mapped[str] = mapped_column(String(50))
    customer_id: Mapped[str] = mapped_column(String(64))
    customer_name: Mapped[str] = mapped_column(String(255))
    subtotal: Mapped[Decimal]
    tax: Mapped[Decimal]
    shipping: Mapped[Decimal]
    discount: Mapped[Decimal]
    total: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.DRAFT.value)
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)
    shipping_address: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    billing_address: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    expected_delivery: Mapped[date | None] = mapped_column(nullable=True)
    actual_delivery: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), default="system")

    lines: Mapped[list["OrderLineModel"]] = relationship(
        "OrderLineModel",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderLineModel.line_number",
    )

    def to_dto(self) -> Order:
        return Order(
            id=self.id,
            order_number=self.order_number,
            customer_id=self.customer_id,
            customer_name=self.customer_name,
            lines=tuple(line.to_dto() for line in self.lines),
            subtotal=as_decimal(self.subtotal),
            tax=as_decimal(self.tax),
            shipping=as_decimal(self.shipping),
            discount=as_decimal(self.discount),
            total=as_decimal(self.total),
            status=OrderStatus(self.status),
            payment_status=PaymentStatus(self.payment_status),
            shipping_address=Address.from_dict(self.shipping_address),
            billing_address=Address.from_dict(self.billing_address),
            notes=self.notes,
            expected_delivery=self.expected_delivery,
            actual_delivery=as_utc(self.actual_delivery),
            confirmed_at=as_utc(self.confirmed_at),
            shipped_at=as_utc(self.shipped_at),
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
            created_by=self.created_by,
        )

    @classmethod
    def from_dto(cls, dto: Order) -> "OrderModel":
        return cls(
            id=dto.id,
            order_number=dto.order_number,
            customer_id=dto.customer_id,
            customer_name=dto.customer_name,
            subtotal=dto.subtotal,
            tax=dto.tax,
            shipping=dto.shipping,
            discount=dto.discount,
            total=dto.total,
            status=dto.status.value,
            payment_status=dto.payment_status.value,
            shipping_address=dto.shipping_address.to_dict() if dto.shipping_address else None,
            billing_address=dto.billing_address.to_dict() if dto.billing_address else None,
            notes=dto.notes,
            expected_delivery=dto.expected_delivery,
            actual_delivery=dto.actual_delivery,
            confirmed_at=dto.confirmed_at,
            shipped_at=dto.shipped_at,
            created_at=dto.created_at,
            updated_at=dto.updated_at,
            created_by=dto.created_by,
            lines=[OrderLineModel.from_dto(line, dto.id) for line in dto.lines],
        )

    def apply_dto(self, dto: Order) -> None:
        """Copy header columns, then update lines in place by line number."""
        super().apply_dto(dto)
        existing = {line.line_number: line for line in self.lines}
        wanted = {line.line_number for line in dto.lines}
        for line in dto.lines:
            row = existing.get(line.line_number)
            if row is None:
                self.lines.append(OrderLineModel.from_dto(line, self.id))
            else:
                row.update_from(line)
        for number, row in existing.items():
            if number not in wanted:
                self.lines.remove(row)

    def __repr__(self) -> str:
        return f"<OrderModel {self.order_number} [{self.status}] total={self.total}>"


class OrderLineModel(Base):
    """
    A line on a sales order.

    Maps to the ``OrderLine`` DTO in ``erp_modules.sales.models``.
    """

    __tablename__ = "sales_order_lines"

    __table_args__ = (
        UniqueConstraint("order_id", "line_number", name="uq_sales_order_line"),
        Index("idx_sales_order_line_product", "product_id"),
    )

    order_id: Mapped[str] = mapped_column(ForeignKey("sales_orders.id"))
    line_number: Mapped[int]
    product_id: Mapped[str] = mapped_column(String(64))
    product_name: Mapped[str] = mapped_column(String(255))
    quantity: Mapped[int]
    unit_price: Mapped[Decimal]
    line_total: Mapped[Decimal]
    inventory_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    order: Mapped["OrderModel"] = relationship("OrderModel", back_populates="lines")

    def to_dto(self) -> OrderLine:
        return OrderLine(
            line_number=int(self.line_number),
            product_id=self.product_id,
            product_name=self.product_name,
            quantity=int(self.quantity),
            unit_price=as_decimal(self.unit_price),
            line_total=as_decimal(self.line_total),
            inventory_id=self.inventory_id,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: OrderLine, order_id: str) -> "OrderLineModel":
        return cls(
            id=f"{order_id}:{dto.line_number}",
            order_id=order_id,
            line_number=dto.line_number,
            product_id=dto.product_id,
            product_name=dto.product_name,
            quantity=dto.quantity,
            unit_price=dto.unit_price,
            line_total=dto.line_total,
            inventory_id=dto.inventory_id,
            notes=dto.notes,
        )

    def update_from(self, dto: OrderLine) -> None:
        self.product_id = dto.product_id
        self.product_name = dto.product_name
        self.quantity = dto.quantity
        self.unit_price = dto.unit_price
        self.line_total = dto.line_total
        self.inventory_id = dto.inventory_id
        self.notes = dto.notes
