"""
Module: erp_kernel.models.party
Responsibility: ORM persistence for customers, suppliers and products --
    the reference data the fulfillment engines read.
"""

from decimal import Decimal

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from erp_kernel.db.base import Base, as_decimal
from erp_kernel.domain.parties import Customer, PartyStatus, Product, Supplier


class CustomerModel(Base):
    __tablename__ = "customers"

    __table_args__ = (Index("idx_customer_status", "status"),)

    company_name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=PartyStatus.ACTIVE.value)

    def to_dto(self) -> Customer:
        return Customer(
            id=self.id,
            company_name=self.company_name,
            email=self.email,
            status=PartyStatus(self.status),
        )

    @classmethod
    def from_dto(cls, dto: Customer) -> "CustomerModel":
        return cls(
            id=dto.id,
            company_name=dto.company_name,
            email=dto.email,
            status=dto.status.value,
        )


class SupplierModel(Base):
    __tablename__ = "suppliers"

    __table_args__ = (Index("idx_supplier_status", "status"),)

    name: Mapped[str] = mapped_column(String(255))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_terms: Mapped[str] = mapped_column(String(50), default="Net 30")
    credit_limit: Mapped[Decimal] = mapped_column(default=Decimal("50000"))
    status: Mapped[str] = mapped_column(String(20), default=PartyStatus.ACTIVE.value)

    def to_dto(self) -> Supplier:
        return Supplier(
            id=self.id,
            name=self.name,
            email=self.email,
            payment_terms=self.payment_terms,
            credit_limit=as_decimal(self.credit_limit),
            status=PartyStatus(self.status),
        )

    @classmethod
    def from_dto(cls, dto: Supplier) -> "SupplierModel":
        return cls(
            id=dto.id,
            name=dto.name,
            email=dto.email,
            payment_terms=dto.payment_terms,
            credit_limit=dto.credit_limit,
            status=dto.status.value,
        )


class ProductModel(Base):
    __tablename__ = "products"

    __table_args__ = (Index("idx_product_sku", "sku", unique=True),)

    sku: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(255))
    category: Mapped[str] = mapped_column(String(100), default="")
    unit: Mapped[str] = mapped_column(String(20), default="EA")

    def to_dto(self) -> Product:
        return Product(
            id=self.id,
            sku=self.sku,
            name=self.name,
            category=self.category,
            unit=self.unit,
        )

    @classmethod
    def from_dto(cls, dto: Product) -> "ProductModel":
        return cls(id=dto.id, sku=dto.sku, name=dto.name, category=dto.category, unit=dto.unit)
