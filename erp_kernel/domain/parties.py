"""
Party and catalog reference data.

Customers, suppliers and products are owned by CRUD surfaces outside the
kernel.  The fulfillment engines only read them: to resolve names, check
that references exist, and enforce supplier status and credit limits.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from erp_kernel.domain.query import Criterion, compact, eq


class PartyStatus(str, Enum):
    """Lifecycle status of a customer or supplier."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    BLOCKED = "blocked"


@dataclass(frozen=True)
class Customer:
    id: str
    company_name: str
    email: str | None = None
    status: PartyStatus = PartyStatus.ACTIVE


@dataclass(frozen=True)
class Supplier:
    """
    A vendor of materials.

    ``credit_limit`` caps the total of any single purchase order approved
    against this supplier.
    """

    id: str
    name: str
    email: str | None = None
    payment_terms: str = "Net 30"
    credit_limit: Decimal = Decimal("50000")
    status: PartyStatus = PartyStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is PartyStatus.ACTIVE


@dataclass(frozen=True)
class Product:
    id: str
    sku: str
    name: str
    category: str = ""
    unit: str = "EA"


@dataclass(frozen=True)
class PartyFilter:
    """Explicit query fields for customers and suppliers."""

    status: PartyStatus | None = None
    email: str | None = None

    def criteria(self) -> tuple[Criterion, ...]:
        return compact(eq("status", self.status), eq("email", self.email))
