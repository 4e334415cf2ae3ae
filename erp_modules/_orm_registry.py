"""
Module ORM Registry (``erp_modules._orm_registry``).

Responsibility
--------------
Import every module-level SQLAlchemy ORM model so that ``Base.metadata``
holds the full schema, and map repository collections to their ORM
classes for ``SqlRepository``.

Architecture position
---------------------
**Modules layer** -- utility.  Imports from sibling ``erp_modules``
packages and from ``erp_kernel`` (allowed: modules -> kernel).  MUST NOT be
imported by ``erp_kernel``.

Usage
-----
Entrypoints and ``tests/conftest.py`` call ``create_all_tables()`` and
``default_model_registry()``.
"""

from erp_kernel.db.base import Base


def import_all_orm_models() -> None:
    """Import kernel models and every ``erp_modules.*.orm`` module.

    Idempotent -- repeated calls are harmless.
    """
    # fmt: off
    import erp_kernel.models  # noqa: F401
    import erp_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    import erp_modules.procurement.orm  # noqa: F401
    import erp_modules.sales.orm  # noqa: F401
    # fmt: on


def create_all_tables() -> None:
    """Create kernel and module tables.

    Preconditions:
        Engine must be initialized via ``init_engine_from_url()``.
    """
    from erp_kernel.db.engine import create_tables

    import_all_orm_models()
    create_tables()


def default_model_registry() -> dict[str, type[Base]]:
    """Collection name -> ORM class, as consumed by ``SqlRepository``."""
    from erp_kernel.db.repository import Collection
    from erp_kernel.models import (
        CustomerModel,
        InventoryItemModel,
        ProductModel,
        StockMovementModel,
        SupplierModel,
    )
    from erp_modules.procurement.orm import PurchaseOrderModel
    from erp_modules.sales.orm import OrderModel

    return {
        Collection.INVENTORY.value: InventoryItemModel,
        Collection.STOCK_MOVEMENTS.value: StockMovementModel,
        Collection.CUSTOMERS.value: CustomerModel,
        Collection.SUPPLIERS.value: SupplierModel,
        Collection.PRODUCTS.value: ProductModel,
        Collection.ORDERS.value: OrderModel,
        Collection.PURCHASES.value: PurchaseOrderModel,
    }
