"""ORM models for the ERP kernel."""

from erp_kernel.models.inventory import InventoryItemModel, StockMovementModel
from erp_kernel.models.party import CustomerModel, ProductModel, SupplierModel

__all__ = [
    "CustomerModel",
    "InventoryItemModel",
    "ProductModel",
    "StockMovementModel",
    "SupplierModel",
]
