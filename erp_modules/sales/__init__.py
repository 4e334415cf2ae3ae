"""
Sales module: customer orders from draft to delivery.

Orders reserve stock on confirm and release it on cancel, always through
``InventoryLedger``.
"""

from erp_modules.sales.config import SalesConfig
from erp_modules.sales.models import (
    Address,
    Order,
    OrderFilter,
    OrderLine,
    OrderLineRequest,
    OrderOverview,
    OrderStatus,
    OrderTracking,
    PaymentStatus,
    TrackingStage,
)
from erp_modules.sales.service import OrderFulfillmentEngine
from erp_modules.sales.workflows import ORDER_WORKFLOW

__all__ = [
    "ORDER_WORKFLOW",
    "Address",
    "Order",
    "OrderFilter",
    "OrderFulfillmentEngine",
    "OrderLine",
    "OrderLineRequest",
    "OrderOverview",
    "OrderStatus",
    "OrderTracking",
    "PaymentStatus",
    "SalesConfig",
    "TrackingStage",
]
