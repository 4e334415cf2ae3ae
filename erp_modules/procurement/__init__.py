"""
Procurement module: purchase orders and goods receipt.

Received quantities enter stock through ``InventoryLedger.receive_many``.
"""

from erp_modules.procurement.config import ProcurementConfig
from erp_modules.procurement.models import (
    PurchaseFilter,
    PurchaseLine,
    PurchaseLineRequest,
    PurchaseOrder,
    PurchaseStatus,
    ReceiptLine,
    ReceiptLineResult,
    ReceiptResult,
)
from erp_modules.procurement.service import PurchaseReceivingEngine
from erp_modules.procurement.workflows import PURCHASE_WORKFLOW

__all__ = [
    "PURCHASE_WORKFLOW",
    "ProcurementConfig",
    "PurchaseFilter",
    "PurchaseLine",
    "PurchaseLineRequest",
    "PurchaseOrder",
    "PurchaseReceivingEngine",
    "PurchaseStatus",
    "ReceiptLine",
    "ReceiptLineResult",
    "ReceiptResult",
]
