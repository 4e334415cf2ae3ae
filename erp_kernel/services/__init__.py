"""Services for the ERP kernel (write side)."""

from erp_kernel.services.inventory_ledger import (
    BulkAdjustment,
    BulkAdjustResult,
    InventoryLedger,
    ReceiveResult,
    ReconciliationResult,
    ReleaseResult,
    ReservationResult,
)
from erp_kernel.services.lock_manager import KeyedLockManager
from erp_kernel.services.notification import LoggingNotifier, Notification, Notifier
from erp_kernel.services.sequence_service import DocumentNumberAllocator, SequenceService
from erp_kernel.services.stock_journal import StockMovementJournal

__all__ = [
    "BulkAdjustResult",
    "BulkAdjustment",
    "DocumentNumberAllocator",
    "InventoryLedger",
    "KeyedLockManager",
    "LoggingNotifier",
    "Notification",
    "Notifier",
    "ReceiveResult",
    "ReconciliationResult",
    "ReleaseResult",
    "ReservationResult",
    "SequenceService",
    "StockMovementJournal",
]
