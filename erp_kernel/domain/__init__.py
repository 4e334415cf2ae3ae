"""
Pure domain layer.

Frozen DTOs, filter structs and pure functions with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- I/O
"""

from erp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from erp_kernel.domain.inventory import (
    InventoryFilter,
    InventoryItem,
    InventoryStatus,
    MovementFilter,
    MovementType,
    StockLine,
    StockMovement,
    StockShortfall,
    derive_status,
)
from erp_kernel.domain.parties import Customer, PartyFilter, PartyStatus, Product, Supplier
from erp_kernel.domain.query import Criterion, Operator, Page, SortSpec

__all__ = [
    "Clock",
    "Criterion",
    "Customer",
    "DeterministicClock",
    "InventoryFilter",
    "InventoryItem",
    "InventoryStatus",
    "MovementFilter",
    "MovementType",
    "Operator",
    "Page",
    "PartyFilter",
    "PartyStatus",
    "Product",
    "SortSpec",
    "StockLine",
    "StockMovement",
    "StockShortfall",
    "Supplier",
    "SystemClock",
    "derive_status",
]
