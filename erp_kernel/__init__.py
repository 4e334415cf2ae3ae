"""
ERP Kernel

Inventory ledger core for a construction-materials ERP:
- Derived stock status, never stored
- Append-only stock movement journal
- All-or-nothing reservation under per-item locks
- Atomic document numbering
- Repository contract over SQLAlchemy or memory
"""

__version__ = "0.1.0"
