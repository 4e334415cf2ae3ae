"""
Config -> Kernel Bridges.

Build kernel and module objects from ``ErpSettings``.  These live in
erp_config (the producer) because the kernel must never import erp_config.

Usage:
    from erp_config import get_active_settings
    from erp_config.bridges import build_lock_manager, build_inventory_ledger

    settings = get_active_settings()
    locks = build_lock_manager(settings)
    ledger = build_inventory_ledger(settings, repository, locks=locks)
"""

from __future__ import annotations

from erp_config.schema import ErpSettings
from erp_kernel.db.repository import Repository
from erp_kernel.domain.clock import Clock
from erp_kernel.services.inventory_ledger import InventoryLedger
from erp_kernel.services.lock_manager import KeyedLockManager
from erp_kernel.services.notification import Notifier


def build_lock_manager(settings: ErpSettings) -> KeyedLockManager:
    return KeyedLockManager(
        timeout_seconds=settings.locks.timeout_seconds,
        max_attempts=settings.locks.max_attempts,
        backoff_seconds=settings.locks.backoff_seconds,
    )


def build_inventory_ledger(
    settings: ErpSettings,
    repository: Repository,
    locks: KeyedLockManager | None = None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
) -> InventoryLedger:
    return InventoryLedger(
        repository,
        locks=locks or build_lock_manager(settings),
        clock=clock,
        notifier=notifier,
        default_minimum_stock=settings.inventory.minimum_stock,
        default_maximum_stock=settings.inventory.maximum_stock,
    )
