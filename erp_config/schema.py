"""
Configuration Schema (``erp_config.schema``).

Frozen dataclasses for every runtime setting.  Parsing lives in
``erp_config.loader``; these classes only validate.

Invariants enforced
-------------------
* Every object is immutable once built.
* Out-of-range values raise ``ValueError`` at construction.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from erp_engines.pricing import PURCHASE_POLICY, SALES_POLICY, PricingPolicy


@dataclass(frozen=True)
class PricingSettings:
    sales: PricingPolicy = SALES_POLICY
    purchase: PricingPolicy = PURCHASE_POLICY


@dataclass(frozen=True)
class LockSettings:
    """Keyed lock acquisition: per-attempt timeout, attempts, linear backoff."""

    timeout_seconds: float = 5.0
    max_attempts: int = 3
    backoff_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError(f"locks.timeout_seconds must be positive, got {self.timeout_seconds}")
        if self.max_attempts < 1:
            raise ValueError(f"locks.max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ValueError(f"locks.backoff_seconds cannot be negative, got {self.backoff_seconds}")


@dataclass(frozen=True)
class NumberingSettings:
    order_prefix: str = "ORD"
    purchase_prefix: str = "PO"
    width: int = 4

    def __post_init__(self) -> None:
        if not self.order_prefix or not self.purchase_prefix:
            raise ValueError("numbering prefixes must be non-empty")
        if self.order_prefix == self.purchase_prefix:
            raise ValueError("order and purchase prefixes must differ")
        if self.width < 1:
            raise ValueError(f"numbering.width must be >= 1, got {self.width}")


@dataclass(frozen=True)
class InventoryDefaults:
    """Reorder bounds applied to items created without explicit ones."""

    minimum_stock: int = 10
    maximum_stock: int = 1000

    def __post_init__(self) -> None:
        if self.minimum_stock < 0:
            raise ValueError("inventory.minimum_stock cannot be negative")
        if self.maximum_stock < self.minimum_stock:
            raise ValueError("inventory.maximum_stock cannot be below minimum_stock")


@dataclass(frozen=True)
class SalesSettings:
    expected_delivery_days: int = 7

    def __post_init__(self) -> None:
        if self.expected_delivery_days < 0:
            raise ValueError("sales.expected_delivery_days cannot be negative")


@dataclass(frozen=True)
class ErpSettings:
    """
    The complete runtime configuration.

    ``checksum`` identifies the merged source data (see
    ``loader.compute_checksum``); it is empty for settings built in code.
    """

    database_url: str = "sqlite://"
    pricing: PricingSettings = field(default_factory=PricingSettings)
    locks: LockSettings = field(default_factory=LockSettings)
    numbering: NumberingSettings = field(default_factory=NumberingSettings)
    inventory: InventoryDefaults = field(default_factory=InventoryDefaults)
    sales: SalesSettings = field(default_factory=SalesSettings)
    checksum: str = ""

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database_url is required")
