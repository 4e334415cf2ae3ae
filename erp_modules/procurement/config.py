"""
Procurement Configuration Schema.

Defines the structure and defaults for purchase order settings.
Runtime values come from ``erp_config.get_active_settings()``.
"""

from dataclasses import dataclass, field
from typing import Self

from erp_engines.pricing import PURCHASE_POLICY, PricingPolicy
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.procurement.config")


@dataclass
class ProcurementConfig:
    """Configuration schema for the procurement module."""

    pricing: PricingPolicy = field(default_factory=lambda: PURCHASE_POLICY)
    number_prefix: str = "PO"
    number_width: int = 4

    def __post_init__(self):
        if not self.number_prefix:
            raise ValueError("number_prefix is required")
        if self.number_width < 1:
            raise ValueError("number_width must be >= 1")
        logger.info(
            "procurement_config_initialized",
            extra={
                "pricing_policy": self.pricing.name,
                "number_prefix": self.number_prefix,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("procurement_config_created_with_defaults")
        return cls()

    @classmethod
    def from_settings(cls, settings) -> Self:
        """Build from an ``erp_config.ErpSettings``."""
        return cls(
            pricing=settings.pricing.purchase,
            number_prefix=settings.numbering.purchase_prefix,
            number_width=settings.numbering.width,
        )
