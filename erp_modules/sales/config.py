"""
Sales Configuration Schema.

Defines the structure and defaults for order fulfillment settings.
Runtime values come from ``erp_config.get_active_settings()``.
"""

from dataclasses import dataclass, field
from typing import Self

from erp_engines.pricing import SALES_POLICY, PricingPolicy
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.sales.config")


@dataclass
class SalesConfig:
    """
    Configuration schema for the sales module.

        config = SalesConfig(expected_delivery_days=5)
    """

    pricing: PricingPolicy = field(default_factory=lambda: SALES_POLICY)
    number_prefix: str = "ORD"
    number_width: int = 4
    expected_delivery_days: int = 7

    def __post_init__(self):
        if not self.number_prefix:
            raise ValueError("number_prefix is required")
        if self.number_width < 1:
            raise ValueError("number_width must be >= 1")
        if self.expected_delivery_days < 0:
            raise ValueError("expected_delivery_days cannot be negative")
        logger.info(
            "sales_config_initialized",
            extra={
                "pricing_policy": self.pricing.name,
                "number_prefix": self.number_prefix,
                "expected_delivery_days": self.expected_delivery_days,
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        logger.info("sales_config_created_with_defaults")
        return cls()

    @classmethod
    def from_settings(cls, settings) -> Self:
        """Build from an ``erp_config.ErpSettings``."""
        return cls(
            pricing=settings.pricing.sales,
            number_prefix=settings.numbering.order_prefix,
            number_width=settings.numbering.width,
            expected_delivery_days=settings.sales.expected_delivery_days,
        )
