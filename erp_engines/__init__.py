"""
Module: erp_engines
Responsibility:
    Pure calculators used by the fulfillment modules.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import erp_kernel exceptions and logging only.
    MUST NOT import erp_modules.

Invariants enforced:
    - Engines never read the clock.
    - Decimal-only arithmetic for money.
    - Identical inputs always produce identical outputs.
"""

from erp_engines.pricing import (
    PURCHASE_POLICY,
    SALES_POLICY,
    PricingCalculator,
    PricingLine,
    PricingPolicy,
    PricingResult,
)

__all__ = [
    "PURCHASE_POLICY",
    "SALES_POLICY",
    "PricingCalculator",
    "PricingLine",
    "PricingPolicy",
    "PricingResult",
]
