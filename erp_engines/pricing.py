"""
Pricing Engine - order and purchase totals.

Computes subtotal, tax, shipping and total for a list of priced lines under
a ``PricingPolicy``.  Pure: no I/O, no clock, Decimal-only arithmetic.

Usage:
    from decimal import Decimal
    from erp_engines.pricing import PricingCalculator, PricingLine, SALES_POLICY

    calculator = PricingCalculator(SALES_POLICY)
    result = calculator.calculate([PricingLine(12, Decimal("50.00"))])
    result.subtotal   # Decimal("600.00")
    result.shipping   # Decimal("0.00") -- subtotal is above the $500 threshold
    result.tax        # Decimal("48.00")
    result.total      # Decimal("648.00")
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from erp_engines.tracer import traced_engine
from erp_kernel.exceptions import ValidationError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.pricing")

CENT = Decimal("0.01")


def to_cents(amount: Decimal) -> Decimal:
    """Quantize to cents, rounding half up."""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingPolicy:
    """
    Tax and shipping terms.

    Shipping is free only when the subtotal is strictly greater than
    ``free_shipping_threshold``; otherwise ``shipping_fee`` applies.
    """

    name: str
    tax_rate: Decimal  # As decimal (0.08 for 8%)
    free_shipping_threshold: Decimal
    shipping_fee: Decimal

    def __post_init__(self) -> None:
        if self.tax_rate < Decimal("0"):
            raise ValueError("tax_rate cannot be negative")
        if self.free_shipping_threshold < Decimal("0"):
            raise ValueError("free_shipping_threshold cannot be negative")
        if self.shipping_fee < Decimal("0"):
            raise ValueError("shipping_fee cannot be negative")

    def shipping_for(self, subtotal: Decimal) -> Decimal:
        if subtotal > self.free_shipping_threshold:
            return Decimal("0")
        return self.shipping_fee


SALES_POLICY = PricingPolicy(
    name="sales",
    tax_rate=Decimal("0.08"),
    free_shipping_threshold=Decimal("500"),
    shipping_fee=Decimal("50"),
)

PURCHASE_POLICY = PricingPolicy(
    name="purchase",
    tax_rate=Decimal("0.08"),
    free_shipping_threshold=Decimal("1000"),
    shipping_fee=Decimal("100"),
)


@dataclass(frozen=True)
class PricingLine:
    """One priced line: quantity times a unit price (sales) or unit cost (purchases)."""

    quantity: int
    unit_amount: Decimal

    @property
    def line_total(self) -> Decimal:
        return to_cents(self.unit_amount * self.quantity)


@dataclass(frozen=True)
class PricingResult:
    """total = subtotal + tax + shipping - discount."""

    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal


class PricingCalculator:
    """Applies one ``PricingPolicy`` to line lists."""

    def __init__(self, policy: PricingPolicy = SALES_POLICY):
        self._policy = policy

    @property
    def policy(self) -> PricingPolicy:
        return self._policy

    @traced_engine("pricing", "1.0", fingerprint_fields=("lines", "discount"))
    def calculate(
        self,
        lines: Sequence[PricingLine],
        discount: Decimal = Decimal("0"),
    ) -> PricingResult:
        """
        Price a list of lines.

        Raises:
            ValidationError: empty line list, a non-positive quantity, a
                negative unit amount or discount, or a discount larger than
                the gross total.
        """
        if not lines:
            raise ValidationError("lines", "at least one line is required")
        for line in lines:
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
                raise ValidationError("quantity", f"must be a positive integer, got {line.quantity!r}")
            if line.unit_amount < Decimal("0"):
                raise ValidationError("unit_amount", f"cannot be negative, got {line.unit_amount}")

        discount = to_cents(Decimal(discount))
        if discount < Decimal("0"):
            raise ValidationError("discount", "cannot be negative")

        subtotal = to_cents(sum((line.line_total for line in lines), Decimal("0")))
        tax = to_cents(subtotal * self._policy.tax_rate)
        shipping = to_cents(self._policy.shipping_for(subtotal))
        gross = subtotal + tax + shipping
        if discount > gross:
            raise ValidationError("discount", f"{discount} exceeds order total {gross}")

        return PricingResult(
            subtotal=subtotal,
            tax=tax,
            shipping=shipping,
            discount=discount,
            total=gross - discount,
        )
