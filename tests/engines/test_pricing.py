"""
Tests for the Pricing Calculator.

Covers:
- Subtotal, tax, shipping and discount arithmetic
- Free-shipping threshold (strictly greater than)
- Sales vs purchase policies
- Validation failures
- Determinism (hypothesis)
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from erp_engines.pricing import (
    PURCHASE_POLICY,
    SALES_POLICY,
    PricingCalculator,
    PricingLine,
    PricingPolicy,
    to_cents,
)
from erp_kernel.exceptions import ValidationError


class TestSalesPricing:
    """Tests for the sales policy (8% tax, free shipping over $500, else $50)."""

    def setup_method(self):
        self.calculator = PricingCalculator(SALES_POLICY)

    def test_order_over_threshold_ships_free(self):
        """12 bags at $50: subtotal 600, tax 48, no shipping, total 648."""
        result = self.calculator.calculate([PricingLine(12, Decimal("50.00"))])

        assert result.subtotal == Decimal("600.00")
        assert result.tax == Decimal("48.00")
        assert result.shipping == Decimal("0")
        assert result.discount == Decimal("0")
        assert result.total == Decimal("648.00")

    def test_order_at_threshold_pays_shipping(self):
        """Threshold is strict: exactly $500 still pays the flat fee."""
        result = self.calculator.calculate([PricingLine(10, Decimal("50.00"))])

        assert result.subtotal == Decimal("500.00")
        assert result.shipping == Decimal("50")
        assert result.total == Decimal("590.00")

    def test_small_order_pays_shipping(self):
        result = self.calculator.calculate([PricingLine(2, Decimal("12.50"))])

        assert result.subtotal == Decimal("25.00")
        assert result.tax == Decimal("2.00")
        assert result.shipping == Decimal("50")
        assert result.total == Decimal("77.00")

    def test_multiple_lines_are_summed(self):
        result = self.calculator.calculate([
            PricingLine(4, Decimal("100.00")),
            PricingLine(3, Decimal("40.00")),
        ])

        assert result.subtotal == Decimal("520.00")
        assert result.shipping == Decimal("0")

    def test_discount_reduces_total(self):
        result = self.calculator.calculate(
            [PricingLine(12, Decimal("50.00"))], discount=Decimal("48.00")
        )

        assert result.total == Decimal("600.00")
        assert result.total == result.subtotal + result.tax + result.shipping - result.discount

    def test_tax_is_rounded_half_up_to_cents(self):
        """Line totals and tax are rounded half-up to cents."""
        result = self.calculator.calculate([PricingLine(1, Decimal("10.0625"))])

        assert result.subtotal == Decimal("10.06")
        assert result.tax == Decimal("0.80")


class TestPurchasePricing:
    """Tests for the purchase policy (free shipping over $1000, else $100)."""

    def setup_method(self):
        self.calculator = PricingCalculator(PURCHASE_POLICY)

    def test_purchase_below_threshold_pays_freight(self):
        result = self.calculator.calculate([PricingLine(10, Decimal("60.00"))])

        assert result.subtotal == Decimal("600.00")
        assert result.shipping == Decimal("100")
        assert result.total == Decimal("748.00")

    def test_purchase_over_threshold_ships_free(self):
        result = self.calculator.calculate([PricingLine(11, Decimal("100.00"))])

        assert result.shipping == Decimal("0")
        assert result.total == Decimal("1188.00")


class TestPricingValidation:
    """Invalid inputs raise ValidationError."""

    def setup_method(self):
        self.calculator = PricingCalculator()

    def test_empty_lines_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.calculator.calculate([])
        assert exc_info.value.field == "lines"

    @pytest.mark.parametrize("quantity", [0, -3, 1.5, True])
    def test_bad_quantity_rejected(self, quantity):
        with pytest.raises(ValidationError):
            self.calculator.calculate([PricingLine(quantity, Decimal("1.00"))])

    def test_negative_unit_amount_rejected(self):
        with pytest.raises(ValidationError):
            self.calculator.calculate([PricingLine(1, Decimal("-1.00"))])

    def test_negative_discount_rejected(self):
        with pytest.raises(ValidationError):
            self.calculator.calculate([PricingLine(1, Decimal("1.00"))], discount=Decimal("-1"))

    def test_discount_above_gross_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.calculator.calculate(
                [PricingLine(1, Decimal("10.00"))], discount=Decimal("1000")
            )
        assert exc_info.value.field == "discount"

    def test_negative_policy_values_rejected(self):
        with pytest.raises(ValueError):
            PricingPolicy("bad", Decimal("-0.01"), Decimal("500"), Decimal("50"))


class TestPricingTrace:
    @staticmethod
    def _traces(captured_logs):
        return [r for r in captured_logs() if r["event"] == "engine_traced"]

    def test_calculation_is_traced(self, captured_logs):
        PricingCalculator().calculate([PricingLine(1, Decimal("5.00"))])

        [trace] = self._traces(captured_logs)
        assert trace["engine_name"] == "pricing"
        assert trace["outcome"] == "ok"
        assert len(trace["input_fingerprint"]) == 16

    def test_default_discount_fingerprints_like_explicit_zero(self, captured_logs):
        lines = [PricingLine(2, Decimal("7.50"))]
        PricingCalculator().calculate(lines)
        PricingCalculator().calculate(lines, discount=Decimal("0"))
        PricingCalculator().calculate(lines, Decimal("1.00"))

        first, second, third = (t["input_fingerprint"] for t in self._traces(captured_logs))
        assert first == second
        assert third != first

    def test_rejected_input_traced_with_error_code(self, captured_logs):
        with pytest.raises(ValidationError):
            PricingCalculator().calculate([])

        [trace] = self._traces(captured_logs)
        assert trace["outcome"] == "VALIDATION_ERROR"


line_strategy = st.builds(
    PricingLine,
    quantity=st.integers(min_value=1, max_value=500),
    unit_amount=st.decimals(
        min_value=Decimal("0"), max_value=Decimal("2000"), places=2,
        allow_nan=False, allow_infinity=False,
    ),
)


class TestPricingProperties:
    @settings(max_examples=100, deadline=None)
    @given(lines=st.lists(line_strategy, min_size=1, max_size=8))
    def test_pricing_is_deterministic_and_balanced(self, lines):
        calculator = PricingCalculator(SALES_POLICY)

        first = calculator.calculate(lines)
        second = calculator.calculate(list(lines))

        assert first == second
        assert first.total == first.subtotal + first.tax + first.shipping - first.discount
        assert first.tax == to_cents(first.subtotal * SALES_POLICY.tax_rate)
        expected_shipping = Decimal("0") if first.subtotal > Decimal("500") else Decimal("50")
        assert first.shipping == expected_shipping
