"""
Tests for derived stock status and inventory DTO invariants.

Status is a pure function of (quantity, minimum_stock, expiration_date,
today); it is never stored.
"""

from datetime import date, timedelta
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from erp_kernel.domain.inventory import InventoryItem, InventoryStatus, derive_status
from erp_kernel.domain.query import Criterion, Operator, Page, page_window

TODAY = date(2024, 1, 15)


def make_item(**overrides):
    fields = dict(
        id="INV-1",
        product_id="P-1",
        product_name="Cement",
        quantity=50,
        location="Yard A",
        minimum_stock=20,
    )
    fields.update(overrides)
    return InventoryItem(**fields)


class TestDeriveStatus:
    def test_above_minimum_is_in_stock(self):
        assert derive_status(21, 20, None, TODAY) is InventoryStatus.IN_STOCK

    def test_at_minimum_is_low_stock(self):
        assert derive_status(20, 20, None, TODAY) is InventoryStatus.LOW_STOCK

    def test_zero_is_out_of_stock(self):
        assert derive_status(0, 20, None, TODAY) is InventoryStatus.OUT_OF_STOCK

    def test_expired_wins_over_everything(self):
        yesterday = TODAY - timedelta(days=1)
        assert derive_status(0, 20, yesterday, TODAY) is InventoryStatus.EXPIRED
        assert derive_status(500, 20, yesterday, TODAY) is InventoryStatus.EXPIRED

    def test_expiring_today_is_not_expired(self):
        assert derive_status(50, 20, TODAY, TODAY) is InventoryStatus.IN_STOCK

    @given(
        quantity=st.integers(min_value=0, max_value=10_000),
        minimum=st.integers(min_value=0, max_value=1_000),
        days=st.one_of(st.none(), st.integers(min_value=-30, max_value=30)),
    )
    def test_status_is_pure(self, quantity, minimum, days):
        expiration = None if days is None else TODAY + timedelta(days=days)

        first = derive_status(quantity, minimum, expiration, TODAY)
        second = derive_status(quantity, minimum, expiration, TODAY)

        assert first is second
        if expiration is not None and expiration < TODAY:
            assert first is InventoryStatus.EXPIRED
        elif quantity == 0:
            assert first is InventoryStatus.OUT_OF_STOCK
        elif quantity <= minimum:
            assert first is InventoryStatus.LOW_STOCK
        else:
            assert first is InventoryStatus.IN_STOCK


class TestInventoryItem:
    def test_negative_quantity_rejected(self):
        with pytest.raises(ValueError):
            make_item(quantity=-1)

    def test_float_quantity_rejected(self):
        with pytest.raises(ValueError):
            make_item(quantity=2.5)

    def test_maximum_below_minimum_rejected(self):
        with pytest.raises(ValueError):
            make_item(minimum_stock=50, maximum_stock=10)

    def test_stock_value(self):
        item = make_item(quantity=40, unit_cost=Decimal("7.25"))
        assert item.stock_value == Decimal("290.00")

    def test_status_uses_given_day(self):
        item = make_item(quantity=15)
        assert item.status(TODAY) is InventoryStatus.LOW_STOCK


class TestQueryPrimitives:
    def test_criterion_matches_enum_values(self):
        criterion = Criterion("status", Operator.EQ, InventoryStatus.LOW_STOCK)

        class Record:
            status = "low_stock"

        assert criterion.matches(Record())

    def test_prefix_does_not_match_none(self):
        class Record:
            order_number = None

        assert not Criterion("order_number", Operator.PREFIX, "ORD").matches(Record())

    def test_page_count(self):
        page = Page.of(["a", "b"], total=45, page=1, page_size=20)
        assert page.pages == 3

    def test_page_window(self):
        assert page_window(3, 20) == (40, 20)

    @pytest.mark.parametrize("page,size", [(0, 20), (1, 0)])
    def test_page_window_rejects_bad_arguments(self, page, size):
        with pytest.raises(ValueError):
            page_window(page, size)
