"""Tests for the injectable clocks."""

from datetime import datetime, timedelta, timezone

import pytest

from erp_kernel.domain.clock import DEFAULT_TEST_TIME, DeterministicClock, SystemClock


class TestDeterministicClock:
    def test_stands_still(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now() == DEFAULT_TEST_TIME
        assert clock.today().isoformat() == "2024-01-15"

    def test_advance_returns_new_time(self):
        clock = DeterministicClock()
        moved = clock.advance(days=1, hours=2)
        assert moved == DEFAULT_TEST_TIME + timedelta(days=1, hours=2)
        assert clock.now() == moved

    def test_cannot_move_backwards(self):
        clock = DeterministicClock()
        with pytest.raises(ValueError):
            clock.advance(days=-1)
        assert clock.now() == DEFAULT_TEST_TIME

    def test_set_time_normalises_to_utc(self):
        clock = DeterministicClock()
        clock.set_time(datetime(2024, 3, 1, 1, 0, tzinfo=timezone(timedelta(hours=2))))
        assert clock.now() == datetime(2024, 2, 29, 23, 0, tzinfo=timezone.utc)
        assert clock.now().tzinfo is timezone.utc

    def test_naive_time_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2024, 1, 1))


def test_system_clock_is_utc():
    assert SystemClock().now().tzinfo is timezone.utc
