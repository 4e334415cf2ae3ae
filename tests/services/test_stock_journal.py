"""
Tests for the append-only stock movement journal.
"""

import pytest

from erp_kernel.db.repository import Collection, InMemoryRepository
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.inventory import MovementType
from erp_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidMagnitudeError,
    ValidationError,
)
from erp_kernel.services.stock_journal import StockMovementJournal

ACTOR = "journal-test"


class TestAppend:
    def setup_method(self):
        self.repository = InMemoryRepository()
        self.journal = StockMovementJournal(self.repository, DeterministicClock())

    def test_in_movement_has_positive_delta(self):
        movement = self.journal.append("INV-1", MovementType.IN, 10, "Delivery", "PO-1", ACTOR)

        assert movement.quantity == 10
        assert movement.delta == 10
        assert movement.sequence == 1

    def test_out_movement_has_negative_delta(self):
        movement = self.journal.append("INV-1", "out", 4, "Reserved", "ORD-1", ACTOR)

        assert movement.movement_type is MovementType.OUT
        assert movement.delta == -4

    def test_transfer_has_zero_delta(self):
        movement = self.journal.append("INV-1", MovementType.TRANSFER, 7, "Move", "A->B", ACTOR)
        assert movement.delta == 0

    def test_adjustment_carries_signed_delta(self):
        movement = self.journal.append(
            "INV-1", MovementType.ADJUSTMENT, 3, "Count", "ADJUSTMENT", ACTOR, delta=-3
        )
        assert movement.delta == -3

    def test_adjustment_delta_must_match_magnitude(self):
        with pytest.raises(ValidationError):
            self.journal.append(
                "INV-1", MovementType.ADJUSTMENT, 3, "Count", "ADJUSTMENT", ACTOR, delta=-5
            )

    @pytest.mark.parametrize("quantity", [0, -1, 2.5, True])
    def test_non_positive_magnitude_rejected(self, quantity):
        with pytest.raises(InvalidMagnitudeError):
            self.journal.append("INV-1", MovementType.IN, quantity, "Bad", "X", ACTOR)

    def test_sequences_increase(self):
        sequences = [
            self.journal.append("INV-1", MovementType.IN, 1, "r", "ref", ACTOR).sequence
            for _ in range(5)
        ]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == 5


class TestImmutability:
    def setup_method(self):
        self.repository = InMemoryRepository()
        self.journal = StockMovementJournal(self.repository)

    def test_update_rejected(self):
        movement = self.journal.append("INV-1", MovementType.IN, 1, "r", "ref", ACTOR)

        with pytest.raises(ImmutabilityViolationError):
            self.repository.update(Collection.STOCK_MOVEMENTS, movement.id, {"quantity": 99})

    def test_delete_rejected(self):
        movement = self.journal.append("INV-1", MovementType.IN, 1, "r", "ref", ACTOR)

        with pytest.raises(ImmutabilityViolationError):
            self.repository.delete(Collection.STOCK_MOVEMENTS, movement.id)
        assert self.repository.find_by_id(Collection.STOCK_MOVEMENTS, movement.id) == movement


class TestQueries:
    def setup_method(self):
        self.repository = InMemoryRepository()
        self.journal = StockMovementJournal(self.repository)
        for quantity in range(1, 26):
            self.journal.append("INV-1", MovementType.IN, quantity, "r", f"REF-{quantity}", ACTOR)
        self.journal.append("INV-2", MovementType.IN, 100, "r", "REF-1", ACTOR)

    def test_history_is_newest_first_and_paged(self):
        first = self.journal.history("INV-1", page=1, page_size=10)
        last = self.journal.history("INV-1", page=3, page_size=10)

        assert first.total == 25
        assert first.pages == 3
        assert [m.quantity for m in first.items[:3]] == [25, 24, 23]
        assert len(last.items) == 5
        assert last.items[-1].quantity == 1

    def test_movements_for_reference(self):
        tagged = self.journal.movements_for_reference("REF-1")
        assert {m.inventory_id for m in tagged} == {"INV-1", "INV-2"}

        only_one = self.journal.movements_for_reference("REF-1", inventory_id="INV-2")
        assert [m.quantity for m in only_one] == [100]

    def test_net_quantity(self):
        assert self.journal.net_quantity("INV-1") == sum(range(1, 26))
        assert self.journal.net_quantity("INV-404") == 0
