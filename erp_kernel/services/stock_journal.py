"""
StockMovementJournal -- the append-only history behind inventory quantities.

Responsibility:
    Records one immutable ``StockMovement`` per quantity change and answers
    history queries over them.

Architecture position:
    Kernel > Services.  Written only by ``InventoryLedger``; read by the
    ledger (release idempotency, reconciliation) and by callers showing
    movement history.

Invariants enforced:
    - ``quantity`` (the magnitude) is a positive int; ``delta`` carries the
      sign.  ``in`` is +quantity, ``out`` is -quantity, ``transfer`` is 0,
      ``adjustment`` must be given explicitly as +/-quantity.
    - Each movement gets a strictly increasing ``sequence`` so history has
      a stable order even when timestamps collide.
    - Movements are never updated or deleted (repository and ORM guards).

Failure modes:
    - InvalidMagnitudeError: magnitude is not a positive int.
    - ValidationError: ``delta`` disagrees with type and magnitude.
"""

from __future__ import annotations

from uuid import uuid4

from erp_kernel.db.repository import Collection, Repository
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.inventory import MovementFilter, MovementType, StockMovement
from erp_kernel.domain.query import Page, SortSpec, page_window
from erp_kernel.exceptions import InvalidMagnitudeError, ValidationError
from erp_kernel.logging_config import get_logger

logger = get_logger("services.stock_journal")

MOVEMENT_SEQUENCE = "stock_movements"


def _expected_delta(movement_type: MovementType, quantity: int, delta: int | None) -> int:
    if movement_type is MovementType.IN:
        expected = quantity
    elif movement_type is MovementType.OUT:
        expected = -quantity
    elif movement_type is MovementType.TRANSFER:
        expected = 0
    else:
        if delta is None or abs(delta) != quantity:
            raise ValidationError(
                "delta",
                f"adjustment delta must be +/-{quantity}, got {delta!r}",
            )
        return delta

    if delta is not None and delta != expected:
        raise ValidationError(
            "delta",
            f"{movement_type.value} movement of {quantity} has delta {expected}, got {delta}",
        )
    return expected


class StockMovementJournal:
    """
    Append and query stock movements.

    Non-goals:
        - Does NOT change item quantities (``InventoryLedger`` does).
        - Does NOT open transactions; appends join the caller's.
    """

    def __init__(self, repository: Repository, clock: Clock | None = None):
        self._repository = repository
        self._clock = clock or SystemClock()

    def append(
        self,
        inventory_id: str,
        movement_type: MovementType | str,
        quantity: int,
        reason: str,
        reference: str,
        actor: str,
        delta: int | None = None,
    ) -> StockMovement:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidMagnitudeError(quantity)
        movement_type = MovementType(movement_type)
        signed = _expected_delta(movement_type, quantity, delta)

        movement = StockMovement(
            id=str(uuid4()),
            sequence=self._repository.next_sequence(MOVEMENT_SEQUENCE),
            inventory_id=inventory_id,
            movement_type=movement_type,
            quantity=quantity,
            delta=signed,
            reason=reason,
            reference=reference,
            recorded_at=self._clock.now(),
            actor=actor,
        )
        self._repository.create(Collection.STOCK_MOVEMENTS, movement)

        logger.info(
            "stock_movement_recorded",
            extra={
                "movement_id": movement.id,
                "inventory_id": inventory_id,
                "movement_type": movement_type.value,
                "quantity": quantity,
                "delta": signed,
                "reference": reference,
            },
        )
        return movement

    def history(
        self,
        inventory_id: str,
        page: int = 1,
        page_size: int = 20,
    ) -> Page[StockMovement]:
        """Movements of one item, newest first."""
        skip, limit = page_window(page, page_size)
        movement_filter = MovementFilter(inventory_id=inventory_id)
        items = self._repository.find(
            Collection.STOCK_MOVEMENTS,
            movement_filter,
            sort=SortSpec("sequence", descending=True),
            skip=skip,
            limit=limit,
        )
        total = self._repository.count(Collection.STOCK_MOVEMENTS, movement_filter)
        return Page.of(items, total, page, page_size)

    def movements_for_reference(
        self,
        reference: str,
        inventory_id: str | None = None,
    ) -> list[StockMovement]:
        """Movements tagged with ``reference``, oldest first."""
        return self._repository.find(
            Collection.STOCK_MOVEMENTS,
            MovementFilter(inventory_id=inventory_id, reference=reference),
            sort=SortSpec("sequence"),
        )

    def net_quantity(self, inventory_id: str) -> int:
        """Sum of every movement delta for an item."""
        movements = self._repository.find(
            Collection.STOCK_MOVEMENTS,
            MovementFilter(inventory_id=inventory_id),
        )
        return sum(m.delta for m in movements)
