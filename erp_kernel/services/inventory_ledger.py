"""
InventoryLedger -- sole writer of on-hand quantity.

Responsibility:
    Owns the current quantity of every stock item and its audit trail.
    Every quantity change writes the item and one journal movement in the
    same repository transaction, inside the per-item critical section.

Architecture position:
    Kernel > Services.  Called by ``OrderFulfillmentEngine`` (reserve /
    release) and ``PurchaseReceivingEngine`` (receive_many), and directly by
    stock administration (create, count adjustments, relocation).

Invariants enforced:
    - Reconciliation: an item's quantity equals the sum of its journal
      deltas.  ``reconcile`` checks it.
    - Non-negativity: no operation leaves quantity below zero; the attempt
      raises InsufficientStockError or NegativeQuantityError and changes
      nothing.
    - All-or-nothing reservation: availability is checked for every line
      while all item locks are held; any shortfall aborts the whole call.
    - Release is idempotent per reference: a reference that already has
      movements is not credited again.
    - Status is derived on read (``derive_status``), never stored.

Failure modes:
    - ItemNotFoundError: a line or id references no stock item.
    - ProductNotFoundError: ``create_item`` for an unknown product.
    - InsufficientStockError: carries every under-stocked line.
    - NegativeQuantityError / InvalidMagnitudeError / ValidationError.
    - ConcurrencyConflictError: item locks unavailable (nothing applied).

Audit relevance:
    Movements carry actor, reason and reference; every mutation logs a
    structured event.  Stock alerts go out only after the transaction
    commits and never fail the mutation.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import uuid4

from erp_kernel.db.repository import Collection, Repository
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.inventory import (
    InventoryFilter,
    InventoryItem,
    InventoryStatus,
    MovementType,
    StockLine,
    StockMovement,
    StockShortfall,
)
from erp_kernel.domain.query import Page, SortSpec, page_window
from erp_kernel.exceptions import (
    ErpKernelError,
    InsufficientStockError,
    InvalidMagnitudeError,
    ItemNotFoundError,
    NegativeQuantityError,
    ProductNotFoundError,
    ValidationError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.services.lock_manager import KeyedLockManager, inventory_key
from erp_kernel.services.notification import (
    LoggingNotifier,
    Notification,
    NotificationPriority,
    NotificationType,
    Notifier,
    safe_send,
)
from erp_kernel.services.stock_journal import StockMovementJournal

logger = get_logger("services.inventory_ledger")

INITIAL_REFERENCE = "INITIAL"
ADJUSTMENT_REFERENCE = "ADJUSTMENT"

# Attributes ``update_item`` may change.  Quantity moves only through the
# movement operations; location only through ``relocate``.
UPDATABLE_FIELDS = frozenset({
    "product_name",
    "category",
    "unit",
    "minimum_stock",
    "maximum_stock",
    "unit_cost",
    "supplier_id",
    "expiration_date",
    "batch_number",
})

_ALERT_STATUSES = (InventoryStatus.LOW_STOCK, InventoryStatus.OUT_OF_STOCK)


@dataclass(frozen=True)
class ReservationResult:
    reference: str
    items: tuple[InventoryItem, ...]
    movements: tuple[StockMovement, ...]


@dataclass(frozen=True)
class ReceiveResult:
    reference: str
    items: tuple[InventoryItem, ...]
    movements: tuple[StockMovement, ...]


@dataclass(frozen=True)
class ReleaseResult:
    """``applied`` is False when the reference had already been released."""

    reference: str
    applied: bool
    items: tuple[InventoryItem, ...] = ()
    movements: tuple[StockMovement, ...] = ()


@dataclass(frozen=True)
class BulkAdjustment:
    item_id: str
    quantity: int
    reason: str = "Bulk stock count"


@dataclass(frozen=True)
class BulkAdjustOutcome:
    item_id: str
    success: bool
    item: InventoryItem | None = None
    error_code: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class BulkAdjustResult:
    outcomes: tuple[BulkAdjustOutcome, ...]

    @property
    def succeeded(self) -> tuple[BulkAdjustOutcome, ...]:
        return tuple(o for o in self.outcomes if o.success)

    @property
    def failed(self) -> tuple[BulkAdjustOutcome, ...]:
        return tuple(o for o in self.outcomes if not o.success)


@dataclass(frozen=True)
class ReconciliationResult:
    item_id: str
    quantity: int
    journal_total: int

    @property
    def balanced(self) -> bool:
        return self.quantity == self.journal_total

    @property
    def discrepancy(self) -> int:
        return self.quantity - self.journal_total


@dataclass(frozen=True)
class StockGroup:
    item_count: int
    value: Decimal


@dataclass(frozen=True)
class StockSummary:
    """Stock levels across every item; status counts include zero entries."""

    total_items: int
    total_value: Decimal
    by_status: dict[str, int]
    by_category: dict[str, StockGroup]
    by_location: dict[str, StockGroup]


def _group(items: Iterable[InventoryItem], key) -> dict[str, StockGroup]:
    counts: dict[str, int] = {}
    values: dict[str, Decimal] = {}
    for item in items:
        name = key(item)
        counts[name] = counts.get(name, 0) + 1
        values[name] = values.get(name, Decimal("0")) + item.stock_value
    return {name: StockGroup(counts[name], values[name]) for name in sorted(counts)}


def _check_magnitude(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidMagnitudeError(quantity)


def _aggregate(lines: Sequence[StockLine]) -> dict[str, int]:
    """Validate line magnitudes and sum requested quantity per item."""
    if not lines:
        raise ValidationError("lines", "at least one line is required")
    totals: dict[str, int] = {}
    for line in lines:
        _check_magnitude(line.quantity)
        totals[line.inventory_id] = totals.get(line.inventory_id, 0) + line.quantity
    return totals


class InventoryLedger:
    """
    Stock quantities and their movement journal.

    Contract:
        Every mutating operation runs ``locks.hold(item keys)`` around
        ``repository.transaction()``; validation happens inside both, so a
        concurrent writer can never invalidate a check before the write.
        Callers that nest these operations in their own transaction wrap it
        in ``locks.unit_of_work()`` so the item locks outlive the commit.

    Non-goals:
        - Does NOT know about orders or purchases; callers pass references.
        - Does NOT deliver notifications; it hands them to a ``Notifier``.
    """

    def __init__(
        self,
        repository: Repository,
        journal: StockMovementJournal | None = None,
        locks: KeyedLockManager | None = None,
        clock: Clock | None = None,
        notifier: Notifier | None = None,
        default_minimum_stock: int = 10,
        default_maximum_stock: int = 1000,
    ):
        self._repository = repository
        self._clock = clock or SystemClock()
        self._journal = journal or StockMovementJournal(repository, self._clock)
        self._locks = locks or KeyedLockManager()
        self._notifier = notifier or LoggingNotifier()
        self._default_minimum_stock = default_minimum_stock
        self._default_maximum_stock = default_maximum_stock

    @property
    def journal(self) -> StockMovementJournal:
        return self._journal

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load(self, item_id: str) -> InventoryItem:
        item = self._repository.find_by_id(Collection.INVENTORY, item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        return item

    def _move(
        self,
        item: InventoryItem,
        new_quantity: int,
        movement_type: MovementType,
        magnitude: int,
        reason: str,
        reference: str,
        actor: str,
        delta: int | None = None,
    ) -> tuple[InventoryItem, StockMovement]:
        updated = self._repository.update(
            Collection.INVENTORY,
            item.id,
            {"quantity": new_quantity, "last_updated": self._clock.now()},
        )
        movement = self._journal.append(
            item.id, movement_type, magnitude, reason, reference, actor, delta=delta
        )
        return updated, movement

    def _alert(self, before: InventoryItem | None, after: InventoryItem) -> None:
        """Send a stock alert when an item enters low or out of stock."""
        today = self._clock.today()
        status = after.status(today)
        if status not in _ALERT_STATUSES:
            return
        if before is not None and before.status(today) is status:
            return

        if status is InventoryStatus.OUT_OF_STOCK:
            notification = Notification(
                type=NotificationType.OUT_OF_STOCK_ALERT,
                title="Out of Stock Alert",
                message=f"{after.product_name} is out of stock at {after.location}",
                priority=NotificationPriority.HIGH,
                data=self._alert_data(after, status),
            )
        else:
            notification = Notification(
                type=NotificationType.LOW_STOCK_ALERT,
                title="Low Stock Alert",
                message=(
                    f"{after.product_name} is running low: {after.quantity} {after.unit} "
                    f"left (minimum {after.minimum_stock})"
                ),
                priority=NotificationPriority.MEDIUM,
                data=self._alert_data(after, status),
            )
        safe_send(self._notifier, notification)

    @staticmethod
    def _alert_data(item: InventoryItem, status: InventoryStatus) -> dict:
        return {
            "inventory_id": item.id,
            "product_id": item.product_id,
            "quantity": item.quantity,
            "minimum_stock": item.minimum_stock,
            "location": item.location,
            "status": status.value,
        }

    def _alert_all(self, before: dict[str, InventoryItem], after: dict[str, InventoryItem]) -> None:
        for item_id, item in after.items():
            self._alert(before.get(item_id), item)

    # -------------------------------------------------------------------------
    # Quantity operations
    # -------------------------------------------------------------------------

    def adjust_to(
        self,
        item_id: str,
        new_quantity: int,
        reason: str,
        actor: str,
        reference: str = ADJUSTMENT_REFERENCE,
    ) -> InventoryItem:
        """
        Set quantity from a physical count.

        Writes one ``adjustment`` movement of magnitude |delta|; no movement
        when the count matches.
        """
        if isinstance(new_quantity, bool) or not isinstance(new_quantity, int):
            raise ValidationError("quantity", f"must be an integer, got {new_quantity!r}")
        if new_quantity < 0:
            raise NegativeQuantityError(item_id, new_quantity)

        with self._locks.hold([inventory_key(item_id)]), self._repository.transaction():
            before = self._load(item_id)
            delta = new_quantity - before.quantity
            if delta == 0:
                logger.info(
                    "stock_adjustment_noop",
                    extra={"inventory_id": item_id, "quantity": new_quantity},
                )
                return before
            after, movement = self._move(
                before,
                new_quantity,
                MovementType.ADJUSTMENT,
                abs(delta),
                reason,
                reference,
                actor,
                delta=delta,
            )

        logger.info(
            "stock_adjusted",
            extra={
                "inventory_id": item_id,
                "previous_quantity": before.quantity,
                "new_quantity": new_quantity,
                "delta": delta,
                "movement_id": movement.id,
            },
        )
        self._alert(before, after)
        return after

    def receive(
        self,
        item_id: str,
        quantity: int,
        reference: str,
        actor: str,
        reason: str = "Stock received",
    ) -> InventoryItem:
        """Increase on-hand quantity with one ``in`` movement."""
        _check_magnitude(quantity)
        with self._locks.hold([inventory_key(item_id)]), self._repository.transaction():
            before = self._load(item_id)
            after, movement = self._move(
                before,
                before.quantity + quantity,
                MovementType.IN,
                quantity,
                reason,
                reference,
                actor,
            )

        logger.info(
            "stock_received",
            extra={
                "inventory_id": item_id,
                "quantity": quantity,
                "new_quantity": after.quantity,
                "reference": reference,
                "movement_id": movement.id,
            },
        )
        return after

    def receive_many(
        self,
        lines: Sequence[StockLine],
        reference: str,
        actor: str,
        reason: str = "Purchase receipt",
    ) -> ReceiveResult:
        """
        Receive several lines atomically.

        Every item is loaded before anything is written: an unknown item
        fails the whole call.  One ``in`` movement per line.
        """
        requested = _aggregate(lines)
        keys = [inventory_key(item_id) for item_id in requested]

        with LogContext.bind(actor_id=actor, reference=reference):
            with self._locks.hold(keys), self._repository.transaction():
                before = {item_id: self._load(item_id) for item_id in requested}
                current = dict(before)
                movements = []
                for line in lines:
                    item = current[line.inventory_id]
                    current[item.id], movement = self._move(
                        item,
                        item.quantity + line.quantity,
                        MovementType.IN,
                        line.quantity,
                        reason,
                        reference,
                        actor,
                    )
                    movements.append(movement)

            logger.info(
                "stock_received_many",
                extra={"line_count": len(lines), "items": requested},
            )

        return ReceiveResult(reference, tuple(current.values()), tuple(movements))

    def reserve_many(
        self,
        lines: Sequence[StockLine],
        reference: str,
        actor: str,
    ) -> ReservationResult:
        """
        Take stock for every line, or for none.

        Lines for the same item are summed before the availability check.

        Raises:
            InsufficientStockError: with one shortfall per under-stocked
                item; no quantity has changed.
        """
        requested = _aggregate(lines)
        keys = [inventory_key(item_id) for item_id in requested]

        with LogContext.bind(actor_id=actor, reference=reference):
            with self._locks.hold(keys), self._repository.transaction():
                before = {item_id: self._load(item_id) for item_id in requested}

                shortfalls = [
                    StockShortfall(
                        inventory_id=item_id,
                        product_id=before[item_id].product_id,
                        requested=quantity,
                        available=before[item_id].quantity,
                    )
                    for item_id, quantity in requested.items()
                    if before[item_id].quantity < quantity
                ]
                if shortfalls:
                    logger.warning(
                        "stock_reservation_rejected",
                        extra={
                            "shortfalls": [
                                {
                                    "inventory_id": s.inventory_id,
                                    "requested": s.requested,
                                    "available": s.available,
                                }
                                for s in shortfalls
                            ],
                        },
                    )
                    raise InsufficientStockError(reference, shortfalls)

                current = dict(before)
                movements = []
                for line in lines:
                    item = current[line.inventory_id]
                    current[item.id], movement = self._move(
                        item,
                        item.quantity - line.quantity,
                        MovementType.OUT,
                        line.quantity,
                        f"Reserved for {reference}",
                        reference,
                        actor,
                    )
                    movements.append(movement)

            logger.info(
                "stock_reserved",
                extra={"line_count": len(lines), "items": requested},
            )

        self._alert_all(before, current)
        return ReservationResult(reference, tuple(current.values()), tuple(movements))

    def release(
        self,
        lines: Sequence[StockLine],
        reference: str,
        actor: str,
    ) -> ReleaseResult:
        """
        Return reserved stock.

        Idempotent per ``reference``: when movements tagged with it already
        exist, nothing is credited and ``applied`` is False.
        """
        requested = _aggregate(lines)
        keys = [inventory_key(item_id) for item_id in requested]

        with LogContext.bind(actor_id=actor, reference=reference):
            with self._locks.hold(keys), self._repository.transaction():
                if self._journal.movements_for_reference(reference):
                    logger.info("stock_release_skipped", extra={"reason": "already_released"})
                    return ReleaseResult(reference, applied=False)

                current = {item_id: self._load(item_id) for item_id in requested}
                movements = []
                for line in lines:
                    item = current[line.inventory_id]
                    current[item.id], movement = self._move(
                        item,
                        item.quantity + line.quantity,
                        MovementType.IN,
                        line.quantity,
                        f"Released from {reference}",
                        reference,
                        actor,
                    )
                    movements.append(movement)

            logger.info(
                "stock_released",
                extra={"line_count": len(lines), "items": requested},
            )

        return ReleaseResult(
            reference,
            applied=True,
            items=tuple(current.values()),
            movements=tuple(movements),
        )

    def bulk_adjust(
        self,
        adjustments: Iterable[BulkAdjustment],
        actor: str,
    ) -> BulkAdjustResult:
        """
        Apply several counts independently.

        Each adjustment commits on its own; a failing one is reported in
        the result and does not stop the rest.
        """
        outcomes = []
        for adjustment in adjustments:
            try:
                item = self.adjust_to(
                    adjustment.item_id, adjustment.quantity, adjustment.reason, actor
                )
            except (ErpKernelError, ValueError) as exc:
                logger.warning(
                    "bulk_adjustment_failed",
                    extra={"inventory_id": adjustment.item_id, "error": str(exc)},
                )
                outcomes.append(
                    BulkAdjustOutcome(
                        item_id=adjustment.item_id,
                        success=False,
                        error_code=getattr(exc, "code", "VALIDATION_ERROR"),
                        error=str(exc),
                    )
                )
            else:
                outcomes.append(BulkAdjustOutcome(adjustment.item_id, True, item=item))

        result = BulkAdjustResult(tuple(outcomes))
        logger.info(
            "bulk_adjustment_completed",
            extra={"succeeded": len(result.succeeded), "failed": len(result.failed)},
        )
        return result

    # -------------------------------------------------------------------------
    # Item administration
    # -------------------------------------------------------------------------

    def create_item(
        self,
        product_id: str,
        quantity: int,
        location: str,
        actor: str,
        *,
        product_name: str | None = None,
        category: str | None = None,
        unit: str | None = None,
        minimum_stock: int | None = None,
        maximum_stock: int | None = None,
        unit_cost: Decimal = Decimal("0"),
        supplier_id: str | None = None,
        expiration_date: date | None = None,
        batch_number: str | None = None,
        item_id: str | None = None,
    ) -> InventoryItem:
        """
        Register a stock item for a known product.

        Opening stock is journalled as an ``in`` movement (reference
        ``INITIAL``) so the item reconciles from its first moment.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise ValidationError("quantity", f"must be an integer, got {quantity!r}")
        if quantity < 0:
            raise NegativeQuantityError(item_id or product_id, quantity)
        if not location:
            raise ValidationError("location", "is required")

        product = self._repository.find_by_id(Collection.PRODUCTS, product_id)
        if product is None:
            raise ProductNotFoundError(product_id)

        now = self._clock.now()
        item = InventoryItem(
            id=item_id or str(uuid4()),
            product_id=product_id,
            product_name=product_name or product.name,
            quantity=quantity,
            location=location,
            category=category if category is not None else product.category,
            unit=unit or product.unit,
            minimum_stock=(
                self._default_minimum_stock if minimum_stock is None else minimum_stock
            ),
            maximum_stock=(
                self._default_maximum_stock if maximum_stock is None else maximum_stock
            ),
            unit_cost=unit_cost,
            supplier_id=supplier_id,
            expiration_date=expiration_date,
            batch_number=batch_number,
            last_updated=now,
            created_at=now,
        )

        with self._locks.hold([inventory_key(item.id)]), self._repository.transaction():
            self._repository.create(Collection.INVENTORY, item)
            if quantity > 0:
                self._journal.append(
                    item.id, MovementType.IN, quantity, "Initial stock", INITIAL_REFERENCE, actor
                )

        logger.info(
            "inventory_item_created",
            extra={
                "inventory_id": item.id,
                "product_id": product_id,
                "quantity": quantity,
                "location": location,
            },
        )
        self._alert(None, item)
        return item

    def update_item(self, item_id: str, actor: str, **changes) -> InventoryItem:
        """Change descriptive attributes and thresholds (not quantity or location)."""
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                ", ".join(sorted(unknown)),
                "cannot be changed with update_item",
            )

        with self._locks.hold([inventory_key(item_id)]), self._repository.transaction():
            before = self._load(item_id)
            try:
                after = self._repository.update(
                    Collection.INVENTORY,
                    item_id,
                    {**changes, "last_updated": self._clock.now()},
                )
            except ValueError as exc:
                raise ValidationError("item", str(exc)) from exc

        logger.info(
            "inventory_item_updated",
            extra={"inventory_id": item_id, "fields": sorted(changes), "actor": actor},
        )
        self._alert(before, after)
        return after

    def relocate(self, item_id: str, location: str, reason: str, actor: str) -> InventoryItem:
        """Move an item to another location with a ``transfer`` movement (delta 0)."""
        if not location:
            raise ValidationError("location", "is required")

        with self._locks.hold([inventory_key(item_id)]), self._repository.transaction():
            before = self._load(item_id)
            if before.location == location:
                raise ValidationError("location", f"item is already at {location}")
            after = self._repository.update(
                Collection.INVENTORY,
                item_id,
                {"location": location, "last_updated": self._clock.now()},
            )
            if before.quantity > 0:
                self._journal.append(
                    item_id,
                    MovementType.TRANSFER,
                    before.quantity,
                    reason,
                    f"{before.location}->{location}",
                    actor,
                )

        logger.info(
            "inventory_item_relocated",
            extra={"inventory_id": item_id, "from": before.location, "to": location},
        )
        return after

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_item(self, item_id: str) -> InventoryItem:
        return self._load(item_id)

    def find_by_product(self, product_id: str) -> list[InventoryItem]:
        return self._repository.find(
            Collection.INVENTORY,
            InventoryFilter(product_id=product_id),
            sort=SortSpec("location"),
        )

    def status_of(self, item: InventoryItem) -> InventoryStatus:
        return item.status(self._clock.today())

    def list_items(
        self,
        filter: InventoryFilter | None = None,
        page: int = 1,
        page_size: int = 20,
        status: InventoryStatus | None = None,
    ) -> Page[InventoryItem]:
        """
        Page through items, sorted by product name.

        ``status`` is derived, so that filter is applied after loading.
        """
        skip, limit = page_window(page, page_size)
        sort = SortSpec("product_name")

        if status is None:
            items = self._repository.find(
                Collection.INVENTORY, filter, sort=sort, skip=skip, limit=limit
            )
            total = self._repository.count(Collection.INVENTORY, filter)
            return Page.of(items, total, page, page_size)

        status = InventoryStatus(status)
        matching = [
            item
            for item in self._repository.find(Collection.INVENTORY, filter, sort=sort)
            if self.status_of(item) is status
        ]
        return Page.of(matching[skip:skip + limit], len(matching), page, page_size)

    def low_stock_items(self) -> list[InventoryItem]:
        """Items currently low or out of stock, lowest quantity first."""
        items = [
            item
            for item in self._repository.find(Collection.INVENTORY, sort=SortSpec("quantity"))
            if self.status_of(item) in _ALERT_STATUSES
        ]
        return items

    def stock_summary(self) -> StockSummary:
        """Counts by derived status plus value grouped by category and location."""
        items = self._repository.find(Collection.INVENTORY)
        today = self._clock.today()
        by_status = {status.value: 0 for status in InventoryStatus}
        for item in items:
            by_status[item.status(today).value] += 1

        summary = StockSummary(
            total_items=len(items),
            total_value=sum((item.stock_value for item in items), Decimal("0")),
            by_status=by_status,
            by_category=_group(items, lambda item: item.category),
            by_location=_group(items, lambda item: item.location),
        )
        logger.debug(
            "stock_summary_computed",
            extra={"total_items": summary.total_items, "by_status": by_status},
        )
        return summary

    def reconcile(self, item_id: str) -> ReconciliationResult:
        """Compare an item's quantity to the sum of its journal deltas."""
        with LogContext.bind(inventory_id=item_id):
            with self._locks.hold([inventory_key(item_id)]):
                item = self._load(item_id)
                journal_total = self._journal.net_quantity(item_id)

            result = ReconciliationResult(item_id, item.quantity, journal_total)
            if not result.balanced:
                logger.error(
                    "inventory_reconciliation_failed",
                    extra={"quantity": item.quantity, "journal_total": journal_total},
                )
        return result
