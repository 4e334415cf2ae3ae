"""
Procurement Module Service (``erp_modules.procurement.service``).

Responsibility
--------------
``PurchaseReceivingEngine`` owns the purchase-order state machine and the
receipt of goods against it.  Received quantities enter stock through
``InventoryLedger.receive_many``; this service never writes item
quantities itself.

Architecture
------------
Layer: **Modules** -- orchestration over the kernel.

1. ``PURCHASE_WORKFLOW.require`` authorises every status write.
2. ``approve`` evaluates the ``within_credit_limit`` guard against the
   supplier's credit limit.
3. ``receive`` validates every receipt line, clamps each one to its
   outstanding quantity, books all of them in one ledger call tagged with
   the purchase id, then evaluates ``all_lines_received``.

Invariants
----------
- ``0 <= received_quantity <= quantity`` on every line; excess is reported,
  never booked.
- ``status == received`` iff every line is fully received.
- A receipt either updates every accepted line and its stock, or nothing.
- Per-purchase serialisation: mutations hold ``purchase:<id>`` before the
  ledger takes item keys.

Failure Modes
-------------
- SupplierNotFoundError / SupplierInactiveError / ProductNotFoundError /
  ValidationError on create.
- PurchaseNotFoundError for unknown ids.
- CreditLimitExceededError on approve.
- InvalidStateTransitionError for actions illegal in the current status.
- ValidationError / ItemNotFoundError on receive (nothing booked).

Usage::

    engine = PurchaseReceivingEngine(repository, ledger, clock=clock)
    po = engine.create_purchase(
        "SUP-1", [PurchaseLineRequest("P-100", 10, Decimal("4.25"))], actor="buyer"
    )
    engine.submit(po.id, "buyer")
    engine.approve(po.id, approved_by="manager")
    result = engine.receive(po.id, [ReceiptLine("P-100", 10)], actor="dock")
"""

from __future__ import annotations

from collections import Counter, defaultdict
from collections.abc import Sequence
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from erp_engines.pricing import PricingCalculator, PricingLine, PricingResult
from erp_kernel.db.repository import Collection, Repository
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.inventory import StockLine
from erp_kernel.domain.parties import Supplier
from erp_kernel.domain.query import Page, SortSpec, page_window
from erp_kernel.exceptions import (
    CreditLimitExceededError,
    InvalidStateTransitionError,
    ItemNotFoundError,
    ProductNotFoundError,
    PurchaseNotFoundError,
    SupplierInactiveError,
    SupplierNotFoundError,
    ValidationError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_kernel.services.inventory_ledger import InventoryLedger
from erp_kernel.services.lock_manager import KeyedLockManager, purchase_key
from erp_kernel.services.notification import (
    LoggingNotifier,
    Notification,
    NotificationPriority,
    NotificationType,
    Notifier,
    safe_send,
)
from erp_kernel.services.sequence_service import DocumentNumberAllocator
from erp_modules._workflow import Transition
from erp_modules.procurement.config import ProcurementConfig
from erp_modules.procurement.models import (
    RECEIVABLE_STATUSES,
    PurchaseFilter,
    PurchaseLine,
    PurchaseLineRequest,
    PurchaseOrder,
    PurchaseOverview,
    PurchaseStatus,
    ReceiptLine,
    ReceiptLineResult,
    ReceiptResult,
    SupplierSpend,
)
from erp_modules.procurement.workflows import DELETABLE_STATES, PURCHASE_WORKFLOW
from erp_modules.sales.models import PaymentStatus

logger = get_logger("modules.procurement.service")


class PurchaseReceivingEngine:
    """
    Purchase order lifecycle and goods receipt.

    Contract:
        ``receive`` accepts ``ReceiptLine(product_id, quantity)`` values.
        Each product appears at most once per purchase and at most once
        per receipt.

    Non-goals:
        - Partial cancellation, returns to supplier, and stock reversal on
          cancel of a partly received purchase.
    """

    def __init__(
        self,
        repository: Repository,
        ledger: InventoryLedger,
        clock: Clock | None = None,
        locks: KeyedLockManager | None = None,
        notifier: Notifier | None = None,
        config: ProcurementConfig | None = None,
    ):
        self._repository = repository
        self._ledger = ledger
        self._clock = clock or SystemClock()
        self._locks = locks or KeyedLockManager()
        self._notifier = notifier or LoggingNotifier()
        self._config = config or ProcurementConfig.with_defaults()
        self._pricing = PricingCalculator(self._config.pricing)
        self._numbers = DocumentNumberAllocator(
            repository, self._config.number_prefix, self._config.number_width
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _load(self, purchase_id: str) -> PurchaseOrder:
        purchase = self._repository.find_by_id(Collection.PURCHASES, purchase_id)
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)
        return purchase

    def _supplier(self, supplier_id: str) -> Supplier:
        supplier = self._repository.find_by_id(Collection.SUPPLIERS, supplier_id)
        if supplier is None:
            raise SupplierNotFoundError(supplier_id)
        return supplier

    def _build_lines(self, requests: Sequence[PurchaseLineRequest]) -> tuple[PurchaseLine, ...]:
        if not requests:
            raise ValidationError("lines", "Purchase must contain at least one item")
        seen: set[str] = set()
        lines = []
        for number, request in enumerate(requests, start=1):
            quantity = request.quantity
            if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                raise ValidationError("quantity", f"must be a positive integer, got {quantity!r}")
            unit_cost = Decimal(request.unit_cost)
            if unit_cost < Decimal("0"):
                raise ValidationError("unit_cost", f"cannot be negative, got {unit_cost}")
            if request.product_id in seen:
                raise ValidationError(
                    "lines", f"product {request.product_id} appears more than once"
                )
            seen.add(request.product_id)

            product = self._repository.find_by_id(Collection.PRODUCTS, request.product_id)
            if product is None:
                raise ProductNotFoundError(request.product_id)

            lines.append(
                PurchaseLine(
                    line_number=number,
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_cost=unit_cost,
                    line_total=PricingLine(quantity, unit_cost).line_total,
                    inventory_id=request.inventory_id,
                )
            )
        return tuple(lines)

    def _price(self, lines: Sequence[PurchaseLine], discount: Decimal) -> PricingResult:
        return self._pricing.calculate(
            [PricingLine(line.quantity, line.unit_cost) for line in lines],
            discount=Decimal(discount),
        )

    def _target_item(self, line: PurchaseLine) -> str:
        """Inventory item a purchase line receives into."""
        if line.inventory_id is not None:
            item = self._ledger.get_item(line.inventory_id)
            if item.product_id != line.product_id:
                raise ValidationError(
                    "inventory_id",
                    f"item {item.id} holds {item.product_id}, not {line.product_id}",
                )
            return item.id
        candidates = self._ledger.find_by_product(line.product_id)
        if not candidates:
            raise ItemNotFoundError(line.product_id)
        return candidates[0].id

    def _write_status(
        self,
        purchase: PurchaseOrder,
        transition: Transition,
        actor: str,
        **fields,
    ) -> PurchaseOrder:
        updated = self._repository.update(
            Collection.PURCHASES,
            purchase.id,
            {
                "status": PurchaseStatus(transition.to_state),
                "updated_at": self._clock.now(),
                **fields,
            },
        )
        logger.info(
            "purchase_status_changed",
            extra={
                "purchase_id": purchase.id,
                "purchase_number": purchase.purchase_number,
                "from_status": purchase.status.value,
                "to_status": transition.to_state,
                "action": transition.action,
                "actor": actor,
            },
        )
        return updated

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def create_purchase(
        self,
        supplier_id: str,
        lines: Sequence[PurchaseLineRequest],
        actor: str,
        discount: Decimal = Decimal("0"),
        notes: str | None = None,
        expected_delivery: date | None = None,
    ) -> PurchaseOrder:
        """Create a draft purchase; payment terms are copied from the supplier."""
        supplier = self._supplier(supplier_id)
        if not supplier.is_active:
            raise SupplierInactiveError(supplier.id, supplier.status.value)

        purchase_lines = self._build_lines(lines)
        totals = self._price(purchase_lines, discount)
        now = self._clock.now()

        with self._repository.transaction():
            purchase = PurchaseOrder(
                id=str(uuid4()),
                purchase_number=self._numbers.allocate(now),
                supplier_id=supplier.id,
                supplier_name=supplier.name,
                lines=purchase_lines,
                subtotal=totals.subtotal,
                tax=totals.tax,
                shipping=totals.shipping,
                discount=totals.discount,
                total=totals.total,
                status=PurchaseStatus(PURCHASE_WORKFLOW.initial_state),
                payment_status=PaymentStatus.PENDING,
                payment_terms=supplier.payment_terms,
                notes=notes,
                expected_delivery=expected_delivery,
                created_at=now,
                updated_at=now,
                created_by=actor,
            )
            self._repository.create(Collection.PURCHASES, purchase)

        logger.info(
            "purchase_created",
            extra={
                "purchase_id": purchase.id,
                "purchase_number": purchase.purchase_number,
                "supplier_id": supplier.id,
                "line_count": len(purchase_lines),
                "total": purchase.total,
                "actor": actor,
            },
        )
        return purchase

    def submit(self, purchase_id: str, actor: str) -> PurchaseOrder:
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            transition = PURCHASE_WORKFLOW.require(purchase.id, purchase.status, "submit")
            return self._write_status(purchase, transition, actor)

    def update_purchase(
        self,
        purchase_id: str,
        actor: str,
        lines: Sequence[PurchaseLineRequest] | None = None,
        discount: Decimal | None = None,
        notes: str | None = None,
        expected_delivery: date | None = None,
    ) -> PurchaseOrder:
        """Edit a draft or pending purchase; totals are recomputed."""
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            PURCHASE_WORKFLOW.require(purchase.id, purchase.status, "update")

            purchase_lines = self._build_lines(lines) if lines is not None else purchase.lines
            new_discount = purchase.discount if discount is None else Decimal(discount)
            totals = self._price(purchase_lines, new_discount)
            patch = {
                "lines": purchase_lines,
                "subtotal": totals.subtotal,
                "tax": totals.tax,
                "shipping": totals.shipping,
                "discount": totals.discount,
                "total": totals.total,
                "updated_at": self._clock.now(),
            }
            if notes is not None:
                patch["notes"] = notes
            if expected_delivery is not None:
                patch["expected_delivery"] = expected_delivery
            updated = self._repository.update(Collection.PURCHASES, purchase.id, patch)

        logger.info(
            "purchase_updated",
            extra={"purchase_id": purchase.id, "total": updated.total, "actor": actor},
        )
        return updated

    def delete_purchase(self, purchase_id: str, actor: str) -> None:
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            if purchase.status.value not in DELETABLE_STATES:
                raise InvalidStateTransitionError(
                    "purchase", purchase.id, purchase.status.value, "delete"
                )
            self._repository.delete(Collection.PURCHASES, purchase.id)

        logger.info(
            "purchase_deleted",
            extra={"purchase_id": purchase.id, "actor": actor},
        )

    def approve(
        self,
        purchase_id: str,
        approved_by: str,
        approved: bool = True,
        notes: str | None = None,
    ) -> PurchaseOrder:
        """
        Approve (or, with ``approved=False``, reject) a pending purchase.

        Raises:
            CreditLimitExceededError: total exceeds the supplier's limit;
                the purchase stays pending.
        """
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            fields = {} if notes is None else {"notes": notes}

            if not approved:
                transition = PURCHASE_WORKFLOW.require(purchase.id, purchase.status, "reject")
                return self._write_status(purchase, transition, approved_by, **fields)

            transition = PURCHASE_WORKFLOW.require(purchase.id, purchase.status, "approve")
            supplier = self._supplier(purchase.supplier_id)
            if purchase.total > supplier.credit_limit:
                logger.warning(
                    "purchase_credit_limit_exceeded",
                    extra={
                        "purchase_id": purchase.id,
                        "total": purchase.total,
                        "credit_limit": supplier.credit_limit,
                    },
                )
                raise CreditLimitExceededError(purchase.id, purchase.total, supplier.credit_limit)

            updated = self._write_status(
                purchase,
                transition,
                approved_by,
                approved_by=approved_by,
                approved_at=self._clock.now(),
                **fields,
            )

        safe_send(
            self._notifier,
            Notification(
                type=NotificationType.PURCHASE_APPROVED,
                title="Purchase Order Approved",
                message=f"Purchase order {updated.purchase_number} has been approved",
                data={"purchase_id": updated.id, "approved_by": approved_by},
                priority=NotificationPriority.MEDIUM,
                recipient_id=updated.created_by,
            ),
        )
        return updated

    def mark_ordered(self, purchase_id: str, actor: str) -> PurchaseOrder:
        """approved -> ordered (sent to the supplier)."""
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            transition = PURCHASE_WORKFLOW.require(purchase.id, purchase.status, "mark_ordered")
            return self._write_status(purchase, transition, actor)

    def receive(
        self,
        purchase_id: str,
        lines: Sequence[ReceiptLine],
        actor: str,
        notes: str | None = None,
    ) -> ReceiptResult:
        """
        Book arriving goods against a purchase.

        Every receipt line is checked before anything is written.  Each
        accepted quantity is ``min(requested, outstanding)``; the rest is
        reported as clamped.  When every line is complete the purchase moves
        to received and ``actual_delivery`` is stamped.
        """
        if not lines:
            raise ValidationError("lines", "Receipt must contain at least one line")

        with LogContext.bind(actor_id=actor, reference=purchase_id):
            with self._locks.hold([purchase_key(purchase_id)]):
                purchase = self._load(purchase_id)
                if "receive" not in PURCHASE_WORKFLOW.allowed_actions(purchase.status):
                    raise InvalidStateTransitionError(
                        "purchase", purchase.id, purchase.status.value, "receive"
                    )

                by_product: dict[str, ReceiptLine] = {}
                for receipt in lines:
                    quantity = receipt.quantity
                    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
                        raise ValidationError(
                            "quantity", f"must be a positive integer, got {quantity!r}"
                        )
                    if purchase.line_for(receipt.product_id) is None:
                        raise ValidationError(
                            "product_id",
                            f"{receipt.product_id} is not on purchase {purchase.purchase_number}",
                        )
                    if receipt.product_id in by_product:
                        raise ValidationError(
                            "lines", f"product {receipt.product_id} appears more than once"
                        )
                    by_product[receipt.product_id] = receipt

                new_lines = []
                results = []
                stock_lines = []
                for line in purchase.lines:
                    receipt = by_product.get(line.product_id)
                    if receipt is None:
                        new_lines.append(line)
                        continue
                    accepted = min(receipt.quantity, line.outstanding)
                    results.append(
                        ReceiptLineResult(line.product_id, receipt.quantity, accepted)
                    )
                    if accepted == 0:
                        new_lines.append(line)
                        continue
                    inventory_id = self._target_item(line)
                    stock_lines.append(StockLine(inventory_id, accepted, line.product_id))
                    new_lines.append(
                        replace(
                            line,
                            received_quantity=line.received_quantity + accepted,
                            inventory_id=inventory_id,
                        )
                    )

                complete = all(line.is_complete for line in new_lines)
                target = PurchaseStatus.RECEIVED if complete else purchase.status
                transition = PURCHASE_WORKFLOW.require(
                    purchase.id, purchase.status, "receive", target
                )

                with self._locks.unit_of_work(), self._repository.transaction():
                    movements = ()
                    if stock_lines:
                        receipt_result = self._ledger.receive_many(
                            stock_lines,
                            purchase.id,
                            actor,
                            reason=f"Received on {purchase.purchase_number}",
                        )
                        movements = receipt_result.movements

                    now = self._clock.now()
                    fields = {"lines": tuple(new_lines)}
                    if complete:
                        fields["actual_delivery"] = now
                    if notes is not None:
                        fields["notes"] = notes
                    updated = self._write_status(purchase, transition, actor, **fields)

            result = ReceiptResult(updated, tuple(results), tuple(movements))
            if result.total_clamped:
                logger.warning(
                    "purchase_receipt_clamped",
                    extra={
                        "purchase_id": purchase.id,
                        "clamped": {r.product_id: r.clamped for r in results if r.clamped},
                    },
                )
            logger.info(
                "purchase_received",
                extra={
                    "purchase_id": purchase.id,
                    "accepted": {r.product_id: r.accepted for r in results},
                    "complete": complete,
                },
            )
        return result

    def cancel(self, purchase_id: str, actor: str) -> PurchaseOrder:
        """Cancel before receipt completes; stock already received stays."""
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            transition = PURCHASE_WORKFLOW.require(purchase.id, purchase.status, "cancel")
            return self._write_status(purchase, transition, actor)

    def set_payment_status(
        self,
        purchase_id: str,
        payment_status: PaymentStatus | str,
        actor: str,
    ) -> PurchaseOrder:
        payment_status = PaymentStatus(payment_status)
        with self._locks.hold([purchase_key(purchase_id)]), self._repository.transaction():
            purchase = self._load(purchase_id)
            updated = self._repository.update(
                Collection.PURCHASES,
                purchase.id,
                {"payment_status": payment_status, "updated_at": self._clock.now()},
            )
        logger.info(
            "purchase_payment_status_changed",
            extra={
                "purchase_id": purchase.id,
                "to_payment_status": payment_status.value,
                "actor": actor,
            },
        )
        return updated

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_purchase(self, purchase_id: str) -> PurchaseOrder:
        return self._load(purchase_id)

    def list_purchases(
        self,
        filter: PurchaseFilter | None = None,
        page: int = 1,
        page_size: int = 50,
        sort: SortSpec | None = None,
    ) -> Page[PurchaseOrder]:
        skip, limit = page_window(page, page_size)
        sort = sort or SortSpec("created_at", descending=True)
        items = self._repository.find(
            Collection.PURCHASES, filter, sort=sort, skip=skip, limit=limit
        )
        total = self._repository.count(Collection.PURCHASES, filter)
        return Page.of(items, total, page, page_size)

    def overview(
        self,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        top: int = 5,
    ) -> PurchaseOverview:
        """Spend, status mix, approvals waiting and late deliveries."""
        purchases = self._repository.find(
            Collection.PURCHASES,
            PurchaseFilter(created_from=created_from, created_to=created_to),
        )
        spend = sum((purchase.total for purchase in purchases), Decimal("0"))
        average = (
            (spend / len(purchases)).quantize(Decimal("0.01")) if purchases else Decimal("0")
        )
        today = self._clock.today()

        per_supplier: dict[str, list[PurchaseOrder]] = defaultdict(list)
        for purchase in purchases:
            per_supplier[purchase.supplier_id].append(purchase)
        suppliers = sorted(
            (
                SupplierSpend(
                    supplier_id=supplier_id,
                    supplier_name=placed[0].supplier_name,
                    total_spend=sum((p.total for p in placed), Decimal("0")),
                    purchase_count=len(placed),
                )
                for supplier_id, placed in per_supplier.items()
            ),
            key=lambda s: (-s.total_spend, s.supplier_id),
        )

        return PurchaseOverview(
            total_purchases=len(purchases),
            total_spend=spend,
            average_purchase_value=average,
            by_status=dict(Counter(p.status.value for p in purchases)),
            by_payment_status=dict(Counter(p.payment_status.value for p in purchases)),
            pending_approvals=sum(1 for p in purchases if p.status is PurchaseStatus.PENDING),
            overdue_deliveries=sum(
                1
                for p in purchases
                if p.status in RECEIVABLE_STATUSES
                and p.expected_delivery is not None
                and p.expected_delivery < today
            ),
            top_suppliers=tuple(suppliers[:top]),
        )
