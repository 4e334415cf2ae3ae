"""
Typed Exception Hierarchy for the Inventory and Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Stock and fulfillment failures must be handled precisely. A caller that
confirms an order needs to know *which* lines were short, not parse a
message string. Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example - WRONG way to handle errors:
    try:
        engine.confirm(order_id, actor="ops")
    except Exception as e:
        if "Insufficient" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way:
    try:
        engine.confirm(order_id, actor="ops")
    except InsufficientStockError as e:
        for shortfall in e.shortfalls:
            report(shortfall.product_id, shortfall.requested, shortfall.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ErpKernelError (base)
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError
    |   +-- OrderNotFoundError
    |   +-- PurchaseNotFoundError
    |   +-- ProductNotFoundError
    |   +-- CustomerNotFoundError
    |   +-- SupplierNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidMagnitudeError
    |   +-- NegativeQuantityError
    |   +-- SupplierInactiveError
    |
    +-- InvalidStateTransitionError
    |
    +-- InsufficientStockError
    |
    +-- CreditLimitExceededError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                        | When Raised
--------------|-----------------------------|-------------------------------------
Not found     | INVENTORY_ITEM_NOT_FOUND    | Line references unknown stock item
              | ORDER_NOT_FOUND             | Unknown sales order id
              | PURCHASE_NOT_FOUND          | Unknown purchase order id
              | PRODUCT_NOT_FOUND           | Unknown product id
              | CUSTOMER_NOT_FOUND          | Unknown customer id
              | SUPPLIER_NOT_FOUND          | Unknown supplier id
--------------|-----------------------------|-------------------------------------
Validation    | VALIDATION_ERROR            | Missing field, empty lines, bad qty
              | INVALID_MAGNITUDE           | Movement magnitude not a positive int
              | NEGATIVE_QUANTITY           | Count would set quantity below zero
              | SUPPLIER_INACTIVE           | Purchase for inactive/blocked supplier
--------------|-----------------------------|-------------------------------------
State         | INVALID_STATE_TRANSITION    | Action illegal for current status
Stock         | INSUFFICIENT_STOCK          | Any reservation line under-stocked
Credit        | CREDIT_LIMIT_EXCEEDED       | Purchase total above supplier limit
Concurrency   | CONFLICT                    | Lock contention after bounded retry
Immutability  | IMMUTABILITY_VIOLATION      | Update/delete of a stock movement

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Catch specific exceptions, fall back to the category:

    try:
        engine.receive(purchase_id, lines, actor="dock")
    except CreditLimitExceededError as e:
        ...
    except NotFoundError as e:
        return {"error": e.code}

2. ConcurrencyConflictError is safe to retry at the caller: the operation
   that raised it applied nothing.

===============================================================================
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from erp_kernel.domain.inventory import StockShortfall


class ErpKernelError(Exception):
    """
    Base exception for all kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "ERP_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ErpKernelError):
    """Base exception for unknown entity references."""

    code: str = "NOT_FOUND"
    entity: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity.capitalize()} not found: {entity_id}")


class ItemNotFoundError(NotFoundError):
    """Inventory item with given id (or for given product) was not found."""

    code: str = "INVENTORY_ITEM_NOT_FOUND"
    entity: str = "inventory item"


class OrderNotFoundError(NotFoundError):
    code: str = "ORDER_NOT_FOUND"
    entity: str = "order"


class PurchaseNotFoundError(NotFoundError):
    code: str = "PURCHASE_NOT_FOUND"
    entity: str = "purchase"


class ProductNotFoundError(NotFoundError):
    code: str = "PRODUCT_NOT_FOUND"
    entity: str = "product"


class CustomerNotFoundError(NotFoundError):
    code: str = "CUSTOMER_NOT_FOUND"
    entity: str = "customer"


class SupplierNotFoundError(NotFoundError):
    code: str = "SUPPLIER_NOT_FOUND"
    entity: str = "supplier"


# Validation exceptions


class ValidationError(ErpKernelError):
    """Input failed validation (missing field, empty lines, bad quantity)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidMagnitudeError(ValidationError):
    """Stock movement magnitude is not a positive integer."""

    code: str = "INVALID_MAGNITUDE"

    def __init__(self, magnitude: Any):
        self.magnitude = magnitude
        super().__init__("quantity", f"magnitude must be a positive integer, got {magnitude!r}")


class NegativeQuantityError(ValidationError):
    """Requested on-hand quantity is below zero."""

    code: str = "NEGATIVE_QUANTITY"

    def __init__(self, inventory_id: str, requested_quantity: int):
        self.inventory_id = inventory_id
        self.requested_quantity = requested_quantity
        super().__init__(
            "quantity",
            f"quantity for {inventory_id} cannot be negative (got {requested_quantity})",
        )


class SupplierInactiveError(ValidationError):
    """Purchases can only be raised against active suppliers."""

    code: str = "SUPPLIER_INACTIVE"

    def __init__(self, supplier_id: str, status: str):
        self.supplier_id = supplier_id
        self.status = status
        super().__init__("supplier_id", f"supplier {supplier_id} is {status}")


# State exceptions


class InvalidStateTransitionError(ErpKernelError):
    """Operation is not legal for the document's current status."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, entity: str, entity_id: str, current_status: str, action: str):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity} {entity_id} in status '{current_status}'"
        )


# Stock exceptions


class InsufficientStockError(ErpKernelError):
    """
    One or more reservation lines exceed on-hand quantity.

    ``shortfalls`` lists every failing line, not just the first.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, reference: str, shortfalls: Sequence[StockShortfall]):
        self.reference = reference
        self.shortfalls = tuple(shortfalls)
        super().__init__(
            f"Insufficient stock for {reference}: "
            + "; ".join(s.reason for s in self.shortfalls)
        )


# Credit exceptions


class CreditLimitExceededError(ErpKernelError):
    """Purchase total exceeds the supplier's credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, purchase_id: str, total: Decimal, credit_limit: Decimal):
        self.purchase_id = purchase_id
        self.total = total
        self.credit_limit = credit_limit
        super().__init__(
            f"Purchase {purchase_id} total {total} exceeds supplier credit limit of {credit_limit}"
        )


# Concurrency exceptions


class ConcurrencyError(ErpKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """
    Exclusive access could not be obtained within the retry budget.

    Nothing was applied; the caller may retry.
    """

    code: str = "CONFLICT"

    def __init__(self, keys: Sequence[str], attempts: int):
        self.keys = tuple(keys)
        self.attempts = attempts
        super().__init__(
            f"Could not lock {', '.join(self.keys)} after {attempts} attempt(s)"
        )


# Immutability exceptions


class ImmutabilityViolationError(ErpKernelError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )
