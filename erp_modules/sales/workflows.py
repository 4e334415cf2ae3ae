"""
erp_modules.sales.workflows
===========================

Responsibility:
    Declarative state machine for sales orders.

Lifecycle:
    draft -> pending -> confirmed -> processing -> shipped -> delivered,
    with cancelled reachable from every non-terminal state.  ``confirm``
    reserves stock; ``cancel`` from confirmed or later releases it.
"""

from erp_kernel.logging_config import get_logger
from erp_modules._workflow import Guard, Transition, Workflow

logger = get_logger("modules.sales.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

STOCK_AVAILABLE = Guard(
    name="stock_available",
    description="Every line is covered by on-hand stock",
)

STOCK_RESERVED = Guard(
    name="stock_reserved",
    description="Reserved stock is released before cancelling",
)


# -----------------------------------------------------------------------------
# Order Workflow
# -----------------------------------------------------------------------------

ORDER_WORKFLOW = Workflow(
    name="order",
    description="Sales order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending",
        "confirmed",
        "processing",
        "shipped",
        "delivered",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "pending", action="submit"),
        Transition("draft", "draft", action="update"),
        Transition("pending", "pending", action="update"),
        Transition("draft", "confirmed", action="confirm", guard=STOCK_AVAILABLE, touches_stock=True),
        Transition("pending", "confirmed", action="confirm", guard=STOCK_AVAILABLE, touches_stock=True),
        Transition("confirmed", "processing", action="advance"),
        Transition("processing", "shipped", action="advance"),
        Transition("shipped", "delivered", action="advance"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("confirmed", "cancelled", action="cancel", guard=STOCK_RESERVED, touches_stock=True),
        Transition("processing", "cancelled", action="cancel", guard=STOCK_RESERVED, touches_stock=True),
        Transition("shipped", "cancelled", action="cancel", guard=STOCK_RESERVED, touches_stock=True),
    ),
    terminal_states=("delivered", "cancelled"),
)

# Only drafts have no side effects to unwind.
DELETABLE_STATES = ("draft",)

logger.info(
    "sales_order_workflow_registered",
    extra={
        "workflow_name": ORDER_WORKFLOW.name,
        "state_count": len(ORDER_WORKFLOW.states),
        "transition_count": len(ORDER_WORKFLOW.transitions),
        "initial_state": ORDER_WORKFLOW.initial_state,
    },
)
