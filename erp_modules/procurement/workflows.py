"""
Procurement Workflows.

State machine for purchase orders:
draft -> pending -> approved -> ordered -> received, cancelled before
received.  ``receive`` out of approved/ordered is a self-loop until every
line is complete.
"""

from erp_kernel.logging_config import get_logger
from erp_modules._workflow import Guard, Transition, Workflow

logger = get_logger("modules.procurement.workflows")


# -----------------------------------------------------------------------------
# Guards
# -----------------------------------------------------------------------------

WITHIN_CREDIT_LIMIT = Guard(
    name="within_credit_limit",
    description="Purchase total does not exceed the supplier credit limit",
)

ALL_LINES_RECEIVED = Guard(
    name="all_lines_received",
    description="All purchase lines fully received",
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_WORKFLOW = Workflow(
    name="purchase",
    description="Purchase order lifecycle",
    initial_state="draft",
    states=(
        "draft",
        "pending",
        "approved",
        "ordered",
        "received",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "pending", action="submit"),
        Transition("draft", "draft", action="update"),
        Transition("pending", "pending", action="update"),
        Transition("pending", "approved", action="approve", guard=WITHIN_CREDIT_LIMIT),
        Transition("pending", "cancelled", action="reject"),
        Transition("approved", "ordered", action="mark_ordered"),
        Transition("approved", "approved", action="receive", touches_stock=True),
        Transition("ordered", "ordered", action="receive", touches_stock=True),
        Transition("approved", "received", action="receive", guard=ALL_LINES_RECEIVED, touches_stock=True),
        Transition("ordered", "received", action="receive", guard=ALL_LINES_RECEIVED, touches_stock=True),
        Transition("draft", "cancelled", action="cancel"),
        Transition("pending", "cancelled", action="cancel"),
        Transition("approved", "cancelled", action="cancel"),
        Transition("ordered", "cancelled", action="cancel"),
    ),
    terminal_states=("received", "cancelled"),
)

DELETABLE_STATES = ("draft",)

logger.info(
    "procurement_purchase_workflow_registered",
    extra={
        "workflow_name": PURCHASE_WORKFLOW.name,
        "state_count": len(PURCHASE_WORKFLOW.states),
        "transition_count": len(PURCHASE_WORKFLOW.transitions),
        "initial_state": PURCHASE_WORKFLOW.initial_state,
    },
)
