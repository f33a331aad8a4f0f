"""
Procurement Workflows.

State machines for requisitions, purchase preparations, purchase orders and
goods receipts, declared as data. Each transition names the effects the
owning module must run once the status write has succeeded, so the tables
can be tested without touching the store.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from . import log
from .constants import (
    GoodsReceiptStatus,
    PreparationStatus,
    PurchaseOrderStatus,
    RequisitionStatus,
)
from .core_logic import InvalidStateError


@dataclass(frozen=True)
class Transition:
    """A valid state transition."""
    from_state: str
    to_state: str
    action: str
    effects: tuple[str, ...] = ()


@dataclass(frozen=True)
class Workflow:
    """A state machine definition."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def find(self, state: str, action: str, to_state: Optional[str] = None) -> Optional[Transition]:
        for transition in self.transitions:
            if transition.from_state != state or transition.action != action:
                continue
            if to_state is None or transition.to_state == to_state:
                return transition
        return None

    def transition(self, state: str, action: str, to_state: Optional[str] = None) -> Transition:
        """Return the transition for ``action`` from ``state``.

        ``to_state`` selects among actions whose outcome depends on data,
        such as receiving against a purchase order.

        Raises:
            InvalidStateError: If the workflow defines no such transition.
        """
        found = self.find(state, action, to_state)
        if found is None:
            log.warning(
                "Rejected %s action '%s' from state '%s'",
                self.name,
                action,
                state,
            )
            raise InvalidStateError(
                f"Cannot {action.replace('_', ' ')} a {self.name} in state '{state}'"
            )
        return found

    def allowed_actions(self, state: str) -> tuple[str, ...]:
        return tuple(dict.fromkeys(t.action for t in self.transitions if t.from_state == state))

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


# -----------------------------------------------------------------------------
# Effects
# -----------------------------------------------------------------------------

NOTIFY_HEAD_OF_OPERATIONS = "notify_head_of_operations"
NOTIFY_MANAGING_DIRECTOR = "notify_managing_director"
NOTIFY_REQUESTER = "notify_requester"
NOTIFY_FORWARDING_HO = "notify_forwarding_ho"
SPAWN_PREPARATIONS = "spawn_preparations"


# -----------------------------------------------------------------------------
# Requisition Workflow
# -----------------------------------------------------------------------------

REQUISITION_WORKFLOW = Workflow(
    name="requisition",
    description="Two-level material requisition approval",
    initial_state=RequisitionStatus.PENDING_HO.value,
    states=tuple(status.value for status in RequisitionStatus),
    transitions=(
        Transition(
            RequisitionStatus.PENDING_HO.value,
            RequisitionStatus.FORWARDED_TO_MD.value,
            action="ho_approve",
            effects=(NOTIFY_MANAGING_DIRECTOR, NOTIFY_REQUESTER),
        ),
        Transition(
            RequisitionStatus.PENDING_HO.value,
            RequisitionStatus.HO_REJECTED.value,
            action="ho_reject",
            effects=(NOTIFY_REQUESTER,),
        ),
        Transition(
            RequisitionStatus.FORWARDED_TO_MD.value,
            RequisitionStatus.MD_APPROVED.value,
            action="md_approve",
            effects=(SPAWN_PREPARATIONS, NOTIFY_REQUESTER, NOTIFY_FORWARDING_HO),
        ),
        Transition(
            RequisitionStatus.FORWARDED_TO_MD.value,
            RequisitionStatus.MD_REJECTED.value,
            action="md_reject",
            effects=(NOTIFY_REQUESTER, NOTIFY_FORWARDING_HO),
        ),
    ),
    terminal_states=(
        RequisitionStatus.MD_APPROVED.value,
        RequisitionStatus.HO_REJECTED.value,
        RequisitionStatus.MD_REJECTED.value,
    ),
)

# Effects of creating a requisition; there is no prior state to transition from.
SUBMISSION_EFFECTS: tuple[str, ...] = (NOTIFY_HEAD_OF_OPERATIONS,)


# -----------------------------------------------------------------------------
# Purchase Preparation Workflow
# -----------------------------------------------------------------------------

PREPARATION_WORKFLOW = Workflow(
    name="purchase preparation",
    description="Supplier assignment through quality control",
    initial_state=PreparationStatus.PENDING_SUPPLIER_ASSIGNMENT.value,
    states=tuple(status.value for status in PreparationStatus),
    transitions=(
        Transition(
            PreparationStatus.PENDING_SUPPLIER_ASSIGNMENT.value,
            PreparationStatus.SUPPLIER_ASSIGNED.value,
            action="assign_supplier",
        ),
        # Re-allocation of the same (request, material, supplier) refreshes the row.
        Transition(
            PreparationStatus.SUPPLIER_ASSIGNED.value,
            PreparationStatus.SUPPLIER_ASSIGNED.value,
            action="assign_supplier",
        ),
        Transition(
            PreparationStatus.SUPPLIER_ASSIGNED.value,
            PreparationStatus.DELIVERED_PENDING_QC.value,
            action="receive",
        ),
        Transition(
            PreparationStatus.DELIVERED_PENDING_QC.value,
            PreparationStatus.DELIVERED_PENDING_QC.value,
            action="receive",
        ),
        Transition(
            PreparationStatus.DELIVERED_PENDING_QC.value,
            PreparationStatus.COMPLETED.value,
            action="pass_qc",
        ),
        Transition(
            PreparationStatus.DELIVERED_PENDING_QC.value,
            PreparationStatus.QC_FAILED.value,
            action="fail_qc",
        ),
    ),
    terminal_states=(
        PreparationStatus.COMPLETED.value,
        PreparationStatus.QC_FAILED.value,
    ),
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase order",
    description="Purchase order receipt lifecycle",
    initial_state=PurchaseOrderStatus.DRAFT.value,
    states=tuple(status.value for status in PurchaseOrderStatus),
    transitions=(
        Transition(PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.ISSUED.value, action="issue"),
        Transition(PurchaseOrderStatus.ISSUED.value, PurchaseOrderStatus.ISSUED.value, action="revise"),
        Transition(PurchaseOrderStatus.DRAFT.value, PurchaseOrderStatus.DRAFT.value, action="revise"),
        Transition(PurchaseOrderStatus.ISSUED.value, PurchaseOrderStatus.ISSUED.value, action="receive"),
        Transition(PurchaseOrderStatus.ISSUED.value, PurchaseOrderStatus.PARTIALLY_RECEIVED.value, action="receive"),
        Transition(PurchaseOrderStatus.ISSUED.value, PurchaseOrderStatus.FULLY_RECEIVED.value, action="receive"),
        Transition(
            PurchaseOrderStatus.PARTIALLY_RECEIVED.value,
            PurchaseOrderStatus.PARTIALLY_RECEIVED.value,
            action="receive",
        ),
        Transition(
            PurchaseOrderStatus.PARTIALLY_RECEIVED.value,
            PurchaseOrderStatus.FULLY_RECEIVED.value,
            action="receive",
        ),
        Transition(
            PurchaseOrderStatus.FULLY_RECEIVED.value,
            PurchaseOrderStatus.FULLY_RECEIVED.value,
            action="receive",
        ),
        Transition(PurchaseOrderStatus.FULLY_RECEIVED.value, PurchaseOrderStatus.CLOSED.value, action="close"),
    ),
    terminal_states=(PurchaseOrderStatus.CLOSED.value,),
)


# -----------------------------------------------------------------------------
# Goods Receipt Workflow
# -----------------------------------------------------------------------------

GOODS_RECEIPT_WORKFLOW = Workflow(
    name="goods receipt",
    description="Quality control and invoicing of a delivery",
    initial_state=GoodsReceiptStatus.PENDING_QC.value,
    states=tuple(status.value for status in GoodsReceiptStatus),
    transitions=(
        Transition(GoodsReceiptStatus.PENDING_QC.value, GoodsReceiptStatus.QC_PASSED.value, action="approve"),
        Transition(GoodsReceiptStatus.PENDING_QC.value, GoodsReceiptStatus.QC_FAILED.value, action="reject"),
        Transition(GoodsReceiptStatus.QC_PASSED.value, GoodsReceiptStatus.INVOICED.value, action="invoice"),
    ),
    terminal_states=(
        GoodsReceiptStatus.QC_FAILED.value,
        GoodsReceiptStatus.INVOICED.value,
    ),
)


def receipt_status_for(received: Decimal, ordered: Decimal) -> PurchaseOrderStatus:
    """Map aggregate received quantity to the purchase order status."""

    if received >= ordered and received > 0:
        return PurchaseOrderStatus.FULLY_RECEIVED
    if received > 0:
        return PurchaseOrderStatus.PARTIALLY_RECEIVED
    return PurchaseOrderStatus.ISSUED

