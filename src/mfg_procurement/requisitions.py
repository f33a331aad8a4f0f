"""Requisition Approval State Machine.

A requisition climbs two approval levels: the Head of Operations (HO) first,
then the Managing Director (MD). Every action is looked up in
:data:`~mfg_procurement.workflows.REQUISITION_WORKFLOW`, the status is moved
with a compare-and-set so a concurrent action cannot be overwritten, and
the effects named by the transition are executed afterwards by
:data:`EFFECT_HANDLERS`. All of it happens inside one store transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from . import log, notifications
from .constants import Collection, PreparationStatus, RequestType, RequisitionStatus, Role
from .core_logic import (
    InvalidStateError,
    RuntimeContext,
    ValidationError,
    _iso,
    _resolve_timestamp,
    fetch_record,
    read_collection,
    require_positive_quantity,
    require_text,
)
from .ledger_store import join_path
from .records import (
    PreparationRow,
    RequisitionItem,
    RequisitionRow,
    deserialize_many,
    deserialize_requisition,
    serialize_preparation,
    serialize_requisition,
)
from .workflows import (
    NOTIFY_FORWARDING_HO,
    NOTIFY_HEAD_OF_OPERATIONS,
    NOTIFY_MANAGING_DIRECTOR,
    NOTIFY_REQUESTER,
    REQUISITION_WORKFLOW,
    SPAWN_PREPARATIONS,
    SUBMISSION_EFFECTS,
    Transition,
)


@dataclass(frozen=True)
class RequisitionCommand:
    """User intent for submitting a material or packing-material request."""

    items: Sequence[RequisitionItem]
    requested_by: str
    request_type: RequestType = RequestType.MATERIAL
    timestamp: Optional[datetime] = None


EffectHandler = Callable[[RuntimeContext, RequisitionRow, datetime], None]


# ---------------------------------------------------------------------------
# Effects
# ---------------------------------------------------------------------------


def _label(row: RequisitionRow) -> str:
    return "packing material request" if row.request_type == RequestType.PACKING_MATERIAL.value else "material request"


def _notify_head_of_operations(context: RuntimeContext, row: RequisitionRow, moment: datetime) -> None:
    notifications.dispatch(
        context.notifier,
        Role.HEAD_OF_OPERATIONS,
        notification_type=f"{row.request_type}_request",
        message=f"New {_label(row)} from {row.requested_by} awaits approval",
        data={"requestId": row.requisition_id, "itemCount": len(row.items)},
        moment=moment,
    )


def _notify_managing_director(context: RuntimeContext, row: RequisitionRow, moment: datetime) -> None:
    notifications.dispatch(
        context.notifier,
        Role.MANAGING_DIRECTOR,
        notification_type=f"{row.request_type}_request_forwarded",
        message=f"A {_label(row)} was forwarded by {row.ho_approved_by} for final approval",
        data={"requestId": row.requisition_id, "forwardedBy": row.ho_approved_by},
        moment=moment,
    )


_REQUESTER_MESSAGES = {
    RequisitionStatus.FORWARDED_TO_MD.value: ("request_ho_approved", "was approved by the Head of Operations"),
    RequisitionStatus.HO_REJECTED.value: ("request_ho_rejected", "was rejected by the Head of Operations"),
    RequisitionStatus.MD_APPROVED.value: ("request_md_approved", "was approved by the Managing Director"),
    RequisitionStatus.MD_REJECTED.value: ("request_md_rejected", "was rejected by the Managing Director"),
}


def _notify_requester(context: RuntimeContext, row: RequisitionRow, moment: datetime) -> None:
    notification_type, outcome = _REQUESTER_MESSAGES[row.status]
    notifications.dispatch(
        context.notifier,
        row.requested_by,
        notification_type=notification_type,
        message=f"Your {_label(row)} {outcome}",
        data={"requestId": row.requisition_id, "status": row.status, "reason": row.rejection_reason},
        moment=moment,
    )


def _notify_forwarding_ho(context: RuntimeContext, row: RequisitionRow, moment: datetime) -> None:
    notification_type, outcome = _REQUESTER_MESSAGES[row.status]
    notifications.dispatch(
        context.notifier,
        row.ho_approved_by,
        notification_type=notification_type,
        message=f"The {_label(row)} you forwarded {outcome}",
        data={"requestId": row.requisition_id, "status": row.status},
        moment=moment,
    )


def _spawn_preparations(context: RuntimeContext, row: RequisitionRow, moment: datetime) -> None:
    for item in row.items:
        preparation = PreparationRow(
            preparation_id="",
            request_id=row.requisition_id,
            request_type=row.request_type,
            material_id=item.material_id,
            material_name=item.material_name,
            required_quantity=item.requested_quantity,
            unit=item.unit,
            status=PreparationStatus.PENDING_SUPPLIER_ASSIGNMENT.value,
            created_at=_iso(moment),
            updated_at=_iso(moment),
        )
        context.store.append(Collection.PREPARATIONS.value, serialize_preparation(preparation))
    log.info("Spawned %d purchase preparations for requisition '%s'", len(row.items), row.requisition_id)


EFFECT_HANDLERS: Dict[str, EffectHandler] = {
    NOTIFY_HEAD_OF_OPERATIONS: _notify_head_of_operations,
    NOTIFY_MANAGING_DIRECTOR: _notify_managing_director,
    NOTIFY_REQUESTER: _notify_requester,
    NOTIFY_FORWARDING_HO: _notify_forwarding_ho,
    SPAWN_PREPARATIONS: _spawn_preparations,
}


def run_effects(context: RuntimeContext, effects: Sequence[str], row: RequisitionRow, moment: datetime) -> None:
    for effect in effects:
        EFFECT_HANDLERS[effect](context, row, moment)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def submit(context: RuntimeContext, command: RequisitionCommand) -> RequisitionRow:
    """Create a requisition in ``pending_ho`` and notify the HO role.

    Raises:
        ValidationError: If there are no items, an item lacks a material id,
            a material is listed twice, or a requested quantity is not
            positive.
    """
    requested_by = require_text(command.requested_by, label="Requester")
    if not command.items:
        log.error("Rejected empty requisition from '%s'", requested_by)
        raise ValidationError("A requisition needs at least one item")
    seen: set[str] = set()
    for item in command.items:
        require_text(item.material_id, label="Material id")
        require_positive_quantity(item.requested_quantity, label="Requested quantity")
        if item.material_id in seen:
            log.error("Rejected requisition listing material '%s' twice", item.material_id)
            raise ValidationError(f"Material '{item.material_id}' is listed more than once")
        seen.add(item.material_id)

    moment = _resolve_timestamp(command.timestamp)
    row = RequisitionRow(
        requisition_id="",
        request_type=RequestType(command.request_type).value,
        items=tuple(command.items),
        status=REQUISITION_WORKFLOW.initial_state,
        requested_by=requested_by,
        submitted_at=_iso(moment),
        updated_at=_iso(moment),
        workflow={"submitted": {"by": requested_by, "at": _iso(moment), "role": Role.WAREHOUSE_STAFF.value}},
    )
    with context.store.transaction():
        requisition_id = context.store.append(Collection.REQUISITIONS.value, serialize_requisition(row))
        row = get_requisition(context, requisition_id)
        run_effects(context, SUBMISSION_EFFECTS, row, moment)
    log.info("Submitted requisition '%s' with %d items by '%s'", requisition_id, len(row.items), requested_by)
    return row


def _apply(
    context: RuntimeContext,
    requisition_id: str,
    action: str,
    *,
    fields: Mapping[str, Any],
    audit: Mapping[str, Any],
    moment: datetime,
) -> RequisitionRow:
    with context.store.transaction():
        raw = fetch_record(context, Collection.REQUISITIONS, requisition_id, label="requisition")
        current = str(raw.get("status", ""))
        transition: Transition = REQUISITION_WORKFLOW.transition(current, action)
        path = join_path(Collection.REQUISITIONS.value, requisition_id)
        if not context.store.compare_and_set(join_path(path, "status"), current, transition.to_state):
            log.warning("Requisition '%s' changed state during '%s'", requisition_id, action)
            raise InvalidStateError(f"Requisition '{requisition_id}' was modified concurrently")
        context.store.update(path, {**fields, "updatedAt": _iso(moment)})
        step = {key: value for key, value in audit.items() if value is not None}
        context.store.update(join_path(path, "workflow"), {action: step})
        row = get_requisition(context, requisition_id)
        run_effects(context, transition.effects, row, moment)
    log.info("Requisition '%s' moved %s -> %s", requisition_id, current, transition.to_state)
    return row


def ho_approve(
    context: RuntimeContext,
    requisition_id: str,
    *,
    approved_by: str,
    comments: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> RequisitionRow:
    """Approve at HO level and forward to the MD.

    Raises:
        InvalidStateError: If the requisition is not ``pending_ho``.
        NotFoundError: If the requisition does not exist.
    """
    approved_by = require_text(approved_by, label="Approver")
    moment = _resolve_timestamp(timestamp)
    return _apply(
        context,
        requisition_id,
        "ho_approve",
        fields={
            "hoApprovedBy": approved_by,
            "hoApprovedAt": _iso(moment),
            "hoApprovalComments": comments,
            "forwardedToMDAt": _iso(moment),
        },
        audit={"by": approved_by, "at": _iso(moment), "role": Role.HEAD_OF_OPERATIONS.value, "comments": comments},
        moment=moment,
    )


def ho_reject(
    context: RuntimeContext,
    requisition_id: str,
    *,
    rejected_by: str,
    reason: str,
    timestamp: Optional[datetime] = None,
) -> RequisitionRow:
    """Reject at HO level; terminal.

    Raises:
        ValidationError: If ``reason`` is blank.
        InvalidStateError: If the requisition is not ``pending_ho``.
    """
    rejected_by = require_text(rejected_by, label="Rejecter")
    reason = require_text(reason, label="Rejection reason")
    moment = _resolve_timestamp(timestamp)
    return _apply(
        context,
        requisition_id,
        "ho_reject",
        fields={"hoRejectedAt": _iso(moment), "rejectedBy": rejected_by, "rejectionReason": reason},
        audit={"by": rejected_by, "at": _iso(moment), "role": Role.HEAD_OF_OPERATIONS.value, "reason": reason},
        moment=moment,
    )


def md_approve(
    context: RuntimeContext,
    requisition_id: str,
    *,
    approved_by: str,
    comments: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> RequisitionRow:
    """Give final approval and spawn one purchase preparation per item.

    Raises:
        InvalidStateError: If the requisition is not ``forwarded_to_md``.
    """
    approved_by = require_text(approved_by, label="Approver")
    moment = _resolve_timestamp(timestamp)
    return _apply(
        context,
        requisition_id,
        "md_approve",
        fields={"mdApprovedBy": approved_by, "mdApprovedAt": _iso(moment), "mdApprovalComments": comments},
        audit={"by": approved_by, "at": _iso(moment), "role": Role.MANAGING_DIRECTOR.value, "comments": comments},
        moment=moment,
    )


def md_reject(
    context: RuntimeContext,
    requisition_id: str,
    *,
    rejected_by: str,
    reason: str,
    timestamp: Optional[datetime] = None,
) -> RequisitionRow:
    """Reject a forwarded requisition and notify the requester and forwarding HO.

    Raises:
        ValidationError: If ``reason`` is blank.
        InvalidStateError: If the requisition is not ``forwarded_to_md``.
    """
    rejected_by = require_text(rejected_by, label="Rejecter")
    reason = require_text(reason, label="Rejection reason")
    moment = _resolve_timestamp(timestamp)
    return _apply(
        context,
        requisition_id,
        "md_reject",
        fields={"mdRejectedAt": _iso(moment), "rejectedBy": rejected_by, "rejectionReason": reason},
        audit={"by": rejected_by, "at": _iso(moment), "role": Role.MANAGING_DIRECTOR.value, "reason": reason},
        moment=moment,
    )


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_requisition(context: RuntimeContext, requisition_id: str) -> RequisitionRow:
    raw = fetch_record(context, Collection.REQUISITIONS, requisition_id, label="requisition")
    return deserialize_requisition(requisition_id, raw)


def list_requisitions(
    context: RuntimeContext,
    *,
    status: Optional[RequisitionStatus] = None,
    requested_by: Optional[str] = None,
) -> List[RequisitionRow]:
    """List requisitions oldest first, optionally filtered."""

    rows = deserialize_many(
        read_collection(context, Collection.REQUISITIONS, tolerate_denied=True),
        deserialize_requisition,
    )
    if status is not None:
        rows = [row for row in rows if row.status == RequisitionStatus(status).value]
    if requested_by is not None:
        rows = [row for row in rows if row.requested_by == requested_by]
    return rows


def pending_head_of_operations(context: RuntimeContext) -> List[RequisitionRow]:
    return list_requisitions(context, status=RequisitionStatus.PENDING_HO)


def pending_managing_director(context: RuntimeContext) -> List[RequisitionRow]:
    return list_requisitions(context, status=RequisitionStatus.FORWARDED_TO_MD)
