"""Goods Receipt and Quality Control.

A goods receipt note (GRN) records a physical delivery against a purchase
order. Creating one rolls the delivered quantities up into the order's
receipt status. Quality control then either accepts the delivery, which
credits stock, appends a QC record, regrades the supplier and raises the
invoice, or rejects it with no further effect.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from . import log, notifications
from .allocation import get_preparation, get_purchase_order
from .constants import Collection, DocumentPrefix, GoodsReceiptStatus, ItemCondition, QualityGrade, Role
from .core_logic import (
    DuplicateOperationError,
    InvalidStateError,
    RuntimeContext,
    ValidationError,
    _iso,
    _resolve_timestamp,
    fetch_record,
    read_collection,
    require_nonnegative_money,
    require_text,
)
from .inventory import credit_stock_from_grn
from .invoicing import create_invoice_from_grn
from .ledger_store import join_path
from .numbering import next_document_number
from .records import (
    GoodsReceiptItem,
    GoodsReceiptRow,
    InvoiceRow,
    PurchaseOrderRow,
    QCRecordRow,
    SupplierRow,
    deserialize_grn,
    deserialize_many,
    serialize_grn,
    serialize_grn_item,
    serialize_qc_record,
)
from .suppliers import delivery_grade, parse_grade, regrade
from .workflows import GOODS_RECEIPT_WORKFLOW, PREPARATION_WORKFLOW, PURCHASE_ORDER_WORKFLOW, receipt_status_for


@dataclass(frozen=True)
class ReceiptLine:
    """A delivered line as counted at the warehouse.

    ``ordered_quantity`` and ``unit_price`` default to the purchase order's.
    """

    material_id: str
    delivered_quantity: Decimal
    ordered_quantity: Optional[Decimal] = None
    unit_price: Optional[Decimal] = None
    batch_number: Optional[str] = None


@dataclass(frozen=True)
class QualityAssessment:
    """QC verdict for one delivered material."""

    material_id: str
    grade: QualityGrade
    condition: ItemCondition = ItemCondition.GOOD


@dataclass(frozen=True)
class QualityOutcome:
    grn: GoodsReceiptRow
    qc_record: QCRecordRow
    supplier: SupplierRow
    invoice: InvoiceRow


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_grn(context: RuntimeContext, grn_id: str) -> GoodsReceiptRow:
    raw = fetch_record(context, Collection.GOODS_RECEIPTS, grn_id, label="goods receipt")
    return deserialize_grn(grn_id, raw)


def list_grns(
    context: RuntimeContext,
    *,
    status: Optional[GoodsReceiptStatus] = None,
    po_id: Optional[str] = None,
) -> List[GoodsReceiptRow]:
    rows = deserialize_many(read_collection(context, Collection.GOODS_RECEIPTS, tolerate_denied=True), deserialize_grn)
    if status is not None:
        rows = [row for row in rows if row.status == GoodsReceiptStatus(status).value]
    if po_id is not None:
        rows = [row for row in rows if row.po_id == po_id]
    return rows


# ---------------------------------------------------------------------------
# Receipt
# ---------------------------------------------------------------------------


def _advance_preparation(context: RuntimeContext, preparation_id: str, action: str, moment: datetime) -> None:
    """Move the order's preparation row along, when the workflow allows it.

    A later partial delivery may arrive after the row already completed;
    such rows are left as they are.
    """
    if not preparation_id:
        return
    preparation = get_preparation(context, preparation_id)
    transition = PREPARATION_WORKFLOW.find(preparation.status, action)
    if transition is None:
        log.debug("Preparation '%s' stays %s on '%s'", preparation_id, preparation.status, action)
        return
    context.store.update(
        join_path(Collection.PREPARATIONS.value, preparation_id),
        {"status": transition.to_state, "updatedAt": _iso(moment)},
    )


def update_po_receipt_status(
    context: RuntimeContext,
    po_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> PurchaseOrderRow:
    """Recompute a purchase order's receipt status from all of its GRNs.

    Returns:
        PurchaseOrderRow: The order with refreshed ``status`` and
            ``totalReceived``.

    Raises:
        InvalidStateError: If the order cannot receive goods (``draft`` or
            ``closed``).
    """
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        order = get_purchase_order(context, po_id)
        received = sum(
            (item.delivered_quantity for grn in list_grns(context, po_id=po_id) for item in grn.items),
            Decimal("0"),
        )
        target = receipt_status_for(received, order.quantity)
        transition = PURCHASE_ORDER_WORKFLOW.transition(order.status, "receive", target.value)
        context.store.update(
            join_path(Collection.PURCHASE_ORDERS.value, po_id),
            {"status": transition.to_state, "totalReceived": str(received), "updatedAt": _iso(moment)},
        )
    log.info("Purchase order %s received %s of %s (%s)", order.po_number, received, order.quantity, target.value)
    return get_purchase_order(context, po_id)


def create_grn(
    context: RuntimeContext,
    po_id: str,
    items: Sequence[ReceiptLine],
    *,
    delivery_date: Optional[str] = None,
    received_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> GoodsReceiptRow:
    """Record a delivery against a purchase order.

    The GRN gets the next ``GRN<year><seq>`` number and starts
    ``pending_qc``; line totals are ``delivered x unit price`` and lines
    without a batch number take the GRN number. The purchase order's
    receipt status is refreshed and its preparation row moves to
    ``delivered_pending_qc``.

    Args:
        context (RuntimeContext): Runtime context holding the ledger store.
        po_id (str): Purchase order being delivered.
        items (Sequence[ReceiptLine]): Counted lines.
        delivery_date (str | None): Date on the delivery note; defaults to
            the date of ``timestamp``.
        received_by (str | None): Warehouse actor.
        timestamp (datetime | None): Creation time.

    Returns:
        GoodsReceiptRow: The stored GRN.

    Raises:
        ValidationError: If there are no lines, a quantity is negative,
            nothing was delivered, or a line's material is not on the order.
        InvalidStateError: If the order is closed or still a draft.
        NotFoundError: If the purchase order is unknown.
    """
    if not items:
        log.error("Rejected goods receipt without lines for PO '%s'", po_id)
        raise ValidationError("A goods receipt needs at least one line")
    for line in items:
        require_text(line.material_id, label="Material id")
        require_nonnegative_money(line.delivered_quantity, label="Delivered quantity")
    if all(line.delivered_quantity <= 0 for line in items):
        raise ValidationError("A goods receipt must deliver a positive quantity")

    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        order = get_purchase_order(context, po_id)
        if PURCHASE_ORDER_WORKFLOW.find(order.status, "receive") is None:
            log.warning("Purchase order %s cannot receive goods in state '%s'", order.po_number, order.status)
            raise InvalidStateError(f"Purchase order {order.po_number} is {order.status}")

        grn_number = next_document_number(context.store, DocumentPrefix.GRN, moment)
        receipt_items = []
        for line in items:
            if line.material_id != order.material_id:
                log.error("Material '%s' is not on purchase order %s", line.material_id, order.po_number)
                raise ValidationError(f"Material '{line.material_id}' is not on purchase order {order.po_number}")
            unit_price = line.unit_price if line.unit_price is not None else order.unit_price
            receipt_items.append(
                GoodsReceiptItem(
                    material_id=line.material_id,
                    material_name=order.material_name,
                    ordered_quantity=line.ordered_quantity if line.ordered_quantity is not None else order.quantity,
                    delivered_quantity=line.delivered_quantity,
                    unit_price=unit_price,
                    total_price=line.delivered_quantity * unit_price,
                    unit=order.unit,
                    batch_number=line.batch_number or grn_number,
                )
            )

        row = GoodsReceiptRow(
            grn_id="",
            grn_number=grn_number,
            po_id=po_id,
            supplier_id=order.supplier_id,
            delivery_date=delivery_date or moment.date().isoformat(),
            items=tuple(receipt_items),
            status=GOODS_RECEIPT_WORKFLOW.initial_state,
            total_amount=sum((item.total_price for item in receipt_items), Decimal("0")),
            created_at=_iso(moment),
            updated_at=_iso(moment),
            received_by=received_by,
            po_number=order.po_number,
        )
        grn_id = context.store.append(Collection.GOODS_RECEIPTS.value, serialize_grn(row))
        update_po_receipt_status(context, po_id, timestamp=moment)
        _advance_preparation(context, order.preparation_id, "receive", moment)
        notifications.dispatch(
            context.notifier,
            Role.QC_OFFICER,
            notification_type="materials_received",
            message=f"Delivery {grn_number} for {order.material_name} awaits quality control",
            data={"grnId": grn_id, "poId": po_id},
            moment=moment,
        )

    log.info("Created goods receipt %s for PO %s (total=%s)", grn_number, order.po_number, row.total_amount)
    return get_grn(context, grn_id)


# ---------------------------------------------------------------------------
# Quality control
# ---------------------------------------------------------------------------


def _graded_items(grn: GoodsReceiptRow, assessments: Sequence[QualityAssessment]) -> List[GoodsReceiptItem]:
    by_material: Dict[str, QualityAssessment] = {}
    for assessment in assessments:
        by_material[assessment.material_id] = assessment
    graded = []
    for item in grn.items:
        assessment = by_material.get(item.material_id)
        if assessment is None:
            log.error("No quality assessment for material '%s' on %s", item.material_id, grn.grn_number)
            raise ValidationError(f"Material '{item.material_id}' on {grn.grn_number} has no quality grade")
        try:
            condition = ItemCondition(assessment.condition)
        except ValueError as exc:
            raise ValidationError(f"Invalid condition: {assessment.condition!r}") from exc
        graded.append(
            replace(item, quality_grade=parse_grade(assessment.grade).value, condition=condition.value)
        )
    return graded


def approve_grn(
    context: RuntimeContext,
    grn_id: str,
    assessments: Sequence[QualityAssessment],
    *,
    qc_officer: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> QualityOutcome:
    """Accept a delivery after quality control.

    In one transaction: grade every line and move the GRN to ``qc_passed``,
    credit stock for the delivered lines, append a QC record carrying the
    delivery grade (the letter for the average of the line grades), regrade
    the supplier, create the invoice and complete the preparation row.

    Raises:
        DuplicateOperationError: If the GRN already passed QC; nothing is
            changed and ``existing_id`` names its QC record.
        InvalidStateError: If the GRN was rejected.
        ValidationError: If a line has no assessment or an invalid grade or
            condition.
        NotFoundError: If the GRN, its order or supplier is unknown.
    """
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        grn = get_grn(context, grn_id)
        if grn.status in (GoodsReceiptStatus.QC_PASSED.value, GoodsReceiptStatus.INVOICED.value):
            log.warning("Goods receipt %s already passed quality control", grn.grn_number)
            raise DuplicateOperationError(
                f"Goods receipt {grn.grn_number} already passed quality control", existing_id=grn.qc_id
            )
        transition = GOODS_RECEIPT_WORKFLOW.transition(grn.status, "approve")
        graded = _graded_items(grn, assessments)
        overall = delivery_grade(item.quality_grade for item in graded)

        path = join_path(Collection.GOODS_RECEIPTS.value, grn_id)
        if not context.store.compare_and_set(join_path(path, "status"), grn.status, transition.to_state):
            raise InvalidStateError(f"Goods receipt '{grn_id}' was modified concurrently")
        context.store.update(
            path,
            {
                "items": [serialize_grn_item(item) for item in graded],
                "qcOfficer": qc_officer,
                "qcCompletedAt": _iso(moment),
                "deliveryGrade": overall.value,
                "updatedAt": _iso(moment),
            },
        )
        grn = get_grn(context, grn_id)
        credit_stock_from_grn(context, grn, credited_by=qc_officer, timestamp=moment)

        qc_record = QCRecordRow(
            qc_id="",
            grn_id=grn_id,
            supplier_id=grn.supplier_id,
            overall_grade=overall.value,
            item_grades=tuple(item.quality_grade for item in graded),
            qc_date=_iso(moment),
            qc_officer=qc_officer,
        )
        qc_id = context.store.append(Collection.QC_RECORDS.value, serialize_qc_record(qc_record))
        context.store.update(path, {"qcId": qc_id})
        supplier = regrade(context, grn.supplier_id, overall, timestamp=moment)

        invoice = create_invoice_from_grn(context, grn_id, created_by=qc_officer, timestamp=moment)
        order = get_purchase_order(context, grn.po_id)
        _advance_preparation(context, order.preparation_id, "pass_qc", moment)

    log.info("Goods receipt %s passed quality control with grade %s", grn.grn_number, overall.value)
    return QualityOutcome(
        grn=get_grn(context, grn_id),
        qc_record=replace(qc_record, qc_id=qc_id),
        supplier=supplier,
        invoice=invoice,
    )


def reject_grn(
    context: RuntimeContext,
    grn_id: str,
    *,
    reason: str,
    qc_officer: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> GoodsReceiptRow:
    """Fail a delivery at quality control; terminal.

    No stock is credited, no QC record or invoice is created and the
    supplier's grade is untouched.

    Raises:
        ValidationError: If ``reason`` is blank.
        InvalidStateError: If the GRN is not ``pending_qc``.
    """
    reason = require_text(reason, label="Rejection reason")
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        grn = get_grn(context, grn_id)
        transition = GOODS_RECEIPT_WORKFLOW.transition(grn.status, "reject")
        path = join_path(Collection.GOODS_RECEIPTS.value, grn_id)
        if not context.store.compare_and_set(join_path(path, "status"), grn.status, transition.to_state):
            raise InvalidStateError(f"Goods receipt '{grn_id}' was modified concurrently")
        context.store.update(
            path,
            {
                "rejectionReason": reason,
                "qcOfficer": qc_officer,
                "qcCompletedAt": _iso(moment),
                "updatedAt": _iso(moment),
            },
        )
        order = get_purchase_order(context, grn.po_id)
        _advance_preparation(context, order.preparation_id, "fail_qc", moment)
    log.info("Goods receipt %s failed quality control: %s", grn.grn_number, reason)
    return get_grn(context, grn_id)
