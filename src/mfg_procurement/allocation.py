"""Purchase Preparation and Supplier Allocation.

Once a requisition is approved by the MD, each of its materials has a
purchase preparation row waiting for suppliers. :func:`allocate` splits the
requested quantity across one or more suppliers. Preparation rows are
keyed by ``(requestId, materialId, supplierId)``, so allocating to the same
supplier again revises the existing row and its purchase order rather than
creating new ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from . import log
from .constants import Collection, DocumentPrefix, PreparationStatus, PurchaseOrderStatus, RequestType
from .core_logic import (
    InvalidStateError,
    OverAllocationError,
    RuntimeContext,
    ValidationError,
    _iso,
    _resolve_timestamp,
    fetch_record,
    read_collection,
)
from .ledger_store import join_path
from .numbering import next_document_number
from .records import (
    PreparationRow,
    PurchaseOrderRow,
    deserialize_many,
    deserialize_preparation,
    deserialize_purchase_order,
    serialize_preparation,
    serialize_purchase_order,
)
from .requisitions import get_requisition
from .suppliers import get_supplier
from .workflows import PREPARATION_WORKFLOW, PURCHASE_ORDER_WORKFLOW


@dataclass(frozen=True)
class AllocationLine:
    """One supplier's share of a material, as entered on the allocation form.

    Lines missing any of supplier, quantity, unit price or delivery date are
    skipped by :func:`allocate`.
    """

    supplier_id: Optional[str]
    quantity: Optional[Decimal]
    unit_price: Optional[Decimal]
    delivery_date: Optional[str]
    notes: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return bool(
            self.supplier_id
            and self.quantity is not None
            and self.quantity > 0
            and self.unit_price is not None
            and self.unit_price > 0
            and self.delivery_date
        )


@dataclass(frozen=True)
class AllocationResult:
    preparations: List[PreparationRow]
    purchase_orders: List[PurchaseOrderRow]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_preparation(context: RuntimeContext, preparation_id: str) -> PreparationRow:
    raw = fetch_record(context, Collection.PREPARATIONS, preparation_id, label="purchase preparation")
    return deserialize_preparation(preparation_id, raw)


def list_preparations(
    context: RuntimeContext,
    *,
    status: Optional[PreparationStatus] = None,
    request_type: Optional[RequestType] = None,
    request_id: Optional[str] = None,
) -> List[PreparationRow]:
    rows = deserialize_many(
        read_collection(context, Collection.PREPARATIONS, tolerate_denied=True),
        deserialize_preparation,
    )
    if status is not None:
        rows = [row for row in rows if row.status == PreparationStatus(status).value]
    if request_type is not None:
        rows = [row for row in rows if row.request_type == RequestType(request_type).value]
    if request_id is not None:
        rows = [row for row in rows if row.request_id == request_id]
    return rows


def get_purchase_order(context: RuntimeContext, po_id: str) -> PurchaseOrderRow:
    raw = fetch_record(context, Collection.PURCHASE_ORDERS, po_id, label="purchase order")
    return deserialize_purchase_order(po_id, raw)


def list_purchase_orders(
    context: RuntimeContext,
    *,
    status: Optional[PurchaseOrderStatus] = None,
    supplier_id: Optional[str] = None,
) -> List[PurchaseOrderRow]:
    rows = deserialize_many(
        read_collection(context, Collection.PURCHASE_ORDERS, tolerate_denied=True),
        deserialize_purchase_order,
    )
    if status is not None:
        rows = [row for row in rows if row.status == PurchaseOrderStatus(status).value]
    if supplier_id is not None:
        rows = [row for row in rows if row.supplier_id == supplier_id]
    return rows


def _material_rows(context: RuntimeContext, request_id: str, material_id: str) -> List[PreparationRow]:
    rows = deserialize_many(read_collection(context, Collection.PREPARATIONS), deserialize_preparation)
    return [row for row in rows if row.request_id == request_id and row.material_id == material_id]


def _requested_quantity(context: RuntimeContext, base: PreparationRow) -> Decimal:
    requisition = get_requisition(context, base.request_id)
    for item in requisition.items:
        if item.material_id == base.material_id:
            return item.requested_quantity
    log.error("Material '%s' is not part of requisition '%s'", base.material_id, base.request_id)
    raise ValidationError(f"Material '{base.material_id}' is not on requisition '{base.request_id}'")


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


def allocate(
    context: RuntimeContext,
    preparation_id: str,
    allocations: Sequence[AllocationLine],
    *,
    assigned_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> AllocationResult:
    """Split a material's approved quantity across suppliers.

    Every complete line upserts the preparation row for its supplier, moves
    it to ``supplier_assigned`` and issues (or revises) exactly one purchase
    order with ``totalCost = quantity x unitPrice``. Incomplete lines are
    skipped.

    Args:
        context (RuntimeContext): Runtime context holding the ledger store.
        preparation_id (str): Any preparation row of the material; its
            request and material identify the allocation set.
        allocations (Sequence[AllocationLine]): Supplier shares.
        assigned_by (str | None): Actor recorded on rows and orders.
        timestamp (datetime | None): Time of the allocation.

    Returns:
        AllocationResult: The preparation rows and purchase orders written.

    Raises:
        OverAllocationError: If the allocated total, including rows already
            assigned to suppliers absent from ``allocations``, exceeds the
            requested quantity.
        ValidationError: If a supplier appears twice in ``allocations``.
        InvalidStateError: If a targeted row has already been delivered.
        NotFoundError: If the preparation, requisition or a supplier is
            unknown.
    """
    moment = _resolve_timestamp(timestamp)
    lines = [line for line in allocations if line.is_complete]
    skipped = len(allocations) - len(lines)
    if skipped:
        log.info("Skipping %d incomplete allocation lines for preparation '%s'", skipped, preparation_id)

    supplier_ids = [line.supplier_id for line in lines]
    if len(set(supplier_ids)) != len(supplier_ids):
        log.error("Duplicate supplier in allocation for preparation '%s'", preparation_id)
        raise ValidationError("Each supplier may appear only once per allocation")

    with context.store.transaction():
        base = get_preparation(context, preparation_id)
        requested = _requested_quantity(context, base)
        siblings = _material_rows(context, base.request_id, base.material_id)

        retained = sum(
            (row.required_quantity for row in siblings if row.supplier_id and row.supplier_id not in supplier_ids),
            Decimal("0"),
        )
        allocated = sum((line.quantity for line in lines), Decimal("0")) + retained
        if allocated > requested:
            log.warning(
                "Over-allocation for material '%s' on requisition '%s': %s > %s",
                base.material_id,
                base.request_id,
                allocated,
                requested,
            )
            raise OverAllocationError(
                f"Allocated {allocated} exceeds the requested {requested} for material '{base.material_id}'"
            )

        by_supplier: Dict[str, PreparationRow] = {row.supplier_id: row for row in siblings if row.supplier_id}
        unassigned = [row for row in siblings if not row.supplier_id]
        preparations: List[PreparationRow] = []
        orders: List[PurchaseOrderRow] = []
        for line in lines:
            get_supplier(context, line.supplier_id)
            target = by_supplier.get(line.supplier_id)
            if target is None and unassigned:
                target = unassigned.pop(0)
            preparation = _assign(context, base, target, line, assigned_by=assigned_by, moment=moment)
            order = _issue_order(context, preparation, assigned_by=assigned_by, moment=moment)
            context.store.update(
                join_path(Collection.PREPARATIONS.value, preparation.preparation_id),
                {"poId": order.po_id},
            )
            preparations.append(get_preparation(context, preparation.preparation_id))
            orders.append(order)

    log.info(
        "Allocated %s of %s for material '%s' across %d suppliers",
        allocated,
        requested,
        base.material_id,
        len(lines),
    )
    return AllocationResult(preparations=preparations, purchase_orders=orders)


def _assign(
    context: RuntimeContext,
    base: PreparationRow,
    target: Optional[PreparationRow],
    line: AllocationLine,
    *,
    assigned_by: Optional[str],
    moment: datetime,
) -> PreparationRow:
    fields = {
        "supplierId": line.supplier_id,
        "requiredQuantity": str(line.quantity),
        "unitPrice": str(line.unit_price),
        "totalCost": str(line.quantity * line.unit_price),
        "expectedDeliveryDate": line.delivery_date,
        "notes": line.notes,
        "assignedBy": assigned_by,
        "updatedAt": _iso(moment),
    }
    if target is None:
        row = PreparationRow(
            preparation_id="",
            request_id=base.request_id,
            request_type=base.request_type,
            material_id=base.material_id,
            material_name=base.material_name,
            required_quantity=line.quantity,
            unit=base.unit,
            status=PREPARATION_WORKFLOW.initial_state,
            created_at=_iso(moment),
            updated_at=_iso(moment),
        )
        preparation_id = context.store.append(Collection.PREPARATIONS.value, serialize_preparation(row))
        current = row.status
    else:
        preparation_id = target.preparation_id
        current = target.status

    transition = PREPARATION_WORKFLOW.transition(current, "assign_supplier")
    context.store.update(
        join_path(Collection.PREPARATIONS.value, preparation_id),
        {**fields, "status": transition.to_state},
    )
    return get_preparation(context, preparation_id)


def _issue_order(
    context: RuntimeContext,
    preparation: PreparationRow,
    *,
    assigned_by: Optional[str],
    moment: datetime,
) -> PurchaseOrderRow:
    quantity = preparation.required_quantity
    unit_price = preparation.unit_price or Decimal("0")
    fields = {
        "supplierId": preparation.supplier_id,
        "quantity": str(quantity),
        "unitPrice": str(unit_price),
        "totalCost": str(quantity * unit_price),
        "expectedDeliveryDate": preparation.expected_delivery_date,
        "updatedAt": _iso(moment),
    }

    if preparation.po_id:
        existing = get_purchase_order(context, preparation.po_id)
        PURCHASE_ORDER_WORKFLOW.transition(existing.status, "revise")
        context.store.update(join_path(Collection.PURCHASE_ORDERS.value, existing.po_id), fields)
        log.info("Revised purchase order %s for preparation '%s'", existing.po_number, preparation.preparation_id)
        return get_purchase_order(context, existing.po_id)

    transition = PURCHASE_ORDER_WORKFLOW.transition(PURCHASE_ORDER_WORKFLOW.initial_state, "issue")
    order = PurchaseOrderRow(
        po_id="",
        po_number=next_document_number(context.store, DocumentPrefix.PURCHASE_ORDER, moment),
        preparation_id=preparation.preparation_id,
        request_id=preparation.request_id,
        supplier_id=preparation.supplier_id or "",
        material_id=preparation.material_id,
        material_name=preparation.material_name,
        quantity=quantity,
        unit=preparation.unit,
        unit_price=unit_price,
        total_cost=quantity * unit_price,
        status=transition.to_state,
        expected_delivery_date=preparation.expected_delivery_date or "",
        created_at=_iso(moment),
        updated_at=_iso(moment),
        created_by=assigned_by,
    )
    po_id = context.store.append(Collection.PURCHASE_ORDERS.value, serialize_purchase_order(order))
    log.info("Issued purchase order %s to supplier '%s'", order.po_number, order.supplier_id)
    return get_purchase_order(context, po_id)


def close_purchase_order(
    context: RuntimeContext,
    po_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> PurchaseOrderRow:
    """Close a fully received purchase order.

    Raises:
        InvalidStateError: If the order is not ``fully_received``.
    """
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        order = get_purchase_order(context, po_id)
        transition = PURCHASE_ORDER_WORKFLOW.transition(order.status, "close")
        path = join_path(Collection.PURCHASE_ORDERS.value, po_id)
        if not context.store.compare_and_set(join_path(path, "status"), order.status, transition.to_state):
            raise InvalidStateError(f"Purchase order '{po_id}' was modified concurrently")
        context.store.update(path, {"updatedAt": _iso(moment)})
    log.info("Closed purchase order %s", order.po_number)
    return get_purchase_order(context, po_id)
