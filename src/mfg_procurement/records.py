"""Typed views of the records kept in the ledger store.

Each record type comes with a frozen dataclass plus a ``serialize_*`` /
``deserialize_*`` pair. Serializers produce the camelCase mapping persisted
under the record's collection; deserializers accept whatever the store
hands back (fresh ``Decimal`` values, or strings after a workbook round trip)
and normalise it into predictable Python types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar


ZERO = Decimal("0")


def _decimal(raw: Any, default: Decimal = ZERO) -> Decimal:
    """Coerce a stored numeric value into :class:`~decimal.Decimal`."""

    if raw is None or raw == "":
        return default
    return Decimal(str(raw))


def _optional_decimal(raw: Any) -> Optional[Decimal]:
    return None if raw is None or raw == "" else Decimal(str(raw))


def _optional_str(raw: Any) -> Optional[str]:
    return None if raw is None else str(raw)


def _money(value: Optional[Decimal]) -> Optional[str]:
    """Encode decimals as strings so they survive JSON and Excel untouched."""

    return None if value is None else str(value)


def _compact(record: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in record.items() if value is not None}


# ---------------------------------------------------------------------------
# Requisitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RequisitionItem:
    """One requested material line."""

    material_id: str
    material_name: str
    requested_quantity: Decimal
    unit: str


@dataclass(frozen=True)
class RequisitionRow:
    """In-memory view of a material or packing-material requisition."""

    requisition_id: str
    request_type: str
    items: Tuple[RequisitionItem, ...]
    status: str
    requested_by: str
    submitted_at: str
    updated_at: str
    ho_approved_by: Optional[str] = None
    ho_approved_at: Optional[str] = None
    ho_comments: Optional[str] = None
    forwarded_to_md_at: Optional[str] = None
    md_approved_by: Optional[str] = None
    md_approved_at: Optional[str] = None
    md_comments: Optional[str] = None
    ho_rejected_at: Optional[str] = None
    md_rejected_at: Optional[str] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    workflow: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)


def serialize_requisition_item(item: RequisitionItem) -> Dict[str, Any]:
    return {
        "materialId": item.material_id,
        "materialName": item.material_name,
        "requestedQuantity": _money(item.requested_quantity),
        "unit": item.unit,
    }


def deserialize_requisition_item(raw: Mapping[str, Any]) -> RequisitionItem:
    return RequisitionItem(
        material_id=str(raw.get("materialId", "")),
        material_name=str(raw.get("materialName") or ""),
        requested_quantity=_decimal(raw.get("requestedQuantity")),
        unit=str(raw.get("unit") or ""),
    )


def serialize_requisition(row: RequisitionRow) -> Dict[str, Any]:
    return _compact(
        {
            "requestType": row.request_type,
            "items": [serialize_requisition_item(item) for item in row.items],
            "status": row.status,
            "requestedBy": row.requested_by,
            "submittedAt": row.submitted_at,
            "updatedAt": row.updated_at,
            "hoApprovedBy": row.ho_approved_by,
            "hoApprovedAt": row.ho_approved_at,
            "hoApprovalComments": row.ho_comments,
            "forwardedToMDAt": row.forwarded_to_md_at,
            "mdApprovedBy": row.md_approved_by,
            "mdApprovedAt": row.md_approved_at,
            "mdApprovalComments": row.md_comments,
            "hoRejectedAt": row.ho_rejected_at,
            "mdRejectedAt": row.md_rejected_at,
            "rejectedBy": row.rejected_by,
            "rejectionReason": row.rejection_reason,
            "workflow": dict(row.workflow) or None,
        }
    )


def deserialize_requisition(requisition_id: str, raw: Mapping[str, Any]) -> RequisitionRow:
    return RequisitionRow(
        requisition_id=requisition_id,
        request_type=str(raw.get("requestType") or "material"),
        items=tuple(deserialize_requisition_item(item) for item in raw.get("items") or ()),
        status=str(raw.get("status", "")),
        requested_by=str(raw.get("requestedBy", "")),
        submitted_at=str(raw.get("submittedAt", "")),
        updated_at=str(raw.get("updatedAt", "")),
        ho_approved_by=_optional_str(raw.get("hoApprovedBy")),
        ho_approved_at=_optional_str(raw.get("hoApprovedAt")),
        ho_comments=_optional_str(raw.get("hoApprovalComments")),
        forwarded_to_md_at=_optional_str(raw.get("forwardedToMDAt")),
        md_approved_by=_optional_str(raw.get("mdApprovedBy")),
        md_approved_at=_optional_str(raw.get("mdApprovedAt")),
        md_comments=_optional_str(raw.get("mdApprovalComments")),
        ho_rejected_at=_optional_str(raw.get("hoRejectedAt")),
        md_rejected_at=_optional_str(raw.get("mdRejectedAt")),
        rejected_by=_optional_str(raw.get("rejectedBy")),
        rejection_reason=_optional_str(raw.get("rejectionReason")),
        workflow=dict(raw.get("workflow") or {}),
    )


# ---------------------------------------------------------------------------
# Purchase preparation and purchase orders
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PreparationRow:
    """In-memory view of a purchase preparation row."""

    preparation_id: str
    request_id: str
    request_type: str
    material_id: str
    material_name: str
    required_quantity: Decimal
    unit: str
    status: str
    created_at: str
    updated_at: str
    supplier_id: Optional[str] = None
    unit_price: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    expected_delivery_date: Optional[str] = None
    notes: Optional[str] = None
    po_id: Optional[str] = None
    assigned_by: Optional[str] = None


def serialize_preparation(row: PreparationRow) -> Dict[str, Any]:
    return _compact(
        {
            "requestId": row.request_id,
            "requestType": row.request_type,
            "materialId": row.material_id,
            "materialName": row.material_name,
            "requiredQuantity": _money(row.required_quantity),
            "unit": row.unit,
            "status": row.status,
            "createdAt": row.created_at,
            "updatedAt": row.updated_at,
            "supplierId": row.supplier_id,
            "unitPrice": _money(row.unit_price),
            "totalCost": _money(row.total_cost),
            "expectedDeliveryDate": row.expected_delivery_date,
            "notes": row.notes,
            "poId": row.po_id,
            "assignedBy": row.assigned_by,
        }
    )


def deserialize_preparation(preparation_id: str, raw: Mapping[str, Any]) -> PreparationRow:
    return PreparationRow(
        preparation_id=preparation_id,
        request_id=str(raw.get("requestId", "")),
        request_type=str(raw.get("requestType") or "material"),
        material_id=str(raw.get("materialId", "")),
        material_name=str(raw.get("materialName") or ""),
        required_quantity=_decimal(raw.get("requiredQuantity")),
        unit=str(raw.get("unit") or ""),
        status=str(raw.get("status", "")),
        created_at=str(raw.get("createdAt", "")),
        updated_at=str(raw.get("updatedAt", "")),
        supplier_id=_optional_str(raw.get("supplierId")),
        unit_price=_optional_decimal(raw.get("unitPrice")),
        total_cost=_optional_decimal(raw.get("totalCost")),
        expected_delivery_date=_optional_str(raw.get("expectedDeliveryDate")),
        notes=_optional_str(raw.get("notes")),
        po_id=_optional_str(raw.get("poId")),
        assigned_by=_optional_str(raw.get("assignedBy")),
    )


@dataclass(frozen=True)
class PurchaseOrderRow:
    """In-memory view of a single-material purchase order."""

    po_id: str
    po_number: str
    preparation_id: str
    request_id: str
    supplier_id: str
    material_id: str
    material_name: str
    quantity: Decimal
    unit: str
    unit_price: Decimal
    total_cost: Decimal
    status: str
    expected_delivery_date: str
    created_at: str
    updated_at: str
    total_received: Decimal = ZERO
    created_by: Optional[str] = None


def serialize_purchase_order(row: PurchaseOrderRow) -> Dict[str, Any]:
    return _compact(
        {
            "poNumber": row.po_number,
            "preparationId": row.preparation_id,
            "requestId": row.request_id,
            "supplierId": row.supplier_id,
            "materialId": row.material_id,
            "materialName": row.material_name,
            "quantity": _money(row.quantity),
            "unit": row.unit,
            "unitPrice": _money(row.unit_price),
            "totalCost": _money(row.total_cost),
            "status": row.status,
            "expectedDeliveryDate": row.expected_delivery_date,
            "createdAt": row.created_at,
            "updatedAt": row.updated_at,
            "totalReceived": _money(row.total_received),
            "createdBy": row.created_by,
        }
    )


def deserialize_purchase_order(po_id: str, raw: Mapping[str, Any]) -> PurchaseOrderRow:
    return PurchaseOrderRow(
        po_id=po_id,
        po_number=str(raw.get("poNumber", "")),
        preparation_id=str(raw.get("preparationId", "")),
        request_id=str(raw.get("requestId", "")),
        supplier_id=str(raw.get("supplierId", "")),
        material_id=str(raw.get("materialId", "")),
        material_name=str(raw.get("materialName") or ""),
        quantity=_decimal(raw.get("quantity")),
        unit=str(raw.get("unit") or ""),
        unit_price=_decimal(raw.get("unitPrice")),
        total_cost=_decimal(raw.get("totalCost")),
        status=str(raw.get("status", "")),
        expected_delivery_date=str(raw.get("expectedDeliveryDate") or ""),
        created_at=str(raw.get("createdAt", "")),
        updated_at=str(raw.get("updatedAt", "")),
        total_received=_decimal(raw.get("totalReceived")),
        created_by=_optional_str(raw.get("createdBy")),
    )


# ---------------------------------------------------------------------------
# Goods receipt and quality control
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GoodsReceiptItem:
    """A delivered line on a goods receipt note."""

    material_id: str
    material_name: str
    ordered_quantity: Decimal
    delivered_quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    unit: str = ""
    quality_grade: Optional[str] = None
    condition: Optional[str] = None
    batch_number: Optional[str] = None


@dataclass(frozen=True)
class GoodsReceiptRow:
    """In-memory view of a goods receipt note."""

    grn_id: str
    grn_number: str
    po_id: str
    supplier_id: str
    delivery_date: str
    items: Tuple[GoodsReceiptItem, ...]
    status: str
    total_amount: Decimal
    created_at: str
    updated_at: str
    received_by: Optional[str] = None
    po_number: Optional[str] = None
    qc_officer: Optional[str] = None
    qc_completed_at: Optional[str] = None
    qc_id: Optional[str] = None
    delivery_grade: Optional[str] = None
    rejection_reason: Optional[str] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None


def serialize_grn_item(item: GoodsReceiptItem) -> Dict[str, Any]:
    return _compact(
        {
            "materialId": item.material_id,
            "materialName": item.material_name,
            "orderedQuantity": _money(item.ordered_quantity),
            "deliveredQuantity": _money(item.delivered_quantity),
            "unitPrice": _money(item.unit_price),
            "totalPrice": _money(item.total_price),
            "unit": item.unit or None,
            "qualityGrade": item.quality_grade,
            "condition": item.condition,
            "batchNumber": item.batch_number,
        }
    )


def deserialize_grn_item(raw: Mapping[str, Any]) -> GoodsReceiptItem:
    return GoodsReceiptItem(
        material_id=str(raw.get("materialId", "")),
        material_name=str(raw.get("materialName") or ""),
        ordered_quantity=_decimal(raw.get("orderedQuantity")),
        delivered_quantity=_decimal(raw.get("deliveredQuantity")),
        unit_price=_decimal(raw.get("unitPrice")),
        total_price=_decimal(raw.get("totalPrice")),
        unit=str(raw.get("unit") or ""),
        quality_grade=_optional_str(raw.get("qualityGrade")),
        condition=_optional_str(raw.get("condition")),
        batch_number=_optional_str(raw.get("batchNumber")),
    )


def serialize_grn(row: GoodsReceiptRow) -> Dict[str, Any]:
    return _compact(
        {
            "grnNumber": row.grn_number,
            "poId": row.po_id,
            "supplierId": row.supplier_id,
            "deliveryDate": row.delivery_date,
            "items": [serialize_grn_item(item) for item in row.items],
            "status": row.status,
            "totalAmount": _money(row.total_amount),
            "createdAt": row.created_at,
            "updatedAt": row.updated_at,
            "receivedBy": row.received_by,
            "poNumber": row.po_number,
            "qcOfficer": row.qc_officer,
            "qcCompletedAt": row.qc_completed_at,
            "qcId": row.qc_id,
            "deliveryGrade": row.delivery_grade,
            "rejectionReason": row.rejection_reason,
            "invoiceId": row.invoice_id,
            "invoiceNumber": row.invoice_number,
        }
    )


def deserialize_grn(grn_id: str, raw: Mapping[str, Any]) -> GoodsReceiptRow:
    return GoodsReceiptRow(
        grn_id=grn_id,
        grn_number=str(raw.get("grnNumber", "")),
        po_id=str(raw.get("poId", "")),
        supplier_id=str(raw.get("supplierId", "")),
        delivery_date=str(raw.get("deliveryDate") or ""),
        items=tuple(deserialize_grn_item(item) for item in raw.get("items") or ()),
        status=str(raw.get("status", "")),
        total_amount=_decimal(raw.get("totalAmount")),
        created_at=str(raw.get("createdAt", "")),
        updated_at=str(raw.get("updatedAt", "")),
        received_by=_optional_str(raw.get("receivedBy")),
        po_number=_optional_str(raw.get("poNumber")),
        qc_officer=_optional_str(raw.get("qcOfficer")),
        qc_completed_at=_optional_str(raw.get("qcCompletedAt")),
        qc_id=_optional_str(raw.get("qcId")),
        delivery_grade=_optional_str(raw.get("deliveryGrade")),
        rejection_reason=_optional_str(raw.get("rejectionReason")),
        invoice_id=_optional_str(raw.get("invoiceId")),
        invoice_number=_optional_str(raw.get("invoiceNumber")),
    )


@dataclass(frozen=True)
class QCRecordRow:
    """Append-only audit entry produced by a passed quality inspection."""

    qc_id: str
    grn_id: str
    supplier_id: str
    overall_grade: str
    item_grades: Tuple[str, ...]
    qc_date: str
    qc_officer: Optional[str] = None


def serialize_qc_record(row: QCRecordRow) -> Dict[str, Any]:
    return _compact(
        {
            "grnId": row.grn_id,
            "supplierId": row.supplier_id,
            "overallGrade": row.overall_grade,
            "itemGrades": list(row.item_grades),
            "qcDate": row.qc_date,
            "qcOfficer": row.qc_officer,
        }
    )


def deserialize_qc_record(qc_id: str, raw: Mapping[str, Any]) -> QCRecordRow:
    return QCRecordRow(
        qc_id=qc_id,
        grn_id=str(raw.get("grnId") or raw.get("deliveryId") or ""),
        supplier_id=str(raw.get("supplierId", "")),
        overall_grade=str(raw.get("overallGrade", "")),
        item_grades=tuple(str(grade) for grade in raw.get("itemGrades") or ()),
        qc_date=str(raw.get("qcDate", "")),
        qc_officer=_optional_str(raw.get("qcOfficer")),
    )


# ---------------------------------------------------------------------------
# Suppliers, materials and stock
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a supplier and its rolling quality grade."""

    supplier_id: str
    name: str
    status: str
    current_grade: Optional[str] = None
    average_grade_points: Decimal = ZERO
    total_deliveries: int = 0
    last_delivery_grade: Optional[str] = None
    last_grade_update: Optional[str] = None
    contact: Optional[str] = None


def serialize_supplier(row: SupplierRow) -> Dict[str, Any]:
    return _compact(
        {
            "name": row.name,
            "status": row.status,
            "currentGrade": row.current_grade,
            "averageGradePoints": _money(row.average_grade_points),
            "totalDeliveries": row.total_deliveries,
            "lastDeliveryGrade": row.last_delivery_grade,
            "lastGradeUpdate": row.last_grade_update,
            "contact": row.contact,
        }
    )


def deserialize_supplier(supplier_id: str, raw: Mapping[str, Any]) -> SupplierRow:
    return SupplierRow(
        supplier_id=supplier_id,
        name=str(raw.get("name") or ""),
        status=str(raw.get("status") or "active"),
        current_grade=_optional_str(raw.get("currentGrade")),
        average_grade_points=_decimal(raw.get("averageGradePoints")),
        total_deliveries=int(raw.get("totalDeliveries") or 0),
        last_delivery_grade=_optional_str(raw.get("lastDeliveryGrade")),
        last_grade_update=_optional_str(raw.get("lastGradeUpdate")),
        contact=_optional_str(raw.get("contact")),
    )


@dataclass(frozen=True)
class MaterialRow:
    """In-memory view of a stocked raw or packing material."""

    material_id: str
    name: str
    unit: str
    material_type: str
    current_stock: Decimal
    reorder_level: Decimal
    last_received_at: Optional[str] = None
    last_supplier_id: Optional[str] = None


def serialize_material(row: MaterialRow) -> Dict[str, Any]:
    return _compact(
        {
            "name": row.name,
            "unit": row.unit,
            "materialType": row.material_type,
            "currentStock": _money(row.current_stock),
            "reorderLevel": _money(row.reorder_level),
            "lastReceivedAt": row.last_received_at,
            "lastSupplierId": row.last_supplier_id,
        }
    )


def deserialize_material(material_id: str, raw: Mapping[str, Any]) -> MaterialRow:
    return MaterialRow(
        material_id=material_id,
        name=str(raw.get("name") or ""),
        unit=str(raw.get("unit") or ""),
        material_type=str(raw.get("materialType") or "material"),
        current_stock=_decimal(raw.get("currentStock")),
        reorder_level=_decimal(raw.get("reorderLevel")),
        last_received_at=_optional_str(raw.get("lastReceivedAt")),
        last_supplier_id=_optional_str(raw.get("lastSupplierId")),
    )


@dataclass(frozen=True)
class StockMovementRow:
    """Append-only stock ledger entry."""

    movement_id: str
    material_id: str
    movement_type: str
    quantity: Decimal
    reason: str
    created_at: str
    reference: Optional[str] = None
    batch_number: Optional[str] = None
    supplier_id: Optional[str] = None
    created_by: Optional[str] = None


def serialize_stock_movement(row: StockMovementRow) -> Dict[str, Any]:
    return _compact(
        {
            "materialId": row.material_id,
            "type": row.movement_type,
            "quantity": _money(row.quantity),
            "reason": row.reason,
            "createdAt": row.created_at,
            "reference": row.reference,
            "batchNumber": row.batch_number,
            "supplierId": row.supplier_id,
            "createdBy": row.created_by,
        }
    )


def deserialize_stock_movement(movement_id: str, raw: Mapping[str, Any]) -> StockMovementRow:
    return StockMovementRow(
        movement_id=movement_id,
        material_id=str(raw.get("materialId", "")),
        movement_type=str(raw.get("type", "")),
        quantity=_decimal(raw.get("quantity")),
        reason=str(raw.get("reason") or ""),
        created_at=str(raw.get("createdAt", "")),
        reference=_optional_str(raw.get("reference")),
        batch_number=_optional_str(raw.get("batchNumber")),
        supplier_id=_optional_str(raw.get("supplierId")),
        created_by=_optional_str(raw.get("createdBy")),
    )


# ---------------------------------------------------------------------------
# Invoices and payments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceItem:
    """A billed line with its computed total."""

    material_id: str
    material_name: str
    quantity: Decimal
    unit_price: Decimal
    total: Decimal
    unit: str = ""
    quality_grade: Optional[str] = None
    batch_number: Optional[str] = None


@dataclass(frozen=True)
class InvoiceRow:
    """In-memory view of a payable invoice."""

    invoice_id: str
    invoice_number: str
    invoice_type: str
    supplier_id: str
    items: Tuple[InvoiceItem, ...]
    subtotal: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal
    currency: str
    status: str
    payment_status: str
    total_paid: Decimal
    remaining_amount: Decimal
    invoice_date: str
    due_date: str
    grn_id: Optional[str] = None
    grn_number: Optional[str] = None
    po_id: Optional[str] = None
    po_number: Optional[str] = None
    payment_terms: Optional[str] = None
    notes: Optional[str] = None
    created_by: Optional[str] = None
    updated_at: Optional[str] = None
    match_result: Optional[Mapping[str, Any]] = None
    last_payment_date: Optional[str] = None
    last_payment_method: Optional[str] = None
    last_payment_amount: Optional[Decimal] = None
    last_payment_reference: Optional[str] = None


def serialize_invoice_item(item: InvoiceItem) -> Dict[str, Any]:
    return _compact(
        {
            "materialId": item.material_id,
            "materialName": item.material_name,
            "quantity": _money(item.quantity),
            "unitPrice": _money(item.unit_price),
            "total": _money(item.total),
            "unit": item.unit or None,
            "qualityGrade": item.quality_grade,
            "batchNumber": item.batch_number,
        }
    )


def deserialize_invoice_item(raw: Mapping[str, Any]) -> InvoiceItem:
    return InvoiceItem(
        material_id=str(raw.get("materialId", "")),
        material_name=str(raw.get("materialName") or ""),
        quantity=_decimal(raw.get("quantity")),
        unit_price=_decimal(raw.get("unitPrice")),
        total=_decimal(raw.get("total")),
        unit=str(raw.get("unit") or ""),
        quality_grade=_optional_str(raw.get("qualityGrade")),
        batch_number=_optional_str(raw.get("batchNumber")),
    )


def serialize_invoice(row: InvoiceRow) -> Dict[str, Any]:
    return _compact(
        {
            "invoiceNumber": row.invoice_number,
            "invoiceType": row.invoice_type,
            "supplierId": row.supplier_id,
            "items": [serialize_invoice_item(item) for item in row.items],
            "subtotal": _money(row.subtotal),
            "tax": _money(row.tax),
            "discount": _money(row.discount),
            "total": _money(row.total),
            "currency": row.currency,
            "status": row.status,
            "paymentStatus": row.payment_status,
            "totalPaid": _money(row.total_paid),
            "remainingAmount": _money(row.remaining_amount),
            "invoiceDate": row.invoice_date,
            "dueDate": row.due_date,
            "grnId": row.grn_id,
            "grnNumber": row.grn_number,
            "poId": row.po_id,
            "poNumber": row.po_number,
            "paymentTerms": row.payment_terms,
            "notes": row.notes,
            "createdBy": row.created_by,
            "updatedAt": row.updated_at,
            "matchResult": dict(row.match_result) if row.match_result is not None else None,
            "lastPaymentDate": row.last_payment_date,
            "lastPaymentMethod": row.last_payment_method,
            "lastPaymentAmount": _money(row.last_payment_amount),
            "lastPaymentReference": row.last_payment_reference,
        }
    )


def deserialize_invoice(invoice_id: str, raw: Mapping[str, Any]) -> InvoiceRow:
    return InvoiceRow(
        invoice_id=invoice_id,
        invoice_number=str(raw.get("invoiceNumber", "")),
        invoice_type=str(raw.get("invoiceType") or "manual"),
        supplier_id=str(raw.get("supplierId", "")),
        items=tuple(deserialize_invoice_item(item) for item in raw.get("items") or ()),
        subtotal=_decimal(raw.get("subtotal")),
        tax=_decimal(raw.get("tax")),
        discount=_decimal(raw.get("discount")),
        total=_decimal(raw.get("total")),
        currency=str(raw.get("currency") or ""),
        status=str(raw.get("status", "")),
        payment_status=str(raw.get("paymentStatus", "")),
        total_paid=_decimal(raw.get("totalPaid")),
        remaining_amount=_decimal(raw.get("remainingAmount")),
        invoice_date=str(raw.get("invoiceDate", "")),
        due_date=str(raw.get("dueDate", "")),
        grn_id=_optional_str(raw.get("grnId")),
        grn_number=_optional_str(raw.get("grnNumber")),
        po_id=_optional_str(raw.get("poId")),
        po_number=_optional_str(raw.get("poNumber")),
        payment_terms=_optional_str(raw.get("paymentTerms")),
        notes=_optional_str(raw.get("notes")),
        created_by=_optional_str(raw.get("createdBy")),
        updated_at=_optional_str(raw.get("updatedAt")),
        match_result=raw.get("matchResult"),
        last_payment_date=_optional_str(raw.get("lastPaymentDate")),
        last_payment_method=_optional_str(raw.get("lastPaymentMethod")),
        last_payment_amount=_optional_decimal(raw.get("lastPaymentAmount")),
        last_payment_reference=_optional_str(raw.get("lastPaymentReference")),
    )


@dataclass(frozen=True)
class PaymentRow:
    """Append-only payment ledger entry."""

    payment_id: str
    payment_number: str
    invoice_id: str
    supplier_id: str
    amount: Decimal
    method: str
    payment_date: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None


def serialize_payment(row: PaymentRow) -> Dict[str, Any]:
    return _compact(
        {
            "paymentNumber": row.payment_number,
            "invoiceId": row.invoice_id,
            "supplierId": row.supplier_id,
            "amount": _money(row.amount),
            "method": row.method,
            "paymentDate": row.payment_date,
            "reference": row.reference,
            "notes": row.notes,
            "recordedBy": row.recorded_by,
        }
    )


def deserialize_payment(payment_id: str, raw: Mapping[str, Any]) -> PaymentRow:
    return PaymentRow(
        payment_id=payment_id,
        payment_number=str(raw.get("paymentNumber", "")),
        invoice_id=str(raw.get("invoiceId", "")),
        supplier_id=str(raw.get("supplierId") or ""),
        amount=_decimal(raw.get("amount")),
        method=str(raw.get("method") or ""),
        payment_date=str(raw.get("paymentDate", "")),
        reference=_optional_str(raw.get("reference")),
        notes=_optional_str(raw.get("notes")),
        recorded_by=_optional_str(raw.get("recordedBy")),
    )


@dataclass(frozen=True)
class NotificationRow:
    """A message delivered to one user's inbox."""

    notification_id: str
    notification_type: str
    message: str
    status: str
    created_at: str
    data: Mapping[str, Any] = field(default_factory=dict)


def deserialize_notification(notification_id: str, raw: Mapping[str, Any]) -> NotificationRow:
    return NotificationRow(
        notification_id=notification_id,
        notification_type=str(raw.get("type", "")),
        message=str(raw.get("message") or ""),
        status=str(raw.get("status") or "unread"),
        created_at=str(raw.get("createdAt", "")),
        data=dict(raw.get("data") or {}),
    )


RowT = TypeVar("RowT")


def deserialize_many(
    raw_collection: Optional[Mapping[str, Any]],
    deserializer: Callable[[str, Mapping[str, Any]], RowT],
) -> List[RowT]:
    """Deserialize every child of a collection node, in key (creation) order."""

    if not raw_collection:
        return []
    return [deserializer(record_id, raw) for record_id, raw in sorted(raw_collection.items()) if isinstance(raw, Mapping)]


