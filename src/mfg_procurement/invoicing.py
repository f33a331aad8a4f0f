"""Invoice generation and the 3-way match.

Invoices come from two places: an accepted goods receipt
(:func:`create_invoice_from_grn`, one invoice per GRN at most) or manual
entry (:func:`create_invoice`). Tax, discount and payment terms come from
the ``[Invoicing]`` section of ``config.ini``. :func:`perform_three_way_match`
compares an invoice against its purchase order and goods receipt and flags
variances for review without blocking anything.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from . import log, notifications
from .allocation import get_purchase_order
from .constants import (
    PRICE_VARIANCE_TOLERANCE,
    Collection,
    DocumentPrefix,
    InvoiceStatus,
    InvoiceType,
    PaymentStatus,
    Role,
)
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
    require_positive_quantity,
    require_text,
)
from .inventory import credit_stock_from_grn
from .ledger_store import join_path
from .numbering import next_document_number
from .records import (
    GoodsReceiptRow,
    InvoiceItem,
    InvoiceRow,
    deserialize_grn,
    deserialize_invoice,
    deserialize_many,
    serialize_invoice,
)
from .suppliers import get_supplier
from .workflows import GOODS_RECEIPT_WORKFLOW


@dataclass(frozen=True)
class InvoiceLine:
    """A manually keyed invoice line."""

    material_id: str
    material_name: str
    quantity: Decimal
    unit_price: Decimal
    unit: str = ""


@dataclass(frozen=True)
class InvoiceCommand:
    """User intent for a manual invoice."""

    supplier_id: str
    items: Sequence[InvoiceLine]
    notes: Optional[str] = None
    po_id: Optional[str] = None
    grn_id: Optional[str] = None
    created_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class LineVariance:
    material_id: str
    invoice_quantity: Decimal
    grn_quantity: Optional[Decimal]
    invoice_price: Decimal
    po_price: Optional[Decimal]

    @property
    def quantity_variance(self) -> Optional[Decimal]:
        return None if self.grn_quantity is None else self.invoice_quantity - self.grn_quantity

    @property
    def price_variance(self) -> Optional[Decimal]:
        return None if self.po_price is None else self.invoice_price - self.po_price

    def serialize(self) -> Dict[str, Any]:
        return {
            "materialId": self.material_id,
            "invoiceQuantity": str(self.invoice_quantity),
            "grnQuantity": None if self.grn_quantity is None else str(self.grn_quantity),
            "quantityVariance": None if self.quantity_variance is None else str(self.quantity_variance),
            "invoicePrice": str(self.invoice_price),
            "poPrice": None if self.po_price is None else str(self.po_price),
            "priceVariance": None if self.price_variance is None else str(self.price_variance),
        }


@dataclass(frozen=True)
class MatchResult:
    invoice_id: str
    variances: List[LineVariance]
    status: InvoiceStatus

    @property
    def has_variance(self) -> bool:
        return bool(self.variances)


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------


def compute_totals(
    items: Sequence[InvoiceItem], *, tax_rate: Decimal, discount_rate: Decimal
) -> tuple[Decimal, Decimal, Decimal, Decimal]:
    """Return ``(subtotal, tax, discount, total)`` for invoice lines.

    ``total = subtotal + tax - discount`` where tax and discount are rates
    applied to the subtotal. No rounding is applied.
    """
    subtotal = sum((item.total for item in items), Decimal("0"))
    tax = subtotal * tax_rate
    discount = subtotal * discount_rate
    return subtotal, tax, discount, subtotal + tax - discount


def _due_date(context: RuntimeContext, moment: datetime) -> str:
    return (moment + timedelta(days=context.settings.payment_terms_days)).date().isoformat()


def _append_invoice(context: RuntimeContext, row: InvoiceRow) -> InvoiceRow:
    invoice_id = context.store.append(Collection.INVOICES.value, serialize_invoice(row))
    return get_invoice(context, invoice_id)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def create_invoice_from_grn(
    context: RuntimeContext,
    grn_id: str,
    *,
    created_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> InvoiceRow:
    """Create the payable invoice for an accepted goods receipt.

    Stock for the receipt is credited first (a no-op when approval already
    credited it). The invoice copies the delivered lines, applies the
    configured tax and discount rates, is due after the configured payment
    terms, and starts ``verified`` and unpaid. The GRN is linked back and
    moves to ``invoiced``.

    Args:
        context (RuntimeContext): Runtime context holding the ledger store.
        grn_id (str): Accepted goods receipt to bill.
        created_by (str | None): Actor recorded on the invoice.
        timestamp (datetime | None): Invoice date.

    Returns:
        InvoiceRow: The new invoice.

    Raises:
        DuplicateOperationError: If the GRN already has an invoice;
            ``existing_id`` names it.
        InvalidStateError: If the GRN has not passed quality control.
        NotFoundError: If the GRN or its purchase order is unknown.
    """
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        grn = deserialize_grn(grn_id, fetch_record(context, Collection.GOODS_RECEIPTS, grn_id, label="goods receipt"))
        existing = grn.invoice_id or next((row.invoice_id for row in invoices_for_grn(context, grn_id)), None)
        if existing:
            log.warning("Goods receipt %s is already invoiced as '%s'", grn.grn_number, existing)
            raise DuplicateOperationError(
                f"Goods receipt {grn.grn_number} already has invoice '{existing}'", existing_id=existing
            )
        transition = GOODS_RECEIPT_WORKFLOW.transition(grn.status, "invoice")

        credit_stock_from_grn(context, grn, credited_by=created_by, timestamp=moment)
        order = get_purchase_order(context, grn.po_id)
        items = _items_from_grn(grn)
        subtotal, tax, discount, total = compute_totals(
            items,
            tax_rate=context.settings.tax_rate,
            discount_rate=context.settings.discount_rate,
        )
        invoice = _append_invoice(
            context,
            InvoiceRow(
                invoice_id="",
                invoice_number=next_document_number(context.store, DocumentPrefix.INVOICE, moment),
                invoice_type=InvoiceType.GRN_BASED.value,
                supplier_id=grn.supplier_id,
                items=items,
                subtotal=subtotal,
                tax=tax,
                discount=discount,
                total=total,
                currency=context.settings.currency,
                status=InvoiceStatus.VERIFIED.value,
                payment_status=PaymentStatus.PENDING.value,
                total_paid=Decimal("0"),
                remaining_amount=total,
                invoice_date=_iso(moment),
                due_date=_due_date(context, moment),
                grn_id=grn_id,
                grn_number=grn.grn_number,
                po_id=order.po_id,
                po_number=order.po_number,
                payment_terms=f"Net {context.settings.payment_terms_days} days",
                created_by=created_by,
                updated_at=_iso(moment),
            ),
        )

        grn_path = join_path(Collection.GOODS_RECEIPTS.value, grn_id)
        if not context.store.compare_and_set(join_path(grn_path, "status"), grn.status, transition.to_state):
            raise InvalidStateError(f"Goods receipt '{grn_id}' was modified concurrently")
        context.store.update(
            grn_path,
            {"invoiceId": invoice.invoice_id, "invoiceNumber": invoice.invoice_number, "updatedAt": _iso(moment)},
        )
        notifications.dispatch(
            context.notifier,
            Role.ACCOUNTS,
            notification_type="invoice_created",
            message=f"Invoice {invoice.invoice_number} for {invoice.currency} {invoice.total} is ready for payment",
            data={"invoiceId": invoice.invoice_id, "grnId": grn_id, "dueDate": invoice.due_date},
            moment=moment,
        )

    log.info(
        "Created invoice %s from goods receipt %s (total=%s)",
        invoice.invoice_number,
        grn.grn_number,
        invoice.total,
    )
    return invoice


def _items_from_grn(grn: GoodsReceiptRow) -> tuple[InvoiceItem, ...]:
    return tuple(
        InvoiceItem(
            material_id=item.material_id,
            material_name=item.material_name,
            quantity=item.delivered_quantity,
            unit_price=item.unit_price,
            total=item.delivered_quantity * item.unit_price,
            unit=item.unit,
            quality_grade=item.quality_grade,
            batch_number=item.batch_number,
        )
        for item in grn.items
        if item.delivered_quantity > 0
    )


def create_invoice(context: RuntimeContext, command: InvoiceCommand) -> InvoiceRow:
    """Record a manually keyed invoice awaiting verification.

    Raises:
        ValidationError: If there are no lines or a line is malformed.
        NotFoundError: If the supplier is unknown.
    """
    if not command.items:
        log.error("Rejected manual invoice without lines for supplier '%s'", command.supplier_id)
        raise ValidationError("An invoice needs at least one line")
    for line in command.items:
        require_text(line.material_id, label="Material id")
        require_positive_quantity(line.quantity)
        require_nonnegative_money(line.unit_price, label="Unit price")

    moment = _resolve_timestamp(command.timestamp)
    items = tuple(
        InvoiceItem(
            material_id=line.material_id,
            material_name=line.material_name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total=line.quantity * line.unit_price,
            unit=line.unit,
        )
        for line in command.items
    )
    subtotal, tax, discount, total = compute_totals(
        items,
        tax_rate=context.settings.tax_rate,
        discount_rate=context.settings.discount_rate,
    )
    with context.store.transaction():
        get_supplier(context, command.supplier_id)
        po_number = get_purchase_order(context, command.po_id).po_number if command.po_id else None
        invoice = _append_invoice(
            context,
            InvoiceRow(
                invoice_id="",
                invoice_number=next_document_number(context.store, DocumentPrefix.INVOICE, moment),
                invoice_type=InvoiceType.MANUAL.value,
                supplier_id=command.supplier_id,
                items=items,
                subtotal=subtotal,
                tax=tax,
                discount=discount,
                total=total,
                currency=context.settings.currency,
                status=InvoiceStatus.PENDING_VERIFICATION.value,
                payment_status=PaymentStatus.PENDING.value,
                total_paid=Decimal("0"),
                remaining_amount=total,
                invoice_date=_iso(moment),
                due_date=_due_date(context, moment),
                grn_id=command.grn_id,
                po_id=command.po_id,
                po_number=po_number,
                payment_terms=f"Net {context.settings.payment_terms_days} days",
                notes=command.notes,
                created_by=command.created_by,
                updated_at=_iso(moment),
            ),
        )
    log.info("Created manual invoice %s for supplier '%s' (total=%s)", invoice.invoice_number, command.supplier_id, total)
    return invoice


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def get_invoice(context: RuntimeContext, invoice_id: str) -> InvoiceRow:
    raw = fetch_record(context, Collection.INVOICES, invoice_id, label="invoice")
    return deserialize_invoice(invoice_id, raw)


def list_invoices(
    context: RuntimeContext,
    *,
    status: Optional[InvoiceStatus] = None,
    payment_status: Optional[PaymentStatus] = None,
    supplier_id: Optional[str] = None,
) -> List[InvoiceRow]:
    rows = deserialize_many(read_collection(context, Collection.INVOICES, tolerate_denied=True), deserialize_invoice)
    if status is not None:
        rows = [row for row in rows if row.status == InvoiceStatus(status).value]
    if payment_status is not None:
        rows = [row for row in rows if row.payment_status == PaymentStatus(payment_status).value]
    if supplier_id is not None:
        rows = [row for row in rows if row.supplier_id == supplier_id]
    return rows


def invoices_for_grn(context: RuntimeContext, grn_id: str) -> List[InvoiceRow]:
    rows = deserialize_many(read_collection(context, Collection.INVOICES), deserialize_invoice)
    return [row for row in rows if row.grn_id == grn_id]


# ---------------------------------------------------------------------------
# 3-way match
# ---------------------------------------------------------------------------


def perform_three_way_match(
    context: RuntimeContext,
    invoice_id: str,
    po_id: str,
    grn_id: str,
    *,
    timestamp: Optional[datetime] = None,
) -> MatchResult:
    """Reconcile an invoice against its purchase order and goods receipt.

    A line is a variance when its quantity differs from the delivered
    quantity at all, or its unit price differs from the ordered price by
    more than ``PRICE_VARIANCE_TOLERANCE``. Lines whose material is absent
    from the PO or GRN are variances too. The invoice moves to
    ``variance_review`` when any variance exists, else to ``verified``, and
    the findings are stored as ``matchResult``.

    Raises:
        NotFoundError: If any of the three documents is unknown.
    """
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        invoice = get_invoice(context, invoice_id)
        order = get_purchase_order(context, po_id)
        grn = deserialize_grn(grn_id, fetch_record(context, Collection.GOODS_RECEIPTS, grn_id, label="goods receipt"))
        delivered = {}
        for item in grn.items:
            delivered[item.material_id] = delivered.get(item.material_id, Decimal("0")) + item.delivered_quantity

        variances: List[LineVariance] = []
        for line in invoice.items:
            po_price = order.unit_price if order.material_id == line.material_id else None
            grn_quantity = delivered.get(line.material_id)
            candidate = LineVariance(
                material_id=line.material_id,
                invoice_quantity=line.quantity,
                grn_quantity=grn_quantity,
                invoice_price=line.unit_price,
                po_price=po_price,
            )
            quantity_off = grn_quantity is None or abs(candidate.quantity_variance) > 0
            price_off = po_price is None or abs(candidate.price_variance) > PRICE_VARIANCE_TOLERANCE
            if quantity_off or price_off:
                variances.append(candidate)

        status = InvoiceStatus.VARIANCE_REVIEW if variances else InvoiceStatus.VERIFIED
        context.store.update(
            join_path(Collection.INVOICES.value, invoice_id),
            {
                "status": status.value,
                "matchResult": {
                    "poId": po_id,
                    "grnId": grn_id,
                    "hasVariance": bool(variances),
                    "variances": [variance.serialize() for variance in variances],
                    "matchedAt": _iso(moment),
                },
                "updatedAt": _iso(moment),
            },
        )

    if variances:
        log.warning("Invoice %s has %d variances against PO and GRN", invoice.invoice_number, len(variances))
    else:
        log.info("Invoice %s matches its PO and GRN", invoice.invoice_number)
    return MatchResult(invoice_id=invoice_id, variances=variances, status=status)
