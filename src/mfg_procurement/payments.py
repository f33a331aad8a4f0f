"""Payment reconciliation.

Payments are an append-only ledger. An invoice's ``totalPaid``,
``remainingAmount`` and ``paymentStatus`` are never trusted as running
totals: every new payment replays the ledger for its invoice before
validating the amount, and the payment append and invoice update commit in
the same store transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from . import log
from .constants import Collection, DocumentPrefix, PaymentMethod, PaymentStatus
from .core_logic import (
    InvalidAmountError,
    RuntimeContext,
    ValidationError,
    _iso,
    _resolve_timestamp,
    read_collection,
)
from .invoicing import get_invoice
from .ledger_store import join_path
from .numbering import next_document_number
from .records import InvoiceRow, PaymentRow, deserialize_many, deserialize_payment, serialize_payment


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for settling (part of) an invoice."""

    invoice_id: str
    amount: Decimal
    method: PaymentMethod
    payment_date: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    recorded_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentOutcome:
    payment: PaymentRow
    invoice: InvoiceRow


def payment_status_for(total_paid: Decimal, remaining: Decimal) -> PaymentStatus:
    if remaining <= 0:
        return PaymentStatus.PAID
    if total_paid > 0:
        return PaymentStatus.PARTIALLY_PAID
    return PaymentStatus.PENDING


def list_payments(
    context: RuntimeContext,
    *,
    invoice_id: Optional[str] = None,
    supplier_id: Optional[str] = None,
) -> List[PaymentRow]:
    rows = deserialize_many(read_collection(context, Collection.PAYMENTS, tolerate_denied=True), deserialize_payment)
    if invoice_id is not None:
        rows = [row for row in rows if row.invoice_id == invoice_id]
    if supplier_id is not None:
        rows = [row for row in rows if row.supplier_id == supplier_id]
    return rows


def _paid_so_far(context: RuntimeContext, invoice_id: str) -> List[PaymentRow]:
    rows = deserialize_many(read_collection(context, Collection.PAYMENTS), deserialize_payment)
    return [row for row in rows if row.invoice_id == invoice_id]


def replay_invoice_payments(context: RuntimeContext, invoice_id: str) -> InvoiceRow:
    """Recompute an invoice's payment aggregates from the payment ledger.

    ``totalPaid`` is the sum of all payments, ``remainingAmount`` is
    ``total - totalPaid`` floored at zero and ``paymentStatus`` follows from
    both. The ``lastPayment*`` fields describe the latest payment.

    Returns:
        InvoiceRow: The invoice after the write.

    Raises:
        NotFoundError: If the invoice is unknown.
    """
    with context.store.transaction():
        invoice = get_invoice(context, invoice_id)
        payments = _paid_so_far(context, invoice_id)
        total_paid = sum((payment.amount for payment in payments), Decimal("0"))
        remaining = max(Decimal("0"), invoice.total - total_paid)
        fields = {
            "totalPaid": str(total_paid),
            "remainingAmount": str(remaining),
            "paymentStatus": payment_status_for(total_paid, remaining).value,
        }
        if payments:
            last = payments[-1]
            fields.update(
                {
                    "lastPaymentDate": last.payment_date,
                    "lastPaymentMethod": last.method,
                    "lastPaymentAmount": str(last.amount),
                    "lastPaymentReference": last.reference,
                }
            )
        context.store.update(join_path(Collection.INVOICES.value, invoice_id), fields)
    return get_invoice(context, invoice_id)


def record_payment(context: RuntimeContext, command: PaymentCommand) -> PaymentOutcome:
    """Append a payment and bring the invoice's aggregates up to date.

    Args:
        context (RuntimeContext): Runtime context holding the ledger store.
        command (PaymentCommand): The payment to record.

    Returns:
        PaymentOutcome: The stored payment and the updated invoice.

    Raises:
        InvalidAmountError: If the amount is not positive or exceeds the
            remaining balance.
        ValidationError: If the payment method is not supported.
        NotFoundError: If the invoice is unknown.
    """
    if command.amount <= 0:
        log.error("Rejected non-positive payment of %s for invoice '%s'", command.amount, command.invoice_id)
        raise InvalidAmountError("Payment amount must be greater than zero")
    try:
        method = PaymentMethod(command.method)
    except ValueError as exc:
        log.error("Unsupported payment method provided: %s", command.method)
        raise ValidationError(f"Unsupported payment method: {command.method}") from exc

    moment = _resolve_timestamp(command.timestamp)
    with context.store.transaction():
        invoice = replay_invoice_payments(context, command.invoice_id)
        if command.amount > invoice.remaining_amount:
            log.warning(
                "Payment of %s exceeds the %s remaining on invoice %s",
                command.amount,
                invoice.remaining_amount,
                invoice.invoice_number,
            )
            raise InvalidAmountError(
                f"Payment of {command.amount} exceeds the remaining {invoice.remaining_amount}"
            )
        payment = PaymentRow(
            payment_id="",
            payment_number=next_document_number(context.store, DocumentPrefix.PAYMENT, moment),
            invoice_id=command.invoice_id,
            supplier_id=invoice.supplier_id,
            amount=command.amount,
            method=method.value,
            payment_date=command.payment_date or moment.date().isoformat(),
            reference=command.reference,
            notes=command.notes,
            recorded_by=command.recorded_by,
        )
        payment_id = context.store.append(Collection.PAYMENTS.value, serialize_payment(payment))
        context.store.update(join_path(Collection.INVOICES.value, command.invoice_id), {"updatedAt": _iso(moment)})
        invoice = replay_invoice_payments(context, command.invoice_id)

    log.info(
        "Recorded payment %s of %s on invoice %s (remaining=%s, status=%s)",
        payment.payment_number,
        command.amount,
        invoice.invoice_number,
        invoice.remaining_amount,
        invoice.payment_status,
    )
    return PaymentOutcome(payment=replace(payment, payment_id=payment_id), invoice=invoice)
