"""Enumerations shared across the procurement engine modules.

Centralises workflow states, grades and collection names so that the store
layer, the workflow services, and any presentation layer built on top rely
on a single source of truth for persisted identifiers.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"


class RequestType(str, Enum):
    """Enumerate the kinds of material a requisition may ask for."""

    MATERIAL = "material"
    PACKING_MATERIAL = "packing_material"


class RequisitionStatus(str, Enum):
    """Enumerate the states of the two-level approval chain."""

    PENDING_HO = "pending_ho"
    FORWARDED_TO_MD = "forwarded_to_md"
    MD_APPROVED = "md_approved"
    HO_REJECTED = "ho_rejected"
    MD_REJECTED = "md_rejected"


class PreparationStatus(str, Enum):
    """Enumerate the states of a purchase preparation row."""

    PENDING_SUPPLIER_ASSIGNMENT = "pending_supplier_assignment"
    SUPPLIER_ASSIGNED = "supplier_assigned"
    DELIVERED_PENDING_QC = "delivered_pending_qc"
    COMPLETED = "completed"
    QC_FAILED = "qc_failed"


class PurchaseOrderStatus(str, Enum):
    """Enumerate the receipt lifecycle of a purchase order."""

    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_RECEIVED = "partially_received"
    FULLY_RECEIVED = "fully_received"
    CLOSED = "closed"


class GoodsReceiptStatus(str, Enum):
    """Enumerate the quality-control lifecycle of a goods receipt note."""

    PENDING_QC = "pending_qc"
    QC_PASSED = "qc_passed"
    QC_FAILED = "qc_failed"
    INVOICED = "invoiced"


class InvoiceStatus(str, Enum):
    """Enumerate the verification states of an invoice."""

    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    VARIANCE_REVIEW = "variance_review"


class InvoiceType(str, Enum):
    """Distinguish invoices derived from a GRN from manually keyed ones."""

    GRN_BASED = "grn_based"
    MANUAL = "manual"


class PaymentStatus(str, Enum):
    """Enumerate the settlement states of an invoice."""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentMethod(str, Enum):
    """Enumerate supported settlement mechanisms."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    CHEQUE = "cheque"
    CARD = "card"
    OTHER = "other"


class QualityGrade(str, Enum):
    """Letter grades assigned during quality control."""

    A = "A"
    B = "B"
    C = "C"
    D = "D"


class ItemCondition(str, Enum):
    """Physical condition of a delivered line."""

    GOOD = "good"
    DAMAGED = "damaged"


class SupplierStatus(str, Enum):
    """Enumerate the lifecycle states of a supplier."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class MovementType(str, Enum):
    """Direction of a stock movement."""

    IN = "in"
    OUT = "out"


class Role(str, Enum):
    """Roles that act on, or are notified about, procurement documents."""

    WAREHOUSE_STAFF = "WarehouseStaff"
    HEAD_OF_OPERATIONS = "HeadOfOperations"
    MANAGING_DIRECTOR = "ManagingDirector"
    QC_OFFICER = "QCOfficer"
    ACCOUNTS = "Accounts"


class DocumentPrefix(str, Enum):
    """Prefixes of the sequential document numbers."""

    GRN = "GRN"
    INVOICE = "INV"
    PURCHASE_ORDER = "PO"
    PAYMENT = "PAY"


class Collection(str, Enum):
    """Top-level ledger paths; each one is persisted as a workbook sheet."""

    REQUISITIONS = "requisitions"
    PREPARATIONS = "purchasePreparations"
    PURCHASE_ORDERS = "purchaseOrders"
    GOODS_RECEIPTS = "goodsReceipts"
    QC_RECORDS = "qcRecords"
    SUPPLIERS = "suppliers"
    MATERIALS = "materials"
    STOCK_MOVEMENTS = "stockMovements"
    INVOICES = "invoices"
    PAYMENTS = "payments"
    NOTIFICATIONS = "notifications"
    ROLES = "roles"
    COUNTERS = "counters"


# Grade-point mapping used for per-delivery and supplier-wide averages.
GRADE_POINTS: dict[QualityGrade, int] = {
    QualityGrade.A: 4,
    QualityGrade.B: 3,
    QualityGrade.C: 2,
    QualityGrade.D: 1,
}

# Lower bounds (inclusive) of the average-to-letter mapping, best first.
GRADE_THRESHOLDS: tuple[tuple[Decimal, QualityGrade], ...] = (
    (Decimal("3.5"), QualityGrade.A),
    (Decimal("2.5"), QualityGrade.B),
    (Decimal("1.5"), QualityGrade.C),
)

# Invoice lines whose unit price differs from the PO by more than this are variances.
PRICE_VARIANCE_TOLERANCE = Decimal("0.01")


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "RequestType",
    "RequisitionStatus",
    "PreparationStatus",
    "PurchaseOrderStatus",
    "GoodsReceiptStatus",
    "InvoiceStatus",
    "InvoiceType",
    "PaymentStatus",
    "PaymentMethod",
    "QualityGrade",
    "ItemCondition",
    "SupplierStatus",
    "MovementType",
    "Role",
    "DocumentPrefix",
    "Collection",
    "GRADE_POINTS",
    "GRADE_THRESHOLDS",
    "PRICE_VARIANCE_TOLERANCE",
]
