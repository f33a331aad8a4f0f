"""Supplier registry and the Supplier Grading Engine.

Grades are derived, never typed in: each passed quality inspection appends
a QC record, and :func:`regrade` recomputes the supplier's letter grade from
every QC record on file for that supplier. Because the average is a plain
sum over history, replaying the records in any order yields the same grade.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Optional

from . import log
from .constants import GRADE_POINTS, GRADE_THRESHOLDS, Collection, QualityGrade, SupplierStatus
from .core_logic import (
    DuplicateOperationError,
    RuntimeContext,
    ValidationError,
    _iso,
    _resolve_timestamp,
    fetch_record,
    read_collection,
    require_text,
)
from .ledger_store import join_path
from .records import (
    QCRecordRow,
    SupplierRow,
    deserialize_many,
    deserialize_qc_record,
    deserialize_supplier,
    serialize_supplier,
)


@dataclass(frozen=True)
class SupplierGrade:
    """Summary of a supplier's standing, as shown next to allocation choices."""

    supplier_id: str
    grade: Optional[QualityGrade]
    average_points: Decimal
    total_deliveries: int
    last_delivery_grade: Optional[QualityGrade]
    is_new: bool


# ---------------------------------------------------------------------------
# Grade arithmetic
# ---------------------------------------------------------------------------


def parse_grade(raw: object) -> QualityGrade:
    """Return ``raw`` as a :class:`QualityGrade`.

    Raises:
        ValidationError: If ``raw`` is not one of ``A``-``D``.
    """
    try:
        return QualityGrade(str(raw).strip().upper())
    except ValueError as exc:
        log.error("Invalid quality grade: %r", raw)
        raise ValidationError(f"Invalid quality grade: {raw!r}") from exc


def grade_points(grade: object) -> int:
    return GRADE_POINTS[parse_grade(grade)]


def grade_for_points(average: Decimal) -> QualityGrade:
    """Map an average grade-point value to its letter grade."""

    for lower_bound, grade in GRADE_THRESHOLDS:
        if average >= lower_bound:
            return grade
    return QualityGrade.D


def average_points(grades: Iterable[object]) -> Decimal:
    """Average grade points of ``grades``; zero for an empty input."""

    points = [grade_points(grade) for grade in grades]
    if not points:
        return Decimal("0")
    return Decimal(sum(points)) / Decimal(len(points))


def delivery_grade(item_grades: Iterable[object]) -> QualityGrade:
    """Letter grade of one delivery from the grades of its items.

    Raises:
        ValidationError: If no item grade is supplied.
    """
    grades = list(item_grades)
    if not grades:
        raise ValidationError("At least one item grade is required")
    return grade_for_points(average_points(grades))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def add_supplier(
    context: RuntimeContext,
    name: str,
    *,
    supplier_id: Optional[str] = None,
    contact: Optional[str] = None,
) -> SupplierRow:
    """Register a new, ungraded and active supplier.

    Raises:
        ValidationError: If ``name`` is blank.
        DuplicateOperationError: If ``supplier_id`` is already registered.
    """
    name = require_text(name, label="Supplier name")
    with context.store.transaction():
        row = SupplierRow(supplier_id="", name=name, status=SupplierStatus.ACTIVE.value, contact=contact)
        if supplier_id:
            path = join_path(Collection.SUPPLIERS.value, supplier_id)
            if context.store.read(path) is not None:
                log.warning("Supplier '%s' already exists", supplier_id)
                raise DuplicateOperationError(f"Supplier '{supplier_id}' already exists", existing_id=supplier_id)
            context.store.write(path, serialize_supplier(row))
        else:
            supplier_id = context.store.append(Collection.SUPPLIERS.value, serialize_supplier(row))
    log.info("Registered supplier '%s' (%s)", supplier_id, name)
    return get_supplier(context, supplier_id)


def get_supplier(context: RuntimeContext, supplier_id: str) -> SupplierRow:
    raw = fetch_record(context, Collection.SUPPLIERS, supplier_id, label="supplier")
    return deserialize_supplier(supplier_id, raw)


def list_suppliers(context: RuntimeContext, *, status: Optional[SupplierStatus] = None) -> List[SupplierRow]:
    rows = deserialize_many(read_collection(context, Collection.SUPPLIERS, tolerate_denied=True), deserialize_supplier)
    if status is not None:
        rows = [row for row in rows if row.status == SupplierStatus(status).value]
    return rows


def set_supplier_status(context: RuntimeContext, supplier_id: str, status: SupplierStatus) -> SupplierRow:
    status = SupplierStatus(status)
    with context.store.transaction():
        get_supplier(context, supplier_id)
        context.store.update(join_path(Collection.SUPPLIERS.value, supplier_id), {"status": status.value})
    log.info("Supplier '%s' is now %s", supplier_id, status.value)
    return get_supplier(context, supplier_id)


# ---------------------------------------------------------------------------
# Grading
# ---------------------------------------------------------------------------


def qc_records_for_supplier(context: RuntimeContext, supplier_id: str) -> List[QCRecordRow]:
    rows = deserialize_many(read_collection(context, Collection.QC_RECORDS), deserialize_qc_record)
    return [row for row in rows if row.supplier_id == supplier_id]


def regrade(
    context: RuntimeContext,
    supplier_id: str,
    new_delivery_grade: QualityGrade,
    *,
    timestamp: Optional[datetime] = None,
) -> SupplierRow:
    """Recompute a supplier's grade over its full QC history.

    The QC record for the new delivery must already be appended. The
    supplier's ``averageGradePoints`` becomes the mean of every QC record's
    overall grade points, ``currentGrade`` its threshold-mapped letter and
    ``totalDeliveries`` the number of QC records.

    Args:
        context (RuntimeContext): Runtime context holding the ledger store.
        supplier_id (str): Supplier to regrade.
        new_delivery_grade (QualityGrade): Grade of the delivery that
            triggered the recomputation.
        timestamp (datetime | None): Time recorded as ``lastGradeUpdate``.

    Returns:
        SupplierRow: The supplier after the update.

    Raises:
        NotFoundError: If the supplier is not registered.
    """
    new_delivery_grade = parse_grade(new_delivery_grade)
    moment = _resolve_timestamp(timestamp)
    with context.store.transaction():
        get_supplier(context, supplier_id)
        history = qc_records_for_supplier(context, supplier_id)
        average = average_points(record.overall_grade for record in history)
        current = grade_for_points(average) if history else new_delivery_grade
        context.store.update(
            join_path(Collection.SUPPLIERS.value, supplier_id),
            {
                "currentGrade": current.value,
                "averageGradePoints": str(average),
                "totalDeliveries": len(history),
                "lastDeliveryGrade": new_delivery_grade.value,
                "lastGradeUpdate": _iso(moment),
            },
        )
    log.info(
        "Regraded supplier '%s': grade=%s average=%s deliveries=%d",
        supplier_id,
        current.value,
        average,
        len(history),
    )
    return get_supplier(context, supplier_id)


def get_supplier_grade(context: RuntimeContext, supplier_id: str) -> SupplierGrade:
    """Return the grade summary of a supplier; ungraded suppliers are ``is_new``."""

    row = get_supplier(context, supplier_id)
    is_new = row.current_grade is None or row.total_deliveries == 0
    return SupplierGrade(
        supplier_id=supplier_id,
        grade=None if is_new else QualityGrade(row.current_grade),
        average_points=row.average_grade_points,
        total_deliveries=row.total_deliveries,
        last_delivery_grade=QualityGrade(row.last_delivery_grade) if row.last_delivery_grade else None,
        is_new=is_new,
    )


def supplier_quality_score(context: RuntimeContext, supplier_id: str) -> Decimal:
    """Average grade points as a percentage of the best grade (A = 100)."""

    row = get_supplier(context, supplier_id)
    best = Decimal(GRADE_POINTS[QualityGrade.A])
    return row.average_grade_points / best * Decimal("100")

