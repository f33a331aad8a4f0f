"""Unit tests for supplier allocation and purchase order issuance."""

from __future__ import annotations

from decimal import Decimal

import pytest

from mfg_procurement import allocation, core_logic, receiving
from mfg_procurement.constants import PreparationStatus, PurchaseOrderStatus
from mfg_procurement.allocation import AllocationLine


def _line(supplier_id, quantity, price, date="2025-03-20", notes=None):
    return AllocationLine(supplier_id, Decimal(quantity), Decimal(price), date, notes)


def test_split_allocation_issues_one_order_per_supplier(approve_request, context, moment):
    request = approve_request(Decimal("100"))

    result = allocation.allocate(
        context,
        request.preparation_id,
        [_line("SUP-X", "60", "2.50"), _line("SUP-Y", "40", "2.40")],
        assigned_by="ho-1",
        timestamp=moment,
    )

    rows = allocation.list_preparations(context, request_id=request.requisition_id)
    assert sorted((row.supplier_id, row.required_quantity) for row in rows) == [
        ("SUP-X", Decimal("60")),
        ("SUP-Y", Decimal("40")),
    ]
    assert {row.status for row in rows} == {PreparationStatus.SUPPLIER_ASSIGNED.value}
    assert [order.po_number for order in result.purchase_orders] == ["PO20250001", "PO20250002"]
    first, second = result.purchase_orders
    assert first.total_cost == Decimal("150.00")
    assert second.total_cost == Decimal("96.00")
    assert {order.status for order in result.purchase_orders} == {PurchaseOrderStatus.ISSUED.value}
    assert all(row.po_id for row in result.preparations)


def test_allocation_claims_the_unassigned_row_first(approve_request, context, moment):
    request = approve_request()

    result = allocation.allocate(context, request.preparation_id, [_line("SUP-X", "100", "2")], timestamp=moment)

    assert [row.preparation_id for row in result.preparations] == [request.preparation_id]
    assert len(allocation.list_preparations(context, request_id=request.requisition_id)) == 1


def test_reallocating_same_supplier_revises_in_place(approve_request, context, moment):
    request = approve_request()
    allocation.allocate(context, request.preparation_id, [_line("SUP-X", "60", "2.50")], timestamp=moment)

    result = allocation.allocate(context, request.preparation_id, [_line("SUP-X", "80", "2.00")], timestamp=moment)

    assert len(allocation.list_preparations(context, request_id=request.requisition_id)) == 1
    orders = allocation.list_purchase_orders(context)
    assert len(orders) == 1
    assert orders[0].po_number == "PO20250001"
    assert orders[0].quantity == Decimal("80")
    assert orders[0].total_cost == Decimal("160.00")
    assert result.preparations[0].total_cost == Decimal("160.00")


def test_over_allocation_is_rejected_without_writes(approve_request, context, moment, store):
    request = approve_request(Decimal("100"))
    before = store.snapshot()

    with pytest.raises(core_logic.OverAllocationError):
        allocation.allocate(
            context,
            request.preparation_id,
            [_line("SUP-X", "60", "2.50"), _line("SUP-Y", "50", "2.40")],
            timestamp=moment,
        )

    assert store.snapshot() == before


def test_over_allocation_counts_rows_kept_for_other_suppliers(approve_request, context, moment):
    request = approve_request(Decimal("100"))
    allocation.allocate(context, request.preparation_id, [_line("SUP-X", "70", "2")], timestamp=moment)

    with pytest.raises(core_logic.OverAllocationError):
        allocation.allocate(context, request.preparation_id, [_line("SUP-Y", "40", "2")], timestamp=moment)


def test_incomplete_lines_are_skipped(approve_request, context, moment):
    request = approve_request()

    result = allocation.allocate(
        context,
        request.preparation_id,
        [
            _line("SUP-X", "50", "2"),
            AllocationLine("SUP-Y", Decimal("50"), None, "2025-03-20"),
            AllocationLine(None, Decimal("10"), Decimal("2"), "2025-03-20"),
        ],
        timestamp=moment,
    )

    assert [order.supplier_id for order in result.purchase_orders] == ["SUP-X"]


def test_duplicate_supplier_lines_are_rejected(approve_request, context, moment):
    request = approve_request()

    with pytest.raises(core_logic.ValidationError):
        allocation.allocate(
            context,
            request.preparation_id,
            [_line("SUP-X", "50", "2"), _line("SUP-X", "20", "2")],
            timestamp=moment,
        )


def test_unknown_supplier_rolls_back(approve_request, context, moment):
    request = approve_request()

    with pytest.raises(core_logic.NotFoundError):
        allocation.allocate(context, request.preparation_id, [_line("SUP-NOPE", "50", "2")], timestamp=moment)

    assert allocation.list_purchase_orders(context) == []
    assert allocation.get_preparation(context, request.preparation_id).supplier_id is None


def test_delivered_row_cannot_be_reallocated(approve_request, context, moment):
    request = approve_request()
    result = allocation.allocate(context, request.preparation_id, [_line("SUP-X", "100", "2")], timestamp=moment)
    receiving.create_grn(
        context,
        result.purchase_orders[0].po_id,
        [receiving.ReceiptLine("M-SUGAR", Decimal("100"))],
        timestamp=moment,
    )

    with pytest.raises(core_logic.InvalidStateError):
        allocation.allocate(context, request.preparation_id, [_line("SUP-X", "90", "2")], timestamp=moment)


def test_close_requires_full_receipt(approve_request, context, moment):
    request = approve_request()
    order = allocation.allocate(
        context, request.preparation_id, [_line("SUP-X", "100", "2")], timestamp=moment
    ).purchase_orders[0]

    with pytest.raises(core_logic.InvalidStateError):
        allocation.close_purchase_order(context, order.po_id)

    receiving.create_grn(context, order.po_id, [receiving.ReceiptLine("M-SUGAR", Decimal("100"))], timestamp=moment)
    closed = allocation.close_purchase_order(context, order.po_id, timestamp=moment)

    assert closed.status == PurchaseOrderStatus.CLOSED.value
