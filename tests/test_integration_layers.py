"""Integration tests describing the end-to-end procurement workflows.

Each scenario runs against a workbook-backed runtime context and persists
and reloads the workbook between steps, so every step starts from what was
actually written to disk.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from mfg_procurement import (
    allocation,
    core_logic,
    inventory,
    invoicing,
    notifications,
    payments,
    receiving,
    requisitions,
    suppliers,
)
from mfg_procurement.constants import (
    GoodsReceiptStatus,
    PaymentMethod,
    PaymentStatus,
    PreparationStatus,
    PurchaseOrderStatus,
    QualityGrade,
    RequisitionStatus,
    Role,
)
from mfg_procurement.records import RequisitionItem


PRICE_X = Decimal("2.50")
PRICE_Y = Decimal("2.40")


def _reload(context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    core_logic.persist_context(context)
    return core_logic.refresh_context(context)


@pytest.fixture
def plant_context(config_factory):
    """Workbook-backed context with role subscribers and master data."""

    bundle = config_factory(
        role_subscribers={
            Role.HEAD_OF_OPERATIONS: ["ho-1"],
            Role.MANAGING_DIRECTOR: ["md-1"],
            Role.QC_OFFICER: ["qc-1"],
            Role.ACCOUNTS: ["acc-1"],
        }
    )
    context = core_logic.load_runtime_context(bundle.config_path)
    core_logic.ensure_schema_version(context)
    inventory.register_material(context, "M-SUGAR", "Sugar", unit="kg", reorder_level=Decimal("50"))
    suppliers.add_supplier(context, "Supplier X", supplier_id="SUP-X")
    suppliers.add_supplier(context, "Supplier Y", supplier_id="SUP-Y")
    return _reload(context)


def _split_allocation(context):
    requisition = requisitions.submit(
        context,
        requisitions.RequisitionCommand(
            items=[RequisitionItem("M-SUGAR", "Sugar", Decimal("100"), "kg")],
            requested_by="wh-1",
        ),
    )
    context = _reload(context)
    requisitions.ho_approve(context, requisition.requisition_id, approved_by="ho-1", comments="Needed for batch 12")
    context = _reload(context)
    requisitions.md_approve(context, requisition.requisition_id, approved_by="md-1")
    context = _reload(context)

    [preparation] = allocation.list_preparations(context, request_id=requisition.requisition_id)
    allocation.allocate(
        context,
        preparation.preparation_id,
        [
            allocation.AllocationLine("SUP-X", Decimal("60"), PRICE_X, "2025-03-20"),
            allocation.AllocationLine("SUP-Y", Decimal("40"), PRICE_Y, "2025-03-22"),
        ],
        assigned_by="ho-1",
    )
    return requisition, _reload(context)


def _deliver_and_approve(context, po_id, quantity, grade):
    grn = receiving.create_grn(context, po_id, [receiving.ReceiptLine("M-SUGAR", quantity)], received_by="wh-1")
    context = _reload(context)
    outcome = receiving.approve_grn(
        context, grn.grn_id, [receiving.QualityAssessment("M-SUGAR", grade)], qc_officer="qc-1"
    )
    return outcome, _reload(context)


def test_requisition_to_split_purchase_orders(plant_context):
    """Approval through both levels then a 60/40 split yields two orders."""

    requisition, context = _split_allocation(plant_context)

    stored = requisitions.get_requisition(context, requisition.requisition_id)
    assert stored.status == RequisitionStatus.MD_APPROVED.value
    assert set(stored.workflow) == {"submitted", "ho_approve", "md_approve"}

    orders = {order.supplier_id: order for order in allocation.list_purchase_orders(context)}
    assert orders["SUP-X"].total_cost == Decimal("60") * PRICE_X
    assert orders["SUP-Y"].total_cost == Decimal("40") * PRICE_Y
    assert {order.status for order in orders.values()} == {PurchaseOrderStatus.ISSUED.value}
    assert len({order.po_number for order in orders.values()}) == 2

    preparations = allocation.list_preparations(context, request_id=requisition.requisition_id)
    assert sum((row.required_quantity for row in preparations), Decimal("0")) == Decimal("100")
    assert {row.po_id for row in preparations} == {order.po_id for order in orders.values()}

    assert [row.notification_type for row in notifications.unread(context.store, "md-1")] == [
        "material_request_forwarded"
    ]
    assert [row.notification_type for row in notifications.unread(context.store, "wh-1")] == [
        "request_ho_approved",
        "request_md_approved",
    ]


def test_goods_receipt_grades_supplier_and_raises_invoice(plant_context):
    """A 60 kg delivery graded B credits stock, grades the supplier and bills it."""

    _, context = _split_allocation(plant_context)
    order_x = allocation.list_purchase_orders(context, supplier_id="SUP-X")[0]

    outcome, context = _deliver_and_approve(context, order_x.po_id, Decimal("60"), QualityGrade.B)

    supplier = suppliers.get_supplier(context, "SUP-X")
    assert supplier.current_grade == "B"
    assert supplier.average_grade_points == Decimal("3")
    assert supplier.total_deliveries == 1

    invoice = invoicing.get_invoice(context, outcome.invoice.invoice_id)
    assert invoice.total == Decimal("60") * PRICE_X * Decimal("1.1")
    assert invoice.remaining_amount == invoice.total
    assert invoice.payment_status == PaymentStatus.PENDING.value

    grn = receiving.get_grn(context, outcome.grn.grn_id)
    assert grn.status == GoodsReceiptStatus.INVOICED.value
    assert grn.invoice_id == invoice.invoice_id
    assert inventory.get_material(context, "M-SUGAR").current_stock == Decimal("60")
    assert inventory.verify_stock_consistency(context) == {}
    assert allocation.get_purchase_order(context, order_x.po_id).status == PurchaseOrderStatus.FULLY_RECEIVED.value
    assert allocation.get_preparation(context, order_x.preparation_id).status == PreparationStatus.COMPLETED.value
    assert notifications.unread(context.store, "acc-1")[-1].notification_type == "invoice_created"


def test_payments_settle_invoice_in_two_halves(plant_context):
    """Half a payment leaves the invoice partially paid; the rest settles it."""

    _, context = _split_allocation(plant_context)
    order_x = allocation.list_purchase_orders(context, supplier_id="SUP-X")[0]
    outcome, context = _deliver_and_approve(context, order_x.po_id, Decimal("60"), QualityGrade.B)
    invoice_id = outcome.invoice.invoice_id
    half = outcome.invoice.total / 2

    first = payments.record_payment(
        context, payments.PaymentCommand(invoice_id=invoice_id, amount=half, method=PaymentMethod.BANK_TRANSFER)
    )
    assert first.invoice.payment_status == PaymentStatus.PARTIALLY_PAID.value
    context = _reload(context)

    payments.record_payment(
        context, payments.PaymentCommand(invoice_id=invoice_id, amount=half, method=PaymentMethod.CHEQUE)
    )
    context = _reload(context)

    invoice = invoicing.get_invoice(context, invoice_id)
    assert invoice.payment_status == PaymentStatus.PAID.value
    assert invoice.remaining_amount == Decimal("0")
    assert invoice.total_paid == invoice.total
    assert len(payments.list_payments(context, invoice_id=invoice_id)) == 2
    with pytest.raises(core_logic.InvalidAmountError):
        payments.record_payment(
            context,
            payments.PaymentCommand(invoice_id=invoice_id, amount=Decimal("0.01"), method=PaymentMethod.CASH),
        )


def test_second_delivery_regrades_supplier(plant_context):
    """A B delivery followed by an A delivery averages 3.5 and grades A."""

    _, context = _split_allocation(plant_context)
    order_x = allocation.list_purchase_orders(context, supplier_id="SUP-X")[0]

    _, context = _deliver_and_approve(context, order_x.po_id, Decimal("30"), QualityGrade.B)
    assert allocation.get_purchase_order(context, order_x.po_id).status == PurchaseOrderStatus.PARTIALLY_RECEIVED.value

    _, context = _deliver_and_approve(context, order_x.po_id, Decimal("30"), QualityGrade.A)

    supplier = suppliers.get_supplier(context, "SUP-X")
    assert supplier.average_grade_points == Decimal("3.5")
    assert supplier.current_grade == "A"
    assert supplier.total_deliveries == 2
    assert supplier.last_delivery_grade == "A"
    assert len(invoicing.list_invoices(context, supplier_id="SUP-X")) == 2
    assert inventory.get_material(context, "M-SUGAR").current_stock == Decimal("60")
    assert allocation.get_purchase_order(context, order_x.po_id).status == PurchaseOrderStatus.FULLY_RECEIVED.value


def test_rejected_requisition_spawns_nothing(plant_context):
    requisition = requisitions.submit(
        plant_context,
        requisitions.RequisitionCommand(
            items=[RequisitionItem("M-SUGAR", "Sugar", Decimal("10"), "kg")],
            requested_by="wh-1",
        ),
    )
    requisitions.ho_approve(plant_context, requisition.requisition_id, approved_by="ho-1")
    requisitions.md_reject(plant_context, requisition.requisition_id, rejected_by="md-1", reason="Stock is sufficient")
    context = _reload(plant_context)

    assert requisitions.get_requisition(context, requisition.requisition_id).status == RequisitionStatus.MD_REJECTED.value
    assert allocation.list_preparations(context) == []
    assert notifications.unread(context.store, "ho-1")[-1].notification_type == "request_md_rejected"


def test_busy_inbox_survives_persist_and_refresh(plant_context):
    for index in range(250):
        requisitions.submit(
            plant_context,
            requisitions.RequisitionCommand(
                items=[RequisitionItem("M-SUGAR", "Sugar", Decimal(index + 1), "kg")],
                requested_by="wh-1",
            ),
        )

    context = _reload(plant_context)

    assert len(notifications.unread(context.store, "ho-1")) == 250
    assert len(requisitions.pending_head_of_operations(context)) == 250
