"""Materials and the stock ledger.

Every stock change is an append-only :class:`~mfg_procurement.records.StockMovementRow`;
the ``currentStock`` cached on the material record is kept in step with the
movement log inside the same transaction. Crediting from a goods receipt is
idempotent on the ``(materialId, reference)`` pair, where the reference is
the GRN number.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from . import log
from .constants import Collection, MovementType, RequestType
from .core_logic import (
    DuplicateOperationError,
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
from .ledger_store import join_path
from .records import (
    GoodsReceiptRow,
    MaterialRow,
    StockMovementRow,
    deserialize_many,
    deserialize_material,
    deserialize_stock_movement,
    serialize_material,
    serialize_stock_movement,
)


@dataclass(frozen=True)
class StockMovementCommand:
    """User intent for a manual stock adjustment."""

    material_id: str
    movement_type: MovementType
    quantity: Decimal
    reason: str
    reference: Optional[str] = None
    batch_number: Optional[str] = None
    supplier_id: Optional[str] = None
    created_by: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class StockAlert:
    """A material at or below its reorder level."""

    material_id: str
    name: str
    current_stock: Decimal
    reorder_level: Decimal
    critical: bool


def register_material(
    context: RuntimeContext,
    material_id: str,
    name: str,
    *,
    unit: str,
    material_type: RequestType = RequestType.MATERIAL,
    reorder_level: Decimal = Decimal("0"),
) -> MaterialRow:
    """Create a material record with zero stock.

    Opening balances are booked afterwards through
    :func:`record_stock_movement` so the cached stock always matches the
    movement log.

    Raises:
        ValidationError: If the id or name is blank or the reorder level is
            negative.
        DuplicateOperationError: If the material already exists.
    """
    material_id = require_text(material_id, label="Material id")
    name = require_text(name, label="Material name")
    require_nonnegative_money(reorder_level, label="Reorder level")
    path = join_path(Collection.MATERIALS.value, material_id)
    row = MaterialRow(
        material_id=material_id,
        name=name,
        unit=unit,
        material_type=RequestType(material_type).value,
        current_stock=Decimal("0"),
        reorder_level=reorder_level,
    )
    with context.store.transaction():
        if context.store.read(path) is not None:
            log.warning("Material '%s' already registered", material_id)
            raise DuplicateOperationError(f"Material '{material_id}' already exists", existing_id=material_id)
        context.store.write(path, serialize_material(row))
    log.info("Registered material '%s' (%s)", material_id, name)
    return row


def get_material(context: RuntimeContext, material_id: str) -> MaterialRow:
    raw = fetch_record(context, Collection.MATERIALS, material_id, label="material")
    return deserialize_material(material_id, raw)


def list_materials(context: RuntimeContext) -> List[MaterialRow]:
    return deserialize_many(read_collection(context, Collection.MATERIALS, tolerate_denied=True), deserialize_material)


def list_stock_movements(context: RuntimeContext, *, material_id: Optional[str] = None) -> List[StockMovementRow]:
    rows = deserialize_many(
        read_collection(context, Collection.STOCK_MOVEMENTS, tolerate_denied=True),
        deserialize_stock_movement,
    )
    if material_id is not None:
        rows = [row for row in rows if row.material_id == material_id]
    return rows


def has_movement(context: RuntimeContext, material_id: str, reference: str) -> bool:
    """Return whether a movement with this ``(material, reference)`` pair exists."""

    movements = deserialize_many(read_collection(context, Collection.STOCK_MOVEMENTS), deserialize_stock_movement)
    return any(row.material_id == material_id and row.reference == reference for row in movements)


def record_stock_movement(context: RuntimeContext, command: StockMovementCommand) -> StockMovementRow:
    """Append a stock movement and update the material's cached stock.

    Args:
        context (RuntimeContext): Runtime context holding the ledger store.
        command (StockMovementCommand): The adjustment to book.

    Returns:
        StockMovementRow: The appended movement.

    Raises:
        NotFoundError: If the material is unknown.
        ValidationError: If the quantity is not positive, the reason is
            blank, or an outbound movement exceeds the stock on hand.
    """
    require_positive_quantity(command.quantity)
    reason = require_text(command.reason, label="Movement reason")
    movement_type = MovementType(command.movement_type)
    moment = _resolve_timestamp(command.timestamp)

    with context.store.transaction():
        material = get_material(context, command.material_id)
        if movement_type is MovementType.OUT:
            if command.quantity > material.current_stock:
                log.warning(
                    "Stock out of %s exceeds stock %s for material '%s'",
                    command.quantity,
                    material.current_stock,
                    command.material_id,
                )
                raise ValidationError(
                    f"Cannot issue {command.quantity}; only {material.current_stock} in stock"
                )
            new_stock = material.current_stock - command.quantity
        else:
            new_stock = material.current_stock + command.quantity

        movement = StockMovementRow(
            movement_id="",
            material_id=command.material_id,
            movement_type=movement_type.value,
            quantity=command.quantity,
            reason=reason,
            created_at=_iso(moment),
            reference=command.reference,
            batch_number=command.batch_number,
            supplier_id=command.supplier_id,
            created_by=command.created_by,
        )
        movement_id = context.store.append(Collection.STOCK_MOVEMENTS.value, serialize_stock_movement(movement))
        material_update = {"currentStock": str(new_stock)}
        if movement_type is MovementType.IN:
            material_update["lastReceivedAt"] = _iso(moment)
            if command.supplier_id:
                material_update["lastSupplierId"] = command.supplier_id
        context.store.update(join_path(Collection.MATERIALS.value, command.material_id), material_update)

    log.info(
        "Recorded stock %s of %s for material '%s' (stock=%s)",
        movement_type.value,
        command.quantity,
        command.material_id,
        new_stock,
    )
    return replace(movement, movement_id=movement_id)


def credit_stock_from_grn(
    context: RuntimeContext,
    grn: GoodsReceiptRow,
    *,
    credited_by: Optional[str] = None,
    timestamp: Optional[datetime] = None,
) -> List[StockMovementRow]:
    """Credit stock for every delivered line of an accepted goods receipt.

    Lines with no delivered quantity are ignored. A line whose material
    already has a movement referencing ``grn.grn_number`` is skipped, so the
    approval and invoicing paths may both call this safely.

    Returns:
        list[StockMovementRow]: Movements appended by this call only.
    """
    credited: List[StockMovementRow] = []
    with context.store.transaction():
        for item in grn.items:
            if item.delivered_quantity <= 0:
                continue
            if has_movement(context, item.material_id, grn.grn_number):
                log.info(
                    "Stock for material '%s' already credited from %s; skipping",
                    item.material_id,
                    grn.grn_number,
                )
                continue
            credited.append(
                record_stock_movement(
                    context,
                    StockMovementCommand(
                        material_id=item.material_id,
                        movement_type=MovementType.IN,
                        quantity=item.delivered_quantity,
                        reason=f"Goods receipt {grn.grn_number}",
                        reference=grn.grn_number,
                        batch_number=item.batch_number or grn.grn_number,
                        supplier_id=grn.supplier_id,
                        created_by=credited_by,
                        timestamp=timestamp,
                    ),
                )
            )
    return credited


def calculate_inventory(context: RuntimeContext) -> Dict[str, Decimal]:
    """Fold the movement log into on-hand quantities per material."""

    inventory: Dict[str, Decimal] = {}
    for movement in list_stock_movements(context):
        sign = Decimal("-1") if movement.movement_type == MovementType.OUT.value else Decimal("1")
        inventory[movement.material_id] = inventory.get(movement.material_id, Decimal("0")) + sign * movement.quantity
    log.debug("Calculated inventory balances for %d materials", len(inventory))
    return inventory


def verify_stock_consistency(context: RuntimeContext) -> Dict[str, tuple[Decimal, Decimal]]:
    """Return materials whose cached stock disagrees with the movement log.

    Returns:
        dict[str, tuple[Decimal, Decimal]]: ``material_id`` mapped to
            ``(cached, folded)`` for every mismatch; empty when consistent.
    """
    folded = calculate_inventory(context)
    mismatches: Dict[str, tuple[Decimal, Decimal]] = {}
    for material in list_materials(context):
        expected = folded.get(material.material_id, Decimal("0"))
        if material.current_stock != expected:
            mismatches[material.material_id] = (material.current_stock, expected)
    if mismatches:
        log.warning("Stock cache disagrees with movements for %d materials", len(mismatches))
    return mismatches


def low_stock_alerts(context: RuntimeContext) -> List[StockAlert]:
    """Materials at or below their reorder level; ``critical`` at half or less."""

    alerts = []
    for material in list_materials(context):
        if material.reorder_level <= 0 or material.current_stock > material.reorder_level:
            continue
        alerts.append(
            StockAlert(
                material_id=material.material_id,
                name=material.name,
                current_stock=material.current_stock,
                reorder_level=material.reorder_level,
                critical=material.current_stock <= material.reorder_level / 2,
            )
        )
    return alerts
