# Overview: Inventory ledger operations (reserve, release, reduce) with movement log.

from __future__ import annotations

from collections import OrderedDict
from typing import Iterable

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..extensions import db
from ..models import InventoryRecord, InventoryMovement, Product
from ..time_utils import utcnow
from ..validation import require_positive_int
from .concurrency import lock_for_update, run_with_retry
from .side_effects import isolated_write
"""
Inventory ledger invariants (authoritative)

Stock model:
- quantity is the physical count; reserved_quantity is held against orders
  whose payment is not yet validated.
- available = quantity - reserved_quantity, always derived.
- quantity >= 0 and reserved_quantity >= 0 at all times (also CHECK constraints).

Operations:
- reserve(q):  reserved += q. Availability is not checked here; an
               over-reserved order fails at payment validation instead.
- release(q):  reserved = max(0, reserved - q).
- reduce(q):   sells q units. held=True converts this order's own hold
               (the held units count towards what it may take);
               held=False sells stock that was never reserved (combo
               constituents) and must fit in what others have not reserved.
               Fails with InsufficientStockError before mutating anything.

Concurrency:
- *_many functions aggregate per record, lock every record in ascending id
  order with one SELECT ... FOR UPDATE, validate all of them, then mutate.
  They never commit; the caller's lifecycle transaction does.
- Single-record reserve/release/reduce are their own transaction.

Audit:
- Each mutation appends an InventoryMovement (reserved -q, released +q,
  sold -q) in a SAVEPOINT. A failed movement write is logged and ignored.
"""

MOVEMENT_TYPES = {"reserved", "released", "sold"}


def _aggregate(lines: Iterable[tuple[str, int]]) -> "OrderedDict[str, int]":
    """Sum quantities per inventory id; result is ordered by id (lock order)."""
    totals: dict[str, int] = {}
    for inventory_id, quantity in lines:
        if not inventory_id:
            raise ValidationError("inventory_id is required", field="inventory_id")
        qty = require_positive_int(quantity, "quantity")
        totals[inventory_id] = totals.get(inventory_id, 0) + qty
    return OrderedDict(sorted(totals.items()))


def _lock_records(inventory_ids: list[str]) -> dict[str, InventoryRecord]:
    if not inventory_ids:
        return {}
    query = (
        db.session.query(InventoryRecord)
        .filter(InventoryRecord.id.in_(inventory_ids))
        .order_by(InventoryRecord.id)
    )
    records = {r.id: r for r in lock_for_update(query).all()}
    missing = [i for i in inventory_ids if i not in records]
    if missing:
        raise NotFoundError(
            f"Inventory record not found: {', '.join(missing)}",
            field="inventory_id",
            context={"missing": missing},
        )
    return records


def _log_movements(
    movement_type: str,
    changes: dict[str, int],
    *,
    reference_type: str | None,
    reference_id: str | None,
    created_by: str | None,
    notes: str | None,
) -> bool:
    sign = 1 if movement_type == "released" else -1
    now = utcnow()

    def _build():
        for inventory_id, qty in changes.items():
            db.session.add(InventoryMovement(
                inventory_id=inventory_id,
                movement_type=movement_type,
                quantity_change=sign * qty,
                reference_type=reference_type,
                reference_id=reference_id,
                notes=notes,
                created_by=created_by,
                created_at=now,
            ))

    return isolated_write(f"inventory movement log ({movement_type})", _build, entity_id=reference_id)


def reserve_many(
    lines: Iterable[tuple[str, int]],
    *,
    reference_type: str | None = None,
    reference_id: str | None = None,
    created_by: str | None = None,
    notes: str | None = None,
) -> list[InventoryRecord]:
    """Reserve every (inventory_id, quantity) line inside the caller's transaction."""
    totals = _aggregate(lines)
    records = _lock_records(list(totals))
    for inventory_id, qty in totals.items():
        rec = records[inventory_id]
        rec.reserved_quantity = (rec.reserved_quantity or 0) + qty
    db.session.flush()
    _log_movements("reserved", totals, reference_type=reference_type, reference_id=reference_id,
                   created_by=created_by, notes=notes)
    return [records[i] for i in totals]


def release_many(
    lines: Iterable[tuple[str, int]],
    *,
    reference_type: str | None = None,
    reference_id: str | None = None,
    created_by: str | None = None,
    notes: str | None = None,
) -> list[InventoryRecord]:
    """Release holds; reserved_quantity is clamped at zero."""
    totals = _aggregate(lines)
    records = _lock_records(list(totals))
    for inventory_id, qty in totals.items():
        rec = records[inventory_id]
        rec.reserved_quantity = max(0, (rec.reserved_quantity or 0) - qty)
    db.session.flush()
    _log_movements("released", totals, reference_type=reference_type, reference_id=reference_id,
                   created_by=created_by, notes=notes)
    return [records[i] for i in totals]


def reduce_many(
    lines: Iterable[tuple[str, int]],
    *,
    held: bool,
    reference_type: str | None = None,
    reference_id: str | None = None,
    created_by: str | None = None,
    notes: str | None = None,
) -> list[InventoryRecord]:
    """
    Convert holds (held=True) or unreserved stock (held=False) into sales.

    Every record is checked before any is changed, so one short record fails
    the whole batch with nothing mutated.
    """
    totals = _aggregate(lines)
    records = _lock_records(list(totals))

    short = []
    for inventory_id, qty in totals.items():
        rec = records[inventory_id]
        reserved = rec.reserved_quantity or 0
        others_reserved = reserved - min(reserved, qty) if held else reserved
        available = (rec.quantity or 0) - others_reserved
        if available < qty:
            short.append({"inventory_id": inventory_id, "requested": qty, "available": max(0, available)})
    if short:
        first = short[0]
        raise InsufficientStockError(
            f"Insufficient stock for inventory {first['inventory_id']}: "
            f"requested {first['requested']}, available {first['available']}",
            field="quantity",
            context={"shortages": short},
        )

    for inventory_id, qty in totals.items():
        rec = records[inventory_id]
        rec.quantity = (rec.quantity or 0) - qty
        if held:
            rec.reserved_quantity = max(0, (rec.reserved_quantity or 0) - qty)
    db.session.flush()
    _log_movements("sold", totals, reference_type=reference_type, reference_id=reference_id,
                   created_by=created_by, notes=notes)
    return [records[i] for i in totals]


def reserve(inventory_id: str, quantity: int, **reference) -> InventoryRecord:
    def _op():
        (rec,) = reserve_many([(inventory_id, quantity)], **reference)
        db.session.commit()
        return rec
    return run_with_retry(_op, operation="inventory.reserve", entity_id=inventory_id)


def release(inventory_id: str, quantity: int, **reference) -> InventoryRecord:
    def _op():
        (rec,) = release_many([(inventory_id, quantity)], **reference)
        db.session.commit()
        return rec
    return run_with_retry(_op, operation="inventory.release", entity_id=inventory_id)


def reduce(inventory_id: str, quantity: int, *, held: bool = True, **reference) -> InventoryRecord:
    def _op():
        (rec,) = reduce_many([(inventory_id, quantity)], held=held, **reference)
        db.session.commit()
        return rec
    return run_with_retry(_op, operation="inventory.reduce", entity_id=inventory_id)


def create_inventory_record(product_id: str, quantity: int = 0) -> InventoryRecord:
    """Create the stock row for a product (one per product)."""
    if quantity is None or int(quantity) < 0:
        raise ValidationError("quantity must be >= 0", field="quantity")

    def _op():
        product = db.session.query(Product).filter_by(id=product_id).first()
        if product is None:
            raise NotFoundError("Product not found", field="product_id")
        existing = db.session.query(InventoryRecord).filter_by(product_id=product_id).first()
        if existing is not None:
            raise ValidationError("Product already has an inventory record", field="product_id")
        rec = InventoryRecord(product_id=product_id, quantity=int(quantity), reserved_quantity=0)
        db.session.add(rec)
        db.session.commit()
        return rec
    return run_with_retry(_op, operation="inventory.create", entity_id=product_id)


def get_inventory(inventory_id: str) -> InventoryRecord:
    rec = db.session.query(InventoryRecord).filter_by(id=inventory_id).first()
    if rec is None:
        raise NotFoundError("Inventory record not found", field="inventory_id")
    return rec


def get_available_quantity(inventory_id: str) -> int:
    return max(0, get_inventory(inventory_id).available_quantity)


def list_movements(
    *,
    inventory_id: str | None = None,
    reference_id: str | None = None,
    movement_type: str | None = None,
    limit: int = 200,
) -> list[InventoryMovement]:
    q = db.session.query(InventoryMovement)
    if inventory_id:
        q = q.filter(InventoryMovement.inventory_id == inventory_id)
    if reference_id:
        q = q.filter(InventoryMovement.reference_id == reference_id)
    if movement_type:
        if movement_type not in MOVEMENT_TYPES:
            raise ValidationError(f"Invalid movement_type '{movement_type}'", field="movement_type")
        q = q.filter(InventoryMovement.movement_type == movement_type)
    return q.order_by(InventoryMovement.created_at.asc()).limit(limit).all()
