# Overview: Service-layer operations for inventory; encapsulates business logic and database work.

# backend/invoicing/services/inventory_service.py

from __future__ import annotations

from datetime import datetime

from ..errors import InsufficientStock, SkuNotFound, ValidationError
from ..extensions import db
from ..models import StockKeepingUnit, StockMovement
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .notifications import emit_stock_changed
"""
Inventory Invariants (authoritative)

Inventory model:
- StockKeepingUnit.stock_quantity is a materialized value; StockMovement is
  its append-only journal.
- stock_quantity == SUM(signed movement quantities). Initial stock is an IN
  movement written together with the SKU.

Business invariants:
- Stock may never go negative.
- Each adjustment writes exactly one movement and updates stock in the same
  DB transaction. Concurrent writers on one SKU are serialized by the row
  lock (where honored) and the version_id check, retried a bounded number
  of times.
- Issuance deducts (negative delta); void restores (positive delta).

Notifications:
- stock-changed is emitted only after commit and never fails the caller.
"""


def create_sku(
    *,
    sku: str,
    unit_price_cents: int,
    initial_stock: int = 0,
    product_id: int | None = None,
    size: str | None = None,
    color: str | None = None,
    description: str | None = None,
) -> StockKeepingUnit:
    sku = (sku or "").strip().upper()
    if not sku:
        raise ValidationError("sku is required")
    if initial_stock < 0:
        raise ValidationError("initial_stock cannot be negative", details={"sku": sku})
    if unit_price_cents is None or unit_price_cents <= 0:
        raise ValidationError("unit_price_cents must be positive", details={"sku": sku})
    if StockKeepingUnit.query.filter_by(sku=sku).first() is not None:
        raise ValidationError(f"SKU {sku} already exists", details={"sku": sku})

    unit = StockKeepingUnit(
        sku=sku,
        product_id=product_id,
        size=size,
        color=color,
        description=description,
        stock_quantity=initial_stock,
        unit_price_cents=unit_price_cents,
    )
    db.session.add(unit)
    db.session.flush()

    if initial_stock > 0:
        db.session.add(StockMovement(
            sku_id=unit.id,
            direction="IN",
            quantity=initial_stock,
            stock_after=initial_stock,
            description="Initial stock",
            occurred_at=utcnow(),
        ))

    db.session.commit()
    return unit


def get_sku(sku_id: int) -> StockKeepingUnit:
    unit = db.session.get(StockKeepingUnit, sku_id)
    if unit is None:
        raise SkuNotFound(f"SKU {sku_id} not found", details={"sku_id": sku_id})
    return unit


def get_sku_by_code(code: str) -> StockKeepingUnit:
    unit = StockKeepingUnit.query.filter_by(sku=(code or "").strip().upper()).first()
    if unit is None:
        raise SkuNotFound(f"SKU {code} not found", details={"sku": code})
    return unit


def check_availability(lines: list[dict]) -> dict[int, StockKeepingUnit]:
    """
    Validation-only pass over invoice lines ({"sku_id", "quantity"}).

    Quantities for the same SKU are added up before comparing with stock.
    Nothing is written; returns the SKUs by id for the caller's pricing.
    """
    requested: dict[int, int] = {}
    for line in lines:
        requested[line["sku_id"]] = requested.get(line["sku_id"], 0) + line["quantity"]

    units: dict[int, StockKeepingUnit] = {}
    for sku_id, qty in requested.items():
        unit = db.session.get(StockKeepingUnit, sku_id)
        if unit is None or not unit.is_active:
            raise SkuNotFound(f"SKU {sku_id} not found", details={"sku_id": sku_id})
        if unit.stock_quantity < qty:
            raise InsufficientStock(
                f"Insufficient stock for {unit.sku}",
                details={
                    "sku_id": sku_id,
                    "sku": unit.sku,
                    "requested_quantity": qty,
                    "stock_quantity": unit.stock_quantity,
                },
            )
        units[sku_id] = unit
    return units


def _adjust_stock_locked(
    *,
    sku_id: int,
    quantity_delta: int,
    description: str | None = None,
    document_reference: str | None = None,
    occurred_at: datetime | None = None,
) -> StockMovement:
    """Core adjustment without retry or commit. Caller owns the transaction."""
    if quantity_delta == 0:
        raise ValidationError("quantity_delta cannot be zero", details={"sku_id": sku_id})

    unit = lock_for_update(db.session.query(StockKeepingUnit).filter_by(id=sku_id)).first()
    if unit is None:
        raise SkuNotFound(f"SKU {sku_id} not found", details={"sku_id": sku_id})

    new_stock = unit.stock_quantity + quantity_delta
    if new_stock < 0:
        raise InsufficientStock(
            f"Insufficient stock for {unit.sku}",
            details={
                "sku_id": sku_id,
                "sku": unit.sku,
                "requested_quantity": -quantity_delta,
                "stock_quantity": unit.stock_quantity,
            },
        )

    movement = StockMovement(
        sku_id=sku_id,
        direction="IN" if quantity_delta > 0 else "OUT",
        quantity=abs(quantity_delta),
        stock_after=new_stock,
        description=description,
        document_reference=document_reference,
        occurred_at=occurred_at or utcnow(),
    )
    unit.stock_quantity = new_stock
    db.session.add(movement)
    db.session.flush()
    return movement


def adjust_stock(
    *,
    sku_id: int,
    quantity_delta: int,
    description: str | None = None,
    document_reference: str | None = None,
) -> StockMovement:
    """
    Apply a signed stock change and journal it.

    Raises InsufficientStock if the result would be negative.
    """
    def _op():
        movement = _adjust_stock_locked(
            sku_id=sku_id,
            quantity_delta=quantity_delta,
            description=description,
            document_reference=document_reference,
        )
        code = movement.sku.sku
        db.session.commit()
        return movement, code

    movement, code = run_with_retry(_op)
    emit_stock_changed(code, movement.stock_after)
    return movement


def list_movements(*, sku_id: int, limit: int = 200) -> list[StockMovement]:
    get_sku(sku_id)
    return (
        StockMovement.query.filter_by(sku_id=sku_id)
        .order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def verify_stock_ledger(sku_id: int) -> dict:
    """Replay the movement journal and compare with the stored stock."""
    unit = get_sku(sku_id)
    movements = (
        StockMovement.query.filter_by(sku_id=sku_id)
        .order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
        .all()
    )

    running = 0
    never_negative = True
    for movement in movements:
        running += movement.signed_quantity
        if running < 0:
            never_negative = False

    return {
        "sku_id": unit.id,
        "sku": unit.sku,
        "stock_quantity": unit.stock_quantity,
        "replayed_quantity": running,
        "movement_count": len(movements),
        "never_negative": never_negative,
        "consistent": running == unit.stock_quantity and never_negative,
    }
