# Overview: Inventory Ledger; stock positions per (product, warehouse, ownership, factory) and their movement log.

# backend/ceramerp/services/inventory_service.py

"""
Inventory Ledger invariants (authoritative)

Stock model:
- One InventoryRecord per (product, warehouse, ownership_type, factory-or-null),
  created lazily by the first stock-affecting call, never deleted.
- quantity_on_hand and quantity_reserved are stored in the product's stocking
  unit at 4 decimals; available = on_hand - reserved is computed.
- on_hand >= 0 and reserved >= 0 at all times.

Operations:
- reserve:  available must cover the quantity (else InsufficientStock); reserved += q.
            Order lines use allocate_reservation, which spreads q over every
            key of the (product, warehouse), owned stock first.
- release:  reserved -= q, clamped at 0.
- commit:   on_hand -= q and reserved -= q, both clamped at 0; writes OUT.
- restock:  on_hand += q; writes IN.
- issue:    stock-out that must not dig into reservations (supplier returns,
            PO corrections); writes OUT.
- adjust:   signed manual correction; fails if on_hand would go negative;
            writes ADJUSTMENT.

Derived counts:
- pallet_count / colis_count are recomputed from on_hand and the product's
  packaging ratios after every on_hand change. When the product has no ratios
  the caller-supplied pallet/colis deltas are applied instead (clamped at 0).

Locking:
- Every record read for mutation goes through lock_for_update; on SQLite the
  enclosing run_in_transaction holds BEGIN IMMEDIATE instead.

Public functions take commit=True to run as their own unit of work. Settlement
flows call them with commit=False inside their own run_in_transaction.
"""

from __future__ import annotations

from decimal import Decimal

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import InventoryRecord, InventoryTransaction, Product, Warehouse
from ..numeric import ZERO, clamp_zero, quantize_qty, to_decimal
from ..time_utils import utcnow
from . import units_service
from .catalogue_service import schedule_catalogue_refresh
from .concurrency import lock_for_update, run_in_transaction
from .errors import ConversionAmbiguous, EntityNotFound, InsufficientStock


OWNERSHIP_OWNED = "OWNED"
OWNERSHIP_CONSIGNMENT = "CONSIGNMENT"
OWNERSHIP_TYPES = {OWNERSHIP_OWNED, OWNERSHIP_CONSIGNMENT}

TX_IN = "IN"
TX_OUT = "OUT"
TX_ADJUSTMENT = "ADJUSTMENT"


# =============================================================================
# LOOKUPS
# =============================================================================

def _get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise EntityNotFound("Product", product_id)
    return product


def _validate_key(warehouse_id: int, ownership_type: str, factory_id: int | None) -> None:
    if ownership_type not in OWNERSHIP_TYPES:
        raise ValueError(f"invalid ownership_type: {ownership_type}")
    if ownership_type == OWNERSHIP_CONSIGNMENT and factory_id is None:
        raise ValueError("consignment stock requires factory_id")
    if db.session.get(Warehouse, warehouse_id) is None:
        raise EntityNotFound("Warehouse", warehouse_id)


def _positive(quantity, field: str = "quantity") -> Decimal:
    qty = quantize_qty(to_decimal(quantity, field=field))
    if qty <= ZERO:
        raise ValueError(f"{field} must be positive")
    return qty


def _record_query(product_id, warehouse_id, ownership_type, factory_id):
    query = db.session.query(InventoryRecord).filter(
        InventoryRecord.product_id == product_id,
        InventoryRecord.warehouse_id == warehouse_id,
        InventoryRecord.ownership_type == ownership_type,
    )
    if factory_id is None:
        return query.filter(InventoryRecord.factory_id.is_(None))
    return query.filter(InventoryRecord.factory_id == factory_id)


def _get_record(
    product_id: int,
    warehouse_id: int,
    ownership_type: str,
    factory_id: int | None,
    *,
    create: bool,
) -> InventoryRecord | None:
    """Locked fetch of the record for a key, creating it lazily when asked."""
    record = lock_for_update(_record_query(product_id, warehouse_id, ownership_type, factory_id)).first()
    if record is not None or not create:
        return record

    try:
        with db.session.begin_nested():
            record = InventoryRecord(
                product_id=product_id,
                warehouse_id=warehouse_id,
                ownership_type=ownership_type,
                factory_id=factory_id,
                quantity_on_hand=ZERO,
                quantity_reserved=ZERO,
                pallet_count=ZERO,
                colis_count=ZERO,
            )
            db.session.add(record)
        return record
    except IntegrityError:
        # Lost a creation race; the winner's row is now visible
        return lock_for_update(_record_query(product_id, warehouse_id, ownership_type, factory_id)).one()


# =============================================================================
# CONVERSION HELPERS (DB-backed wrappers around units_service)
# =============================================================================

def derive_packaging_ratios(product_id: int) -> units_service.PackagingRatios:
    """
    Ratios implied by stock history: pieces/colis and colis/pallets summed over
    every record of the product that carries counts. Zero where unknown.
    """
    product = _get_product(product_id)
    row = (
        db.session.query(
            func.coalesce(func.sum(InventoryRecord.quantity_on_hand), 0).label("on_hand"),
            func.coalesce(func.sum(InventoryRecord.colis_count), 0).label("colis"),
            func.coalesce(func.sum(InventoryRecord.pallet_count), 0).label("pallets"),
        )
        .filter(InventoryRecord.product_id == product_id, InventoryRecord.colis_count > 0)
        .one()
    )
    on_hand = to_decimal(row.on_hand)
    colis = to_decimal(row.colis)
    pallets = to_decimal(row.pallets)

    pieces_per_box = ZERO
    if colis > ZERO and on_hand > ZERO:
        try:
            pieces = units_service.convert(product, on_hand, product.stocking_unit, units_service.PIECE)
            pieces_per_box = quantize_qty(pieces / colis)
        except ConversionAmbiguous:
            pieces_per_box = ZERO
    boxes_per_pallet = quantize_qty(colis / pallets) if pallets > ZERO else ZERO
    return units_service.PackagingRatios(pieces_per_box=pieces_per_box, boxes_per_pallet=boxes_per_pallet)


def _conversion_hint(product: Product) -> units_service.PackagingRatios | None:
    if to_decimal(product.pieces_per_box) > ZERO and to_decimal(product.boxes_per_pallet) > ZERO:
        return None
    return derive_packaging_ratios(product.id)


def to_stock_quantity(product: Product, quantity, unit_code: str) -> Decimal:
    """Sale/purchase quantity -> stocking unit, rounded to 4 decimals."""
    strict = current_app.config.get("STRICT_UNIT_CONVERSION", True)
    converted = units_service.to_stocking_unit(
        product,
        quantity,
        unit_code,
        derived=_conversion_hint(product),
        strict=strict,
    )
    return quantize_qty(converted)


def _refresh_packaging_counts(
    record: InventoryRecord,
    product: Product,
    *,
    pallet_delta: Decimal = ZERO,
    colis_delta: Decimal = ZERO,
) -> None:
    record.pallet_count = clamp_zero(to_decimal(record.pallet_count) + pallet_delta)
    record.colis_count = clamp_zero(to_decimal(record.colis_count) + colis_delta)

    pallets, colis = units_service.packaging_counts(product, record.quantity_on_hand)
    if colis is not None:
        record.colis_count = quantize_qty(colis)
    if pallets is not None:
        record.pallet_count = quantize_qty(pallets)


def _write_transaction(
    record: InventoryRecord,
    *,
    tx_type: str,
    quantity: Decimal,
    reference_type: str | None,
    reference_id: int | None,
    actor_user_id: int | None,
    note: str | None = None,
) -> InventoryTransaction:
    tx = InventoryTransaction(
        product_id=record.product_id,
        warehouse_id=record.warehouse_id,
        ownership_type=record.ownership_type,
        factory_id=record.factory_id,
        type=tx_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        note=note,
        created_by_user_id=actor_user_id,
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def _run(op, product_id: int, commit: bool):
    if not commit:
        return op()
    result = run_in_transaction(op)
    schedule_catalogue_refresh([product_id])
    return result


# =============================================================================
# LEDGER OPERATIONS
# =============================================================================

def reserve_stock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
    commit: bool = True,
) -> InventoryRecord:
    """
    Hold stock against availability without touching on_hand.

    The availability check and the increment happen on a locked row, so two
    concurrent reservations can never both pass the check.
    """
    qty = _positive(quantity)

    def _op():
        _validate_key(warehouse_id, ownership_type, factory_id)
        _get_product(product_id)
        record = _get_record(product_id, warehouse_id, ownership_type, factory_id, create=True)
        available = to_decimal(record.quantity_on_hand) - to_decimal(record.quantity_reserved)
        if qty > available:
            raise InsufficientStock(
                product_id=product_id,
                warehouse_id=warehouse_id,
                requested=qty,
                available=clamp_zero(available),
            )
        record.quantity_reserved = to_decimal(record.quantity_reserved) + qty
        db.session.flush()
        return record

    return _run(_op, product_id, commit)


def _allocation_order(record: InventoryRecord):
    return (record.ownership_type != OWNERSHIP_OWNED, record.factory_id or 0, record.id)


def allocate_reservation(
    *,
    product_id: int,
    warehouse_id: int,
    quantity,
) -> list[tuple[str, int | None, Decimal]]:
    """
    Reserve quantity across every stock key of a product in a warehouse.

    Owned stock is drawn first, then consignment stock by factory. All keys
    are locked before the check, and the total available must cover the
    quantity. Runs in the caller's transaction and returns
    (ownership_type, factory_id, quantity) for each key drawn from.
    """
    qty = _positive(quantity)
    if db.session.get(Warehouse, warehouse_id) is None:
        raise EntityNotFound("Warehouse", warehouse_id)
    _get_product(product_id)

    records = lock_for_update(
        db.session.query(InventoryRecord)
        .filter(
            InventoryRecord.product_id == product_id,
            InventoryRecord.warehouse_id == warehouse_id,
        )
        .order_by(InventoryRecord.id)
    ).all()
    records.sort(key=_allocation_order)

    free = [clamp_zero(to_decimal(r.quantity_on_hand) - to_decimal(r.quantity_reserved)) for r in records]
    available = sum(free, ZERO)
    if qty > available:
        raise InsufficientStock(
            product_id=product_id,
            warehouse_id=warehouse_id,
            requested=qty,
            available=available,
        )

    allocations = []
    remaining = qty
    for record, record_free in zip(records, free):
        if remaining <= ZERO:
            break
        if record_free <= ZERO:
            continue
        take = min(record_free, remaining)
        record.quantity_reserved = to_decimal(record.quantity_reserved) + take
        allocations.append((record.ownership_type, record.factory_id, take))
        remaining -= take
    db.session.flush()
    return allocations


def release_stock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
    commit: bool = True,
) -> InventoryRecord | None:
    """Drop a reservation (clamped at 0). No-op when the key has no record."""
    qty = _positive(quantity)

    def _op():
        record = _get_record(product_id, warehouse_id, ownership_type, factory_id, create=False)
        if record is None:
            return None
        record.quantity_reserved = clamp_zero(to_decimal(record.quantity_reserved) - qty)
        db.session.flush()
        return record

    return _run(_op, product_id, commit)


def commit_stock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity,
    pallet_delta=0,
    colis_delta=0,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """
    Deduct reserved stock at confirmation.

    on_hand and reserved both drop by quantity, clamped at 0. The OUT row
    carries the on_hand decrease actually applied, which is also what a later
    reversal must restock.
    """
    qty = _positive(quantity)
    pallets = to_decimal(pallet_delta, field="pallet_delta")
    colis = to_decimal(colis_delta, field="colis_delta")

    def _op():
        _validate_key(warehouse_id, ownership_type, factory_id)
        product = _get_product(product_id)
        record = _get_record(product_id, warehouse_id, ownership_type, factory_id, create=True)

        on_hand = to_decimal(record.quantity_on_hand)
        deducted = min(qty, on_hand)
        record.quantity_on_hand = on_hand - deducted
        record.quantity_reserved = clamp_zero(to_decimal(record.quantity_reserved) - qty)
        _refresh_packaging_counts(record, product, pallet_delta=-pallets, colis_delta=-colis)

        return _write_transaction(
            record,
            tx_type=TX_OUT,
            quantity=-deducted,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
            note=None if deducted == qty else f"requested {qty}, on hand {on_hand}",
        )

    return _run(_op, product_id, commit)


def restock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity,
    pallet_delta=0,
    colis_delta=0,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """Increase on_hand (goods receipts, approved returns, order reversals)."""
    qty = _positive(quantity)
    pallets = to_decimal(pallet_delta, field="pallet_delta")
    colis = to_decimal(colis_delta, field="colis_delta")

    def _op():
        _validate_key(warehouse_id, ownership_type, factory_id)
        product = _get_product(product_id)
        record = _get_record(product_id, warehouse_id, ownership_type, factory_id, create=True)
        record.quantity_on_hand = to_decimal(record.quantity_on_hand) + qty
        _refresh_packaging_counts(record, product, pallet_delta=pallets, colis_delta=colis)
        return _write_transaction(
            record,
            tx_type=TX_IN,
            quantity=qty,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
            note=note,
        )

    return _run(_op, product_id, commit)


def issue_stock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity,
    pallet_delta=0,
    colis_delta=0,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    actor_user_id: int | None = None,
    note: str | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """
    Unreserved stock-out (supplier returns, downward PO corrections).

    Only unreserved stock can leave: quantity must not exceed on_hand - reserved.
    """
    qty = _positive(quantity)
    pallets = to_decimal(pallet_delta, field="pallet_delta")
    colis = to_decimal(colis_delta, field="colis_delta")

    def _op():
        _validate_key(warehouse_id, ownership_type, factory_id)
        product = _get_product(product_id)
        record = _get_record(product_id, warehouse_id, ownership_type, factory_id, create=False)
        available = record.quantity_available if record is not None else ZERO
        if record is None or qty > available:
            raise InsufficientStock(
                product_id=product_id,
                warehouse_id=warehouse_id,
                requested=qty,
                available=clamp_zero(to_decimal(available)),
            )
        record.quantity_on_hand = to_decimal(record.quantity_on_hand) - qty
        _refresh_packaging_counts(record, product, pallet_delta=-pallets, colis_delta=-colis)
        return _write_transaction(
            record,
            tx_type=TX_OUT,
            quantity=-qty,
            reference_type=reference_type,
            reference_id=reference_id,
            actor_user_id=actor_user_id,
            note=note,
        )

    return _run(_op, product_id, commit)


def adjust_stock(
    *,
    product_id: int,
    warehouse_id: int,
    quantity_delta,
    reason: str,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
    actor_user_id: int | None = None,
    commit: bool = True,
) -> InventoryTransaction:
    """
    Manual signed correction of on_hand (stock count, breakage).

    Fails if on_hand would go negative. Packaging counts are recomputed from
    the new on_hand.
    """
    delta = quantize_qty(to_decimal(quantity_delta, field="quantity_delta"))
    if delta == ZERO:
        raise ValueError("quantity_delta must be non-zero")
    if not reason or not reason.strip():
        raise ValueError("reason is required")

    def _op():
        _validate_key(warehouse_id, ownership_type, factory_id)
        product = _get_product(product_id)
        record = _get_record(product_id, warehouse_id, ownership_type, factory_id, create=True)
        new_on_hand = to_decimal(record.quantity_on_hand) + delta
        if new_on_hand < ZERO:
            raise InsufficientStock(
                product_id=product_id,
                warehouse_id=warehouse_id,
                requested=-delta,
                available=to_decimal(record.quantity_on_hand),
            )
        record.quantity_on_hand = new_on_hand
        _refresh_packaging_counts(record, product)
        return _write_transaction(
            record,
            tx_type=TX_ADJUSTMENT,
            quantity=delta,
            reference_type="ADJUSTMENT",
            reference_id=None,
            actor_user_id=actor_user_id,
            note=reason.strip()[:255],
        )

    return _run(_op, product_id, commit)


def recompute_packaging_counts(product_id: int) -> int:
    """
    Re-derive pallet/colis counts on every record of a product (after a
    packaging edit). Runs inside the caller's transaction; returns the number
    of records touched.
    """
    product = _get_product(product_id)
    records = lock_for_update(
        db.session.query(InventoryRecord).filter(InventoryRecord.product_id == product_id)
    ).all()
    for record in records:
        _refresh_packaging_counts(record, product)
    db.session.flush()
    return len(records)


# =============================================================================
# QUERIES
# =============================================================================

def get_inventory_records(
    product_id: int,
    *,
    warehouse_id: int | None = None,
) -> list[InventoryRecord]:
    query = db.session.query(InventoryRecord).filter(InventoryRecord.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(InventoryRecord.warehouse_id == warehouse_id)
    return query.order_by(InventoryRecord.warehouse_id, InventoryRecord.id).all()


def get_stock_record(
    product_id: int,
    warehouse_id: int,
    *,
    ownership_type: str = OWNERSHIP_OWNED,
    factory_id: int | None = None,
) -> InventoryRecord | None:
    """Unlocked snapshot read of one key."""
    return _record_query(product_id, warehouse_id, ownership_type, factory_id).first()


def list_inventory_transactions(
    *,
    product_id: int | None = None,
    warehouse_id: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    limit: int = 200,
) -> list[InventoryTransaction]:
    query = db.session.query(InventoryTransaction)
    if product_id is not None:
        query = query.filter(InventoryTransaction.product_id == product_id)
    if warehouse_id is not None:
        query = query.filter(InventoryTransaction.warehouse_id == warehouse_id)
    if reference_type is not None:
        query = query.filter(InventoryTransaction.reference_type == reference_type)
    if reference_id is not None:
        query = query.filter(InventoryTransaction.reference_id == reference_id)
    limit = max(1, min(limit, 1000))
    return query.order_by(InventoryTransaction.id.desc()).limit(limit).all()
