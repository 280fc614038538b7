"""
Catalogue read model refresh.

CatalogueEntry is a denormalized per-product projection of InventoryRecord
(totals across warehouses plus packaging metadata) used by catalogue and
stock screens. It is rebuilt after operations that change stock or product
packaging.

schedule_catalogue_refresh() is fire-and-forget: it runs after the
triggering transaction has committed and only logs failures. With
CATALOGUE_REFRESH_ASYNC set, refreshes go to the app's single refresh
worker, so they run one at a time in submission order. Inline otherwise.

Every refresh stamps its entries with the time it started reading totals.
An entry stamped later than the current refresh started is left alone, so
a slow refresh from another process never overwrites a newer snapshot.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Brand, CatalogueEntry, InventoryRecord, Product
from ..numeric import ZERO, quantize_qty, to_decimal
from ..time_utils import as_naive_utc, utcnow
from . import units_service


REFRESH_WORKER_KEY = "catalogue_refresh_worker"


def install_refresh_worker(app) -> ThreadPoolExecutor:
    """One serialized worker per app; its thread starts on first use."""
    worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="catalogue-refresh")
    app.extensions[REFRESH_WORKER_KEY] = worker
    return worker


def wait_for_refreshes(app=None, timeout: float | None = None) -> None:
    """Block until every refresh scheduled so far on the app has run."""
    app = app or current_app._get_current_object()
    app.extensions[REFRESH_WORKER_KEY].submit(lambda: None).result(timeout=timeout)


def _write_entries(product_ids, snapshot_at: datetime) -> int:
    products_q = db.session.query(Product, Brand.name).outerjoin(Brand, Brand.id == Product.brand_id)
    totals_q = db.session.query(
        InventoryRecord.product_id,
        func.coalesce(func.sum(InventoryRecord.quantity_on_hand), 0),
        func.coalesce(func.sum(InventoryRecord.quantity_reserved), 0),
        func.coalesce(func.sum(InventoryRecord.pallet_count), 0),
        func.coalesce(func.sum(InventoryRecord.colis_count), 0),
    ).group_by(InventoryRecord.product_id)

    if product_ids is not None:
        ids = sorted({int(pid) for pid in product_ids})
        if not ids:
            return 0
        products_q = products_q.filter(Product.id.in_(ids))
        totals_q = totals_q.filter(InventoryRecord.product_id.in_(ids))

    totals = {row[0]: row[1:] for row in totals_q.all()}
    written = 0

    for product, brand_name in products_q.all():
        entry = db.session.get(CatalogueEntry, product.id)
        if entry is None:
            entry = CatalogueEntry(product_id=product.id)
            db.session.add(entry)
        elif entry.refreshed_at is not None and as_naive_utc(entry.refreshed_at) > snapshot_at:
            continue

        on_hand, reserved, pallets, colis = (to_decimal(v) for v in totals.get(product.id, (0, 0, 0, 0)))
        ratios = units_service.effective_ratios(product)
        area = units_service.area_per_piece(product)

        entry.product_code = product.code
        entry.product_name = product.name
        entry.brand_name = brand_name
        entry.size = product.size
        entry.stocking_unit = product.stocking_unit
        entry.area_per_piece = quantize_qty(area) if area is not None else None
        entry.pieces_per_box = ratios.pieces_per_box if ratios.pieces_per_box > ZERO else None
        entry.boxes_per_pallet = ratios.boxes_per_pallet if ratios.boxes_per_pallet > ZERO else None
        entry.quantity_on_hand = quantize_qty(on_hand)
        entry.quantity_reserved = quantize_qty(reserved)
        entry.quantity_available = quantize_qty(on_hand - reserved)
        entry.pallet_count = quantize_qty(pallets)
        entry.colis_count = quantize_qty(colis)
        entry.refreshed_at = snapshot_at
        written += 1

    db.session.commit()
    return written


def refresh_catalogue(product_ids=None, *, snapshot_at: datetime | None = None) -> int:
    """
    Rebuild catalogue rows for the given products (all products when None)
    and commit. Returns the number of rows written.

    snapshot_at defaults to now, taken before any totals are read. Entries
    already stamped later are skipped and not counted.
    """
    snapshot_at = as_naive_utc(snapshot_at) or utcnow()
    try:
        return _write_entries(product_ids, snapshot_at)
    except IntegrityError:
        # Another process inserted a first-time entry; rerun as updates
        db.session.rollback()
        return _write_entries(product_ids, snapshot_at)


def _refresh_safely(app, product_ids) -> None:
    with app.app_context():
        try:
            refresh_catalogue(product_ids)
        except Exception:
            db.session.rollback()
            app.logger.exception("Catalogue refresh failed for products %s", product_ids)
        finally:
            db.session.remove()


def schedule_catalogue_refresh(product_ids=None) -> None:
    """Refresh the read model after commit. Never raises."""
    try:
        app = current_app._get_current_object()
        ids = None if product_ids is None else sorted({int(pid) for pid in product_ids})
        if app.config.get("CATALOGUE_REFRESH_ASYNC", True):
            app.extensions[REFRESH_WORKER_KEY].submit(_refresh_safely, app, ids)
            return
        try:
            refresh_catalogue(ids)
        except Exception:
            db.session.rollback()
            app.logger.exception("Catalogue refresh failed for products %s", ids)
    except Exception:
        current_app.logger.exception("Could not schedule catalogue refresh")


def get_catalogue(product_id: int | None = None) -> list[CatalogueEntry]:
    query = db.session.query(CatalogueEntry)
    if product_id is not None:
        query = query.filter(CatalogueEntry.product_id == product_id)
    return query.order_by(CatalogueEntry.product_code).all()
