"""
Product master data.

Packaging edits (pieces_per_box, boxes_per_pallet, size) change how every
stocking-unit quantity maps to boxes and pallets, so they re-derive the
pallet/colis counts of every InventoryRecord of the product in the same
transaction and then schedule a catalogue refresh.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Brand, Product
from ..numeric import ZERO, quantize_money, quantize_qty, to_decimal
from . import inventory_service, units_service
from .audit_service import emit_audit
from .catalogue_service import schedule_catalogue_refresh
from .concurrency import lock_for_update, run_in_transaction
from .errors import EntityNotFound, ReferentialConflict

PRODUCT_MUTABLE_FIELDS = {"name", "base_price", "purchase_price", "brand_id", "track_stock", "is_active"}


def _ratio(value, field: str):
    ratio = quantize_qty(to_decimal(value if value is not None else 0, field=field))
    if ratio < ZERO:
        raise ValueError(f"{field} must be >= 0")
    return ratio


def _money(value, field: str):
    if value is None:
        return None
    amount = quantize_money(to_decimal(value, field=field))
    if amount < ZERO:
        raise ValueError(f"{field} must be >= 0")
    return amount


def create_product(
    *,
    code: str,
    name: str,
    size: str | None = None,
    stocking_unit: str = units_service.AREA,
    pieces_per_box=0,
    boxes_per_pallet=0,
    base_price=None,
    purchase_price=None,
    brand_id: int | None = None,
    track_stock: bool = True,
) -> Product:
    code = (code or "").strip()
    name = (name or "").strip()
    if not code or not name:
        raise ValueError("code and name are required")

    def _op():
        if db.session.query(Product.id).filter_by(code=code).first() is not None:
            raise ReferentialConflict(f"Product code {code} already exists", {"code": code})
        if brand_id is not None and db.session.get(Brand, brand_id) is None:
            raise EntityNotFound("Brand", brand_id)
        product = Product(
            code=code,
            name=name,
            size=(size or "").strip() or None,
            stocking_unit=units_service.normalize_unit(stocking_unit),
            pieces_per_box=_ratio(pieces_per_box, "pieces_per_box"),
            boxes_per_pallet=_ratio(boxes_per_pallet, "boxes_per_pallet"),
            base_price=_money(base_price, "base_price"),
            purchase_price=_money(purchase_price, "purchase_price"),
            brand_id=brand_id,
            track_stock=bool(track_stock),
        )
        db.session.add(product)
        db.session.flush()
        return product

    product = run_in_transaction(_op)
    schedule_catalogue_refresh([product.id])
    emit_audit("product.created", entity_type="product", entity_id=product.id, payload={"code": product.code})
    return product


def update_product(product_id: int, patch: dict) -> Product:
    """Patch non-packaging fields; unknown keys are ignored."""
    def _op():
        product = get_product(product_id)
        for key, value in patch.items():
            if key not in PRODUCT_MUTABLE_FIELDS:
                continue
            if key in {"base_price", "purchase_price"}:
                value = _money(value, key)
            elif key == "brand_id" and value is not None and db.session.get(Brand, value) is None:
                raise EntityNotFound("Brand", value)
            setattr(product, key, value)
        db.session.flush()
        return product

    product = run_in_transaction(_op)
    schedule_catalogue_refresh([product.id])
    return product


def update_product_packaging(
    product_id: int,
    *,
    pieces_per_box=None,
    boxes_per_pallet=None,
    size: str | None = None,
    actor_user_id: int | None = None,
) -> Product:
    """
    Change packaging ratios and/or size, then recompute derived pallet/colis
    counts on every inventory record of the product.
    """
    def _op():
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if product is None:
            raise EntityNotFound("Product", product_id)
        if pieces_per_box is not None:
            product.pieces_per_box = _ratio(pieces_per_box, "pieces_per_box")
        if boxes_per_pallet is not None:
            product.boxes_per_pallet = _ratio(boxes_per_pallet, "boxes_per_pallet")
        if size is not None:
            product.size = size.strip() or None
        db.session.flush()
        inventory_service.recompute_packaging_counts(product.id)
        return product

    product = run_in_transaction(_op)
    schedule_catalogue_refresh([product.id])
    emit_audit(
        "product.packaging_updated",
        entity_type="product",
        entity_id=product.id,
        actor_user_id=actor_user_id,
        payload={
            "pieces_per_box": str(product.pieces_per_box),
            "boxes_per_pallet": str(product.boxes_per_pallet),
            "size": product.size,
        },
    )
    return product


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise EntityNotFound("Product", product_id)
    return product


def list_products(*, brand_id: int | None = None, include_inactive: bool = False) -> list[Product]:
    query = db.session.query(Product)
    if brand_id is not None:
        query = query.filter(Product.brand_id == brand_id)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return query.order_by(Product.code).all()
