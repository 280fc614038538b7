# backend/ceramerp/routes/inventory.py
"""
Inventory and product routes.

Stock is never written directly through this API except by manual
adjustments; every other movement comes from orders, receipts and returns.

Quantities in responses are in the product's stocking unit.
"""
from flask import Blueprint, jsonify, request

from ..decorators import actor_user_id, json_body, settlement_endpoint
from ..services import catalogue_service, inventory_service, products_service


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/products")
@settlement_endpoint
def list_products_route():
    brand_id = request.args.get("brand_id", type=int)
    include_inactive = request.args.get("include_inactive", "false").lower() in {"1", "true", "yes"}
    products = products_service.list_products(brand_id=brand_id, include_inactive=include_inactive)
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)})


@inventory_bp.post("/products")
@settlement_endpoint
def create_product_route():
    data = json_body()
    product = products_service.create_product(
        code=data.get("code"),
        name=data.get("name"),
        size=data.get("size"),
        stocking_unit=data.get("stocking_unit") or "SQM",
        pieces_per_box=data.get("pieces_per_box", 0),
        boxes_per_pallet=data.get("boxes_per_pallet", 0),
        base_price=data.get("base_price"),
        purchase_price=data.get("purchase_price"),
        brand_id=data.get("brand_id"),
        track_stock=data.get("track_stock", True),
    )
    return jsonify({"product": product.to_dict()}), 201


@inventory_bp.put("/products/<int:product_id>/packaging")
@settlement_endpoint
def update_packaging_route(product_id: int):
    data = json_body()
    product = products_service.update_product_packaging(
        product_id,
        pieces_per_box=data.get("pieces_per_box"),
        boxes_per_pallet=data.get("boxes_per_pallet"),
        size=data.get("size"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"product": product.to_dict()})


@inventory_bp.get("/<int:product_id>")
@settlement_endpoint
def get_inventory_route(product_id: int):
    products_service.get_product(product_id)
    warehouse_id = request.args.get("warehouse_id", type=int)
    records = inventory_service.get_inventory_records(product_id, warehouse_id=warehouse_id)
    return jsonify({"product_id": product_id, "records": [r.to_dict() for r in records]})


@inventory_bp.get("/transactions")
@settlement_endpoint
def list_transactions_route():
    txs = inventory_service.list_inventory_transactions(
        product_id=request.args.get("product_id", type=int),
        warehouse_id=request.args.get("warehouse_id", type=int),
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id", type=int),
        limit=request.args.get("limit", default=200, type=int),
    )
    return jsonify({"items": [t.to_dict() for t in txs], "count": len(txs)})


@inventory_bp.post("/adjust")
@settlement_endpoint
def adjust_inventory_route():
    """
    Request body:
    {"product_id": 7, "warehouse_id": 1, "quantity_delta": -2.5, "reason": "Breakage"}
    """
    data = json_body()
    if data.get("product_id") is None or data.get("warehouse_id") is None:
        return jsonify({"error": "product_id and warehouse_id required", "code": "INVALID_INPUT", "details": {}}), 400

    tx = inventory_service.adjust_stock(
        product_id=data["product_id"],
        warehouse_id=data["warehouse_id"],
        quantity_delta=data.get("quantity_delta"),
        reason=data.get("reason") or "",
        ownership_type=data.get("ownership_type") or inventory_service.OWNERSHIP_OWNED,
        factory_id=data.get("factory_id"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"transaction": tx.to_dict()}), 201


@inventory_bp.get("/catalogue")
@settlement_endpoint
def get_catalogue_route():
    entries = catalogue_service.get_catalogue(request.args.get("product_id", type=int))
    return jsonify({"items": [e.to_dict() for e in entries], "count": len(entries)})
