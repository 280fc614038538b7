# Overview: Flask API routes for price resolution and customer price overrides.

from flask import Blueprint, jsonify, request

from ..decorators import json_body, settlement_endpoint
from ..numeric import as_float
from ..services import pricing_service


pricing_bp = Blueprint("pricing", __name__, url_prefix="/api/pricing")


@pricing_bp.get("/resolve")
@settlement_endpoint
def resolve_price_route():
    """GET /api/pricing/resolve?product_id=7&customer_id=3 -> {"price", "source"}"""
    product_id = request.args.get("product_id", type=int)
    if product_id is None:
        return jsonify({"error": "product_id required", "code": "INVALID_INPUT", "details": {}}), 400
    resolution = pricing_service.resolve_price(product_id, request.args.get("customer_id", type=int))
    return jsonify(resolution.to_dict())


@pricing_bp.put("/contracts")
@settlement_endpoint
def set_contract_price_route():
    data = json_body()
    row = pricing_service.set_contract_price(
        customer_id=data.get("customer_id"),
        product_id=data.get("product_id"),
        price=data.get("price"),
    )
    return jsonify({"contract": row.to_dict()})


@pricing_bp.delete("/contracts/<int:customer_id>/<int:product_id>")
@settlement_endpoint
def delete_contract_price_route(customer_id: int, product_id: int):
    deleted = pricing_service.delete_contract_price(customer_id=customer_id, product_id=product_id)
    return jsonify({"deleted": deleted})


@pricing_bp.put("/brand-rules")
@settlement_endpoint
def set_brand_rule_route():
    data = json_body()
    row = pricing_service.set_brand_rule(
        customer_id=data.get("customer_id"),
        brand_id=data.get("brand_id"),
        size=data.get("size"),
        price=data.get("price"),
    )
    return jsonify({"brand_rule": row.to_dict()})


@pricing_bp.put("/price-lists/<int:price_list_id>/items")
@settlement_endpoint
def set_price_list_price_route(price_list_id: int):
    data = json_body()
    row = pricing_service.set_price_list_price(
        price_list_id=price_list_id,
        product_id=data.get("product_id"),
        price=data.get("price"),
    )
    return jsonify({
        "price_list_item": {
            "id": row.id,
            "price_list_id": row.price_list_id,
            "product_id": row.product_id,
            "price": as_float(row.price),
        }
    })
