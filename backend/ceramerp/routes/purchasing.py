# Overview: Flask API routes for purchase orders and goods receipts.

from flask import Blueprint, jsonify

from ..decorators import actor_user_id, json_body, settlement_endpoint
from ..services import purchasing_service


purchasing_bp = Blueprint("purchasing", __name__, url_prefix="/api/purchase-orders")


def _po_payload(po) -> dict:
    data = po.to_dict(include_items=True)
    data["receipts"] = [r.to_dict(include_items=True) for r in purchasing_service.list_goods_receipts(po.id)]
    return data


@purchasing_bp.post("")
@settlement_endpoint
def create_purchase_order_route():
    """
    Request body:
    {
        "warehouse_id": 1,
        "brand_id": 2 | "factory_id": 4,
        "ownership_type": "OWNED" | "CONSIGNMENT",
        "items": [{"product_id": 7, "quantity": 10, "unit_code": "BOX", "unit_price": 120.0}],
        "payment_amount": 0
    }
    """
    data = json_body()
    if data.get("warehouse_id") is None:
        return jsonify({"error": "warehouse_id required", "code": "INVALID_INPUT", "details": {}}), 400

    po = purchasing_service.create_purchase_order(
        warehouse_id=data["warehouse_id"],
        items=data.get("items") or [],
        brand_id=data.get("brand_id"),
        factory_id=data.get("factory_id"),
        ownership_type=data.get("ownership_type") or "OWNED",
        payment_amount=data.get("payment_amount", 0),
        payment_method=data.get("payment_method"),
        cash_account_id=data.get("cash_account_id"),
        notes=data.get("notes"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"purchase_order": _po_payload(po)}), 201


@purchasing_bp.get("/<int:po_id>")
@settlement_endpoint
def get_purchase_order_route(po_id: int):
    po = purchasing_service.get_purchase_order(po_id)
    return jsonify({"purchase_order": _po_payload(po)})


@purchasing_bp.put("/<int:po_id>")
@settlement_endpoint
def update_purchase_order_route(po_id: int):
    data = json_body()
    po = purchasing_service.update_purchase_order(
        po_id,
        items=data.get("items") or [],
        warehouse_id=data.get("warehouse_id"),
        notes=data.get("notes"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"purchase_order": _po_payload(po)})


@purchasing_bp.post("/<int:po_id>/receipts")
@settlement_endpoint
def post_goods_receipt_route(po_id: int):
    """
    Request body:
    {
        "receipt_date": "2024-05-01",  (optional)
        "items": [{"purchase_order_item_id": 9, "quantity": 4, "pallet_count": 1, "colis_count": 4}]
    }
    """
    data = json_body()
    receipt = purchasing_service.post_goods_receipt(
        po_id,
        items=data.get("items") or [],
        receipt_date=data.get("receipt_date"),
        notes=data.get("notes"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"receipt": receipt.to_dict(include_items=True)}), 201


@purchasing_bp.post("/<int:po_id>/cancel")
@settlement_endpoint
def cancel_purchase_order_route(po_id: int):
    po = purchasing_service.cancel_purchase_order(po_id, actor_user_id=actor_user_id())
    return jsonify({"purchase_order": po.to_dict(include_items=True)})


@purchasing_bp.delete("/<int:po_id>")
@settlement_endpoint
def delete_purchase_order_route(po_id: int):
    purchasing_service.delete_purchase_order(po_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": True, "id": po_id})
