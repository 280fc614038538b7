# Overview: Flask API routes for customer and supplier returns (approval workflow).

"""
Return Processing API Routes

Customer returns:  /api/returns
Supplier returns:  /api/purchase-returns

Both are created PENDING and take effect only on approve; a PENDING
document can be rejected (customer) / cancelled (supplier) or deleted.
"""

from flask import Blueprint, jsonify

from ..decorators import actor_user_id, json_body, settlement_endpoint
from ..services import return_service


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")
purchase_returns_bp = Blueprint("purchase_returns", __name__, url_prefix="/api/purchase-returns")


# =============================================================================
# CUSTOMER RETURNS
# =============================================================================

@returns_bp.post("")
@settlement_endpoint
def create_return_route():
    """
    Request body:
    {
        "order_id": 12,          (optional)
        "customer_id": 3,        (optional, defaults to the order's)
        "warehouse_id": 1,       (required without order_id)
        "reason": "Broken tiles",
        "items": [{"product_id": 7, "quantity": 1, "unit_code": "BOX"}]
    }
    """
    data = json_body()
    doc = return_service.create_return(
        items=data.get("items") or [],
        order_id=data.get("order_id"),
        customer_id=data.get("customer_id"),
        warehouse_id=data.get("warehouse_id"),
        client_name=data.get("client_name"),
        return_date=data.get("return_date"),
        reason=data.get("reason"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"return": doc.to_dict(include_items=True)}), 201


@returns_bp.get("/<int:return_id>")
@settlement_endpoint
def get_return_route(return_id: int):
    doc = return_service.get_return(return_id)
    return jsonify({"return": doc.to_dict(include_items=True)})


@returns_bp.post("/<int:return_id>/approve")
@settlement_endpoint
def approve_return_route(return_id: int):
    data = json_body()
    doc = return_service.approve_return(
        return_id,
        payment_method=data.get("payment_method"),
        cash_account_id=data.get("cash_account_id"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"return": doc.to_dict(include_items=True)})


@returns_bp.post("/<int:return_id>/reject")
@settlement_endpoint
def reject_return_route(return_id: int):
    doc = return_service.reject_return(return_id, actor_user_id=actor_user_id())
    return jsonify({"return": doc.to_dict()})


@returns_bp.delete("/<int:return_id>")
@settlement_endpoint
def delete_return_route(return_id: int):
    return_service.delete_return(return_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": True, "id": return_id})


# =============================================================================
# SUPPLIER RETURNS
# =============================================================================

@purchase_returns_bp.post("")
@settlement_endpoint
def create_purchase_return_route():
    data = json_body()
    doc = return_service.create_purchase_return(
        items=data.get("items") or [],
        purchase_order_id=data.get("purchase_order_id"),
        brand_id=data.get("brand_id"),
        factory_id=data.get("factory_id"),
        warehouse_id=data.get("warehouse_id"),
        ownership_type=data.get("ownership_type"),
        return_date=data.get("return_date"),
        reason=data.get("reason"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"purchase_return": doc.to_dict(include_items=True)}), 201


@purchase_returns_bp.get("/<int:return_id>")
@settlement_endpoint
def get_purchase_return_route(return_id: int):
    doc = return_service.get_purchase_return(return_id)
    return jsonify({"purchase_return": doc.to_dict(include_items=True)})


@purchase_returns_bp.post("/<int:return_id>/approve")
@settlement_endpoint
def approve_purchase_return_route(return_id: int):
    data = json_body()
    doc = return_service.approve_purchase_return(
        return_id,
        payment_method=data.get("payment_method"),
        cash_account_id=data.get("cash_account_id"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"purchase_return": doc.to_dict(include_items=True)})


@purchase_returns_bp.post("/<int:return_id>/cancel")
@settlement_endpoint
def cancel_purchase_return_route(return_id: int):
    doc = return_service.cancel_purchase_return(return_id, actor_user_id=actor_user_id())
    return jsonify({"purchase_return": doc.to_dict()})


@purchase_returns_bp.delete("/<int:return_id>")
@settlement_endpoint
def delete_purchase_return_route(return_id: int):
    return_service.delete_purchase_return(return_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": True, "id": return_id})
