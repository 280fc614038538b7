# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

"""
Order API Routes

LIFECYCLE (see order_service):
- POST   /api/orders                          create PENDING order (reserves stock)
- POST   /api/orders/<id>/items               add line
- DELETE /api/orders/<id>/items/<item_id>     remove line
- POST   /api/orders/<id>/confirm             PENDING -> CONFIRMED (commit stock, ledger, balance)
- PUT    /api/orders/<id>                     edit (reverse + re-apply, back to PENDING)
- POST   /api/orders/<id>/cancel              PENDING -> CANCELLED
- POST   /api/orders/<id>/status              delivery tracking moves
- DELETE /api/orders/<id>                     delete PENDING order
"""

from flask import Blueprint, jsonify, request

from ..decorators import actor_user_id, json_body, settlement_endpoint
from ..services import order_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

_HEADER_FIELDS = (
    "customer_id",
    "client_name",
    "order_type",
    "payment_amount",
    "payment_method",
    "delivery_cost",
    "timber_price",
    "discount_amount",
    "notes",
)


@orders_bp.get("")
@settlement_endpoint
def list_orders_route():
    customer_id = request.args.get("customer_id", type=int)
    status = request.args.get("status")
    limit = request.args.get("limit", default=100, type=int)
    offset = request.args.get("offset", default=0, type=int)
    orders = order_service.list_orders(customer_id=customer_id, status=status, limit=limit, offset=offset)
    return jsonify({"items": [o.to_dict() for o in orders], "count": len(orders)})


@orders_bp.post("")
@settlement_endpoint
def create_order_route():
    """
    Request body:
    {
        "warehouse_id": 1,
        "customer_id": 3,            (optional; walk-in when absent)
        "client_name": "...",        (optional)
        "items": [{"product_id": 7, "quantity": 2, "unit_code": "BOX"}],
        "payment_amount": 0, "payment_method": "ESPECE", ...
    }
    """
    data = json_body()
    if data.get("warehouse_id") is None:
        return jsonify({"error": "warehouse_id required", "code": "INVALID_INPUT", "details": {}}), 400

    header = {key: data[key] for key in _HEADER_FIELDS if key in data}
    order = order_service.create_order(
        warehouse_id=data["warehouse_id"],
        items=data.get("items") or [],
        actor_user_id=actor_user_id(),
        **header,
    )
    return jsonify(order_service.order_summary(order)), 201


@orders_bp.get("/<int:order_id>")
@settlement_endpoint
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    return jsonify(order_service.order_summary(order))


@orders_bp.post("/<int:order_id>/items")
@settlement_endpoint
def add_item_route(order_id: int):
    data = json_body()
    if data.get("product_id") is None or data.get("quantity") is None:
        return jsonify({"error": "product_id and quantity required", "code": "INVALID_INPUT", "details": {}}), 400

    item = order_service.add_item(
        order_id,
        product_id=data["product_id"],
        quantity=data["quantity"],
        unit_code=data.get("unit_code"),
        unit_price=data.get("unit_price"),
        discount_percent=data.get("discount_percent", 0),
        tax_percent=data.get("tax_percent", 0),
        pallet_count=data.get("pallet_count", 0),
        colis_count=data.get("colis_count", 0),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"item": item.to_dict()}), 201


@orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@settlement_endpoint
def remove_item_route(order_id: int, item_id: int):
    order = order_service.remove_item(order_id, item_id, actor_user_id=actor_user_id())
    return jsonify(order_service.order_summary(order))


@orders_bp.post("/<int:order_id>/confirm")
@settlement_endpoint
def confirm_order_route(order_id: int):
    data = json_body()
    order = order_service.confirm_order(
        order_id,
        payment_amount=data.get("payment_amount"),
        payment_method=data.get("payment_method"),
        cash_account_id=data.get("cash_account_id"),
        actor_user_id=actor_user_id(),
    )
    return jsonify(order_service.order_summary(order))


@orders_bp.put("/<int:order_id>")
@settlement_endpoint
def update_order_route(order_id: int):
    data = json_body()
    header = {key: data[key] for key in _HEADER_FIELDS if key in data}
    order = order_service.update_order(
        order_id,
        items=data.get("items") or [],
        actor_user_id=actor_user_id(),
        **header,
    )
    return jsonify(order_service.order_summary(order))


@orders_bp.post("/<int:order_id>/cancel")
@settlement_endpoint
def cancel_order_route(order_id: int):
    order = order_service.cancel_order(order_id, actor_user_id=actor_user_id())
    return jsonify(order_service.order_summary(order))


@orders_bp.post("/<int:order_id>/status")
@settlement_endpoint
def set_order_status_route(order_id: int):
    data = json_body()
    order = order_service.set_order_status(order_id, data.get("status"), actor_user_id=actor_user_id())
    return jsonify({"order": order.to_dict()})


@orders_bp.delete("/<int:order_id>")
@settlement_endpoint
def delete_order_route(order_id: int):
    order_service.delete_order(order_id, actor_user_id=actor_user_id())
    return jsonify({"deleted": True, "id": order_id})
