# Overview: Flask API routes for standalone payments and cash ledger inspection.

from flask import Blueprint, jsonify, request

from ..decorators import actor_user_id, json_body, settlement_endpoint
from ..services import accounting_service


accounting_bp = Blueprint("accounting", __name__, url_prefix="/api/accounting")


@accounting_bp.post("/payments/customer")
@settlement_endpoint
def customer_payment_route():
    """{"customer_id": 3, "amount": 500, "payment_method": "ESPECE"} -> VERSEMENT"""
    data = json_body()
    if data.get("customer_id") is None:
        return jsonify({"error": "customer_id required", "code": "INVALID_INPUT", "details": {}}), 400
    tx = accounting_service.record_customer_payment(
        customer_id=data["customer_id"],
        amount=data.get("amount"),
        payment_method=data.get("payment_method"),
        description=data.get("description"),
        cash_account_id=data.get("cash_account_id"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"transaction": tx.to_dict()}), 201


@accounting_bp.post("/payments/supplier")
@settlement_endpoint
def supplier_payment_route():
    """{"brand_id": 2 | "factory_id": 4, "amount": 500} -> PAIEMENT"""
    data = json_body()
    tx = accounting_service.record_supplier_payment(
        amount=data.get("amount"),
        brand_id=data.get("brand_id"),
        factory_id=data.get("factory_id"),
        payment_method=data.get("payment_method"),
        description=data.get("description"),
        cash_account_id=data.get("cash_account_id"),
        actor_user_id=actor_user_id(),
    )
    return jsonify({"transaction": tx.to_dict()}), 201


@accounting_bp.get("/transactions")
@settlement_endpoint
def list_cash_transactions_route():
    txs = accounting_service.list_cash_transactions(
        reference_type=request.args.get("reference_type"),
        reference_id=request.args.get("reference_id", type=int),
        counterparty_type=request.args.get("counterparty_type"),
        counterparty_id=request.args.get("counterparty_id", type=int),
        limit=request.args.get("limit", default=200, type=int),
    )
    return jsonify({"items": [t.to_dict() for t in txs], "count": len(txs)})
