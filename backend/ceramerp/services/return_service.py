"""
Customer returns and supplier (purchase) returns.

Both are two-phase documents:

1. Create (PENDING) - items recorded with their stocking-unit quantity;
   no ledger effects, may still be deleted.
2. Approve (PENDING -> APPROVED) - the single one-way gate that fires:
   - customer return: restock into the return warehouse, RETOUR_VENTE,
     customer balance -total (wholesale customers only)
   - purchase return: unreserved stock-out, RETOUR_ACHAT, supplier balance -total
   Approved documents are immutable: no re-approval, no un-approval, no delete.

Rejecting (customer) or cancelling (supplier) closes a PENDING document
without effects.
"""

from __future__ import annotations

from ..extensions import db
from ..models import (
    Customer,
    Order,
    Product,
    PurchaseOrder,
    PurchaseReturn,
    PurchaseReturnItem,
    Return,
    ReturnItem,
    Warehouse,
)
from ..numeric import ZERO, quantize_money, quantize_qty, to_decimal
from ..time_utils import parse_iso_date, utcnow
from . import accounting_service, inventory_service, pricing_service, units_service
from .audit_service import emit_audit
from .catalogue_service import schedule_catalogue_refresh
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOC_PURCHASE_RETURN, DOC_RETURN, next_document_number
from .errors import EntityNotFound
from .state_machine import PurchaseReturnStatus, ReturnStatus, ensure_status, ensure_transition


REFERENCE_RETURN = "RETURN"
REFERENCE_PURCHASE_RETURN = "PURCHASE_RETURN"


def _parse_return_line(line: dict):
    product_id = line.get("product_id")
    product = db.session.get(Product, product_id) if product_id else None
    if product is None:
        raise EntityNotFound("Product", product_id)
    quantity = quantize_qty(to_decimal(line.get("quantity"), field="quantity"))
    if quantity <= ZERO:
        raise ValueError("quantity must be positive")
    unit_code = units_service.normalize_unit(line.get("unit_code") or product.stocking_unit)
    stock_quantity = ZERO
    if product.track_stock:
        stock_quantity = inventory_service.to_stock_quantity(product, quantity, unit_code)
    return product, quantity, unit_code, stock_quantity


def _line_price(line: dict, fallback) -> object:
    raw = line.get("unit_price")
    price = quantize_money(to_decimal(raw if raw is not None else fallback, field="unit_price"))
    if price < ZERO:
        raise ValueError("unit_price must be >= 0")
    return price


# =============================================================================
# CUSTOMER RETURNS
# =============================================================================

def _locked_return(return_id: int) -> Return:
    doc = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if doc is None:
        raise EntityNotFound("Return", return_id)
    return doc


def _sold_price(order: Order | None, product_id: int, unit_code: str):
    if order is None:
        return None
    for item in order.items:
        if item.product_id == product_id and item.unit_code == unit_code:
            return item.unit_price
    return None


def _restock_keys(doc: Return, item: ReturnItem) -> list[tuple[str, int | None, object]]:
    """
    Stock keys a returned line goes back into.

    When the return is linked to an order in the same warehouse, quantity
    goes back to the keys the sale drew from, last drawn first and capped at
    what each key committed. Anything left lands in owned stock.
    """
    remaining = to_decimal(item.stock_quantity)
    keys = []
    order = doc.order
    if order is not None and order.warehouse_id == doc.warehouse_id:
        for order_item in order.items:
            if order_item.product_id != item.product_id:
                continue
            for allocation in reversed(order_item.allocations):
                if remaining <= ZERO or allocation.ownership_type == inventory_service.OWNERSHIP_OWNED:
                    continue
                quantity = min(remaining, to_decimal(allocation.committed_quantity))
                if quantity > ZERO:
                    keys.append((allocation.ownership_type, allocation.factory_id, quantity))
                    remaining -= quantity
    if remaining > ZERO:
        keys.append((inventory_service.OWNERSHIP_OWNED, None, remaining))
    return keys


def create_return(
    *,
    items: list[dict],
    order_id: int | None = None,
    customer_id: int | None = None,
    warehouse_id: int | None = None,
    client_name: str | None = None,
    return_date=None,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> Return:
    """
    Create a PENDING customer return.

    Warehouse and customer default to the linked order's. Item prices default
    to the price the product was sold at on that order, then to the price
    resolver.
    """
    if not items:
        raise ValueError("at least one item is required")

    def _op():
        order = None
        if order_id is not None:
            order = db.session.get(Order, order_id)
            if order is None:
                raise EntityNotFound("Order", order_id)
        resolved_customer_id = customer_id if customer_id is not None else (order.customer_id if order else None)
        if resolved_customer_id is not None and db.session.get(Customer, resolved_customer_id) is None:
            raise EntityNotFound("Customer", resolved_customer_id)
        resolved_warehouse_id = warehouse_id if warehouse_id is not None else (order.warehouse_id if order else None)
        if resolved_warehouse_id is None:
            raise ValueError("warehouse_id is required when the return is not linked to an order")
        if db.session.get(Warehouse, resolved_warehouse_id) is None:
            raise EntityNotFound("Warehouse", resolved_warehouse_id)

        doc = Return(
            return_number=next_document_number(DOC_RETURN),
            order_id=order.id if order else None,
            customer_id=resolved_customer_id,
            client_name=client_name or (order.client_name if order else None),
            warehouse_id=resolved_warehouse_id,
            status=ReturnStatus.PENDING.value,
            return_date=parse_iso_date(return_date) or utcnow().date(),
            reason=reason,
            created_by_user_id=actor_user_id,
        )
        db.session.add(doc)

        total = ZERO
        for line in items:
            product, quantity, unit_code, stock_quantity = _parse_return_line(line)
            fallback = _sold_price(order, product.id, unit_code)
            if fallback is None and line.get("unit_price") is None:
                fallback = pricing_service.require_price(product.id, resolved_customer_id).price
            unit_price = _line_price(line, fallback)
            line_total = quantize_money(quantity * unit_price)
            doc.items.append(ReturnItem(
                product_id=product.id,
                quantity=quantity,
                unit_code=unit_code,
                stock_quantity=stock_quantity,
                unit_price=unit_price,
                line_total=line_total,
                reason=line.get("reason"),
            ))
            total += line_total
        doc.total_amount = quantize_money(total)
        db.session.flush()
        return doc

    doc = run_in_transaction(_op)
    emit_audit("return.created", entity_type="return", entity_id=doc.id, actor_user_id=actor_user_id,
               payload={"return_number": doc.return_number, "total_amount": str(doc.total_amount)})
    return doc


def approve_return(
    return_id: int,
    *,
    payment_method: str | None = None,
    cash_account_id: int | None = None,
    actor_user_id: int | None = None,
) -> Return:
    """PENDING -> APPROVED: restock, RETOUR_VENTE, customer credit."""
    def _op():
        doc = _locked_return(return_id)
        ensure_transition("Return", doc.status, ReturnStatus.APPROVED)

        for item in doc.items:
            if to_decimal(item.stock_quantity) <= ZERO:
                continue
            for ownership_type, factory_id, quantity in _restock_keys(doc, item):
                inventory_service.restock(
                    product_id=item.product_id,
                    warehouse_id=doc.warehouse_id,
                    quantity=quantity,
                    ownership_type=ownership_type,
                    factory_id=factory_id,
                    reference_type=REFERENCE_RETURN,
                    reference_id=doc.id,
                    actor_user_id=actor_user_id,
                    note=f"Return {doc.return_number}",
                    commit=False,
                )

        total = to_decimal(doc.total_amount)
        if total > ZERO:
            accounting_service.record_cash_transaction(
                transaction_type=accounting_service.TX_RETOUR_VENTE,
                amount=total,
                payment_method=accounting_service.normalize_payment_method(payment_method),
                counterparty_type=accounting_service.COUNTERPARTY_CUSTOMER if doc.customer_id else None,
                counterparty_id=doc.customer_id,
                reference_type=REFERENCE_RETURN,
                reference_id=doc.id,
                description=f"Retour vente {doc.return_number}",
                actor_user_id=actor_user_id,
                cash_account_id=cash_account_id,
            )
            if doc.customer_id is not None and not doc.customer.is_retail:
                accounting_service.adjust_customer_balance(doc.customer_id, -total)

        doc.status = ReturnStatus.APPROVED.value
        doc.approved_at = utcnow()
        doc.approved_by_user_id = actor_user_id
        db.session.flush()
        return doc

    doc = run_in_transaction(_op)
    schedule_catalogue_refresh({item.product_id for item in doc.items})
    emit_audit("return.approved", entity_type="return", entity_id=doc.id, actor_user_id=actor_user_id,
               payload={"total_amount": str(doc.total_amount)})
    return doc


def reject_return(return_id: int, *, actor_user_id: int | None = None) -> Return:
    def _op():
        doc = _locked_return(return_id)
        ensure_transition("Return", doc.status, ReturnStatus.REJECTED)
        doc.status = ReturnStatus.REJECTED.value
        doc.rejected_at = utcnow()
        doc.rejected_by_user_id = actor_user_id
        db.session.flush()
        return doc

    doc = run_in_transaction(_op)
    emit_audit("return.rejected", entity_type="return", entity_id=doc.id, actor_user_id=actor_user_id)
    return doc


def delete_return(return_id: int, *, actor_user_id: int | None = None) -> None:
    def _op():
        doc = _locked_return(return_id)
        ensure_status("Return", doc.status, [ReturnStatus.PENDING], "delete")
        db.session.delete(doc)
        db.session.flush()

    run_in_transaction(_op)
    emit_audit("return.deleted", entity_type="return", entity_id=return_id, actor_user_id=actor_user_id)


def get_return(return_id: int) -> Return:
    doc = db.session.get(Return, return_id)
    if doc is None:
        raise EntityNotFound("Return", return_id)
    return doc


# =============================================================================
# PURCHASE RETURNS
# =============================================================================

def _locked_purchase_return(return_id: int) -> PurchaseReturn:
    doc = lock_for_update(db.session.query(PurchaseReturn).filter_by(id=return_id)).first()
    if doc is None:
        raise EntityNotFound("PurchaseReturn", return_id)
    return doc


def _purchase_key(doc: PurchaseReturn) -> dict:
    factory_id = doc.factory_id if doc.ownership_type == inventory_service.OWNERSHIP_CONSIGNMENT else None
    return {"ownership_type": doc.ownership_type, "factory_id": factory_id}


def create_purchase_return(
    *,
    items: list[dict],
    purchase_order_id: int | None = None,
    brand_id: int | None = None,
    factory_id: int | None = None,
    warehouse_id: int | None = None,
    ownership_type: str | None = None,
    return_date=None,
    reason: str | None = None,
    actor_user_id: int | None = None,
) -> PurchaseReturn:
    """
    Create a PENDING supplier return.

    Supplier, warehouse and ownership default to the linked PO's. Item prices
    default to the PO line price, then the product purchase price.
    """
    if not items:
        raise ValueError("at least one item is required")

    def _op():
        po = None
        if purchase_order_id is not None:
            po = db.session.get(PurchaseOrder, purchase_order_id)
            if po is None:
                raise EntityNotFound("PurchaseOrder", purchase_order_id)
        resolved_brand = brand_id if brand_id is not None or factory_id is not None else (po.brand_id if po else None)
        resolved_factory = factory_id if brand_id is not None or factory_id is not None else (po.factory_id if po else None)
        if (resolved_brand is None) == (resolved_factory is None):
            raise ValueError("exactly one of brand_id or factory_id is required")
        resolved_warehouse = warehouse_id if warehouse_id is not None else (po.warehouse_id if po else None)
        if resolved_warehouse is None:
            raise ValueError("warehouse_id is required when the return is not linked to a purchase order")
        if db.session.get(Warehouse, resolved_warehouse) is None:
            raise EntityNotFound("Warehouse", resolved_warehouse)
        ownership = ownership_type or (po.ownership_type if po else inventory_service.OWNERSHIP_OWNED)
        if ownership not in inventory_service.OWNERSHIP_TYPES:
            raise ValueError(f"invalid ownership_type: {ownership}")
        if ownership == inventory_service.OWNERSHIP_CONSIGNMENT and resolved_factory is None:
            raise ValueError("consignment returns require factory_id")

        doc = PurchaseReturn(
            return_number=next_document_number(DOC_PURCHASE_RETURN),
            purchase_order_id=po.id if po else None,
            brand_id=resolved_brand,
            factory_id=resolved_factory,
            warehouse_id=resolved_warehouse,
            ownership_type=ownership,
            status=PurchaseReturnStatus.PENDING.value,
            return_date=parse_iso_date(return_date) or utcnow().date(),
            reason=reason,
            created_by_user_id=actor_user_id,
        )
        db.session.add(doc)

        po_prices = {}
        if po is not None:
            po_prices = {(i.product_id, i.unit_code): i.unit_price for i in po.items}

        total = ZERO
        for line in items:
            product, quantity, unit_code, stock_quantity = _parse_return_line(line)
            fallback = po_prices.get((product.id, unit_code))
            if fallback is None:
                fallback = product.purchase_price if product.purchase_price is not None else 0
            unit_price = _line_price(line, fallback)
            line_total = quantize_money(quantity * unit_price)
            doc.items.append(PurchaseReturnItem(
                product_id=product.id,
                quantity=quantity,
                unit_code=unit_code,
                stock_quantity=stock_quantity,
                unit_price=unit_price,
                line_total=line_total,
            ))
            total += line_total
        doc.total_amount = quantize_money(total)
        db.session.flush()
        return doc

    doc = run_in_transaction(_op)
    emit_audit("purchase_return.created", entity_type="purchase_return", entity_id=doc.id,
               actor_user_id=actor_user_id, payload={"return_number": doc.return_number})
    return doc


def approve_purchase_return(
    return_id: int,
    *,
    payment_method: str | None = None,
    cash_account_id: int | None = None,
    actor_user_id: int | None = None,
) -> PurchaseReturn:
    """PENDING -> APPROVED: stock-out, RETOUR_ACHAT, supplier balance -total."""
    def _op():
        doc = _locked_purchase_return(return_id)
        ensure_transition("PurchaseReturn", doc.status, PurchaseReturnStatus.APPROVED)
        key = _purchase_key(doc)

        for item in doc.items:
            if to_decimal(item.stock_quantity) > ZERO:
                inventory_service.issue_stock(
                    product_id=item.product_id,
                    warehouse_id=doc.warehouse_id,
                    quantity=item.stock_quantity,
                    reference_type=REFERENCE_PURCHASE_RETURN,
                    reference_id=doc.id,
                    actor_user_id=actor_user_id,
                    note=f"Purchase return {doc.return_number}",
                    commit=False,
                    **key,
                )

        total = to_decimal(doc.total_amount)
        if total > ZERO:
            counterparty_type, counterparty_id = accounting_service.supplier_counterparty(
                doc.brand_id, doc.factory_id
            )
            accounting_service.record_cash_transaction(
                transaction_type=accounting_service.TX_RETOUR_ACHAT,
                amount=total,
                payment_method=accounting_service.normalize_payment_method(payment_method),
                counterparty_type=counterparty_type,
                counterparty_id=counterparty_id,
                reference_type=REFERENCE_PURCHASE_RETURN,
                reference_id=doc.id,
                description=f"Retour achat {doc.return_number}",
                actor_user_id=actor_user_id,
                cash_account_id=cash_account_id,
            )
            accounting_service.adjust_supplier_balance(
                brand_id=doc.brand_id, factory_id=doc.factory_id, delta=-total
            )

        doc.status = PurchaseReturnStatus.APPROVED.value
        doc.approved_at = utcnow()
        doc.approved_by_user_id = actor_user_id
        db.session.flush()
        return doc

    doc = run_in_transaction(_op)
    schedule_catalogue_refresh({item.product_id for item in doc.items})
    emit_audit("purchase_return.approved", entity_type="purchase_return", entity_id=doc.id,
               actor_user_id=actor_user_id, payload={"total_amount": str(doc.total_amount)})
    return doc


def cancel_purchase_return(return_id: int, *, actor_user_id: int | None = None) -> PurchaseReturn:
    def _op():
        doc = _locked_purchase_return(return_id)
        ensure_transition("PurchaseReturn", doc.status, PurchaseReturnStatus.CANCELLED)
        doc.status = PurchaseReturnStatus.CANCELLED.value
        doc.cancelled_at = utcnow()
        db.session.flush()
        return doc

    doc = run_in_transaction(_op)
    emit_audit("purchase_return.cancelled", entity_type="purchase_return", entity_id=doc.id,
               actor_user_id=actor_user_id)
    return doc


def delete_purchase_return(return_id: int, *, actor_user_id: int | None = None) -> None:
    def _op():
        doc = _locked_purchase_return(return_id)
        ensure_status("PurchaseReturn", doc.status, [PurchaseReturnStatus.PENDING], "delete")
        db.session.delete(doc)
        db.session.flush()

    run_in_transaction(_op)
    emit_audit("purchase_return.deleted", entity_type="purchase_return", entity_id=return_id,
               actor_user_id=actor_user_id)


def get_purchase_return(return_id: int) -> PurchaseReturn:
    doc = db.session.get(PurchaseReturn, return_id)
    if doc is None:
        raise EntityNotFound("PurchaseReturn", return_id)
    return doc
