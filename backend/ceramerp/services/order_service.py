# Overview: Sales order state machine; reservation, confirmation, edit-with-reversal and deletion.

"""
Order settlement.

LIFECYCLE (state_machine.ORDER_TRANSITIONS):
- PENDING    editable; each item reserves stock (on_hand untouched)
- CONFIRMED  items committed (on_hand and reserved deducted), VENTE and
             optional VERSEMENT posted, wholesale customer balance moved
- PROCESSING / SHIPPED / DELIVERED  delivery tracking only, no ledger effects
- CANCELLED  terminal, only from PENDING; reservations released

EDIT (update_order):
Reverses exactly what the current state applied, using the per-item
reserved/committed snapshots and Order.balance_delta_applied, then replaces
the items and forces the order back to PENDING. The operator re-confirms.

Every public operation is one run_in_transaction unit: a failure on any item
or ledger write rolls the whole operation back.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import Customer, Order, OrderItem, OrderItemAllocation, Product, Warehouse
from ..numeric import ZERO, quantize_money, quantize_qty, to_decimal
from ..time_utils import utcnow
from . import accounting_service, inventory_service, pricing_service, units_service
from .audit_service import emit_audit
from .catalogue_service import schedule_catalogue_refresh
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOC_ORDER, next_document_number
from .errors import EntityNotFound, InvalidStateTransition
from .state_machine import OrderStatus, ensure_status, ensure_transition


ORDER_TYPE_RETAIL = "RETAIL"
ORDER_TYPE_WHOLESALE = "WHOLESALE"
ORDER_TYPES = {ORDER_TYPE_RETAIL, ORDER_TYPE_WHOLESALE}

REFERENCE_ORDER = "ORDER"

EDITABLE_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
)
TRACKING_STATUSES = (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED)

_HUNDRED = Decimal("100")


# =============================================================================
# HELPERS
# =============================================================================

def _locked_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise EntityNotFound("Order", order_id)
    return order


def _non_negative(value, field: str) -> Decimal:
    amount = quantize_money(to_decimal(value, field=field))
    if amount < ZERO:
        raise ValueError(f"{field} must be >= 0")
    return amount


def _percent(value, field: str) -> Decimal:
    pct = to_decimal(value, field=field)
    if pct < ZERO or pct > _HUNDRED:
        raise ValueError(f"{field} must be between 0 and 100")
    return pct


def _resolve_order_type(order_type: str | None, customer: Customer | None) -> str:
    if order_type:
        value = order_type.strip().upper()
        if value not in ORDER_TYPES:
            raise ValueError(f"invalid order_type: {order_type}")
        return value
    if customer is None or customer.is_retail:
        return ORDER_TYPE_RETAIL
    return ORDER_TYPE_WHOLESALE


def _is_retail(order: Order) -> bool:
    if order.customer_id is None or order.order_type == ORDER_TYPE_RETAIL:
        return True
    return order.customer is not None and order.customer.is_retail


def _get_customer(customer_id: int | None) -> Customer | None:
    if customer_id is None:
        return None
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise EntityNotFound("Customer", customer_id)
    return customer


def _touched_products(order: Order) -> set[int]:
    return {item.product_id for item in order.items}


def _insert_item(order: Order, line: dict) -> OrderItem:
    """
    Price, convert and reserve one line (caller's transaction).

    InsufficientStock from the reservation propagates before the item is
    attached, so the rolled-back transaction never shows a partial line.
    """
    product_id = line.get("product_id")
    product = db.session.get(Product, product_id) if product_id else None
    if product is None:
        raise EntityNotFound("Product", product_id)
    if not product.is_active:
        raise ValueError(f"product {product.id} is inactive")

    quantity = quantize_qty(to_decimal(line.get("quantity"), field="quantity"))
    if quantity <= ZERO:
        raise ValueError("quantity must be positive")
    unit_code = units_service.normalize_unit(line.get("unit_code") or product.stocking_unit)

    if line.get("unit_price") is not None:
        unit_price = _non_negative(line["unit_price"], "unit_price")
        price_source = pricing_service.SOURCE_POS
    else:
        resolution = pricing_service.require_price(product.id, order.customer_id)
        unit_price, price_source = resolution.price, resolution.source

    discount_pct = _percent(line.get("discount_percent", 0), "discount_percent")
    tax_pct = _percent(line.get("tax_percent", 0), "tax_percent")
    gross = quantity * unit_price
    discount_amount = quantize_money(gross * discount_pct / _HUNDRED)
    taxable = gross - discount_amount
    tax_amount = quantize_money(taxable * tax_pct / _HUNDRED)

    stock_quantity = ZERO
    allocations = []
    if product.track_stock:
        stock_quantity = inventory_service.to_stock_quantity(product, quantity, unit_code)
        allocations = inventory_service.allocate_reservation(
            product_id=product.id,
            warehouse_id=order.warehouse_id,
            quantity=stock_quantity,
        )

    cost_price = product.purchase_price if product.purchase_price is not None else product.base_price

    item = OrderItem(
        product_id=product.id,
        quantity=quantity,
        unit_code=unit_code,
        stock_quantity=stock_quantity,
        unit_price=unit_price,
        price_source=price_source,
        discount_percent=discount_pct,
        discount_amount=discount_amount,
        tax_percent=tax_pct,
        tax_amount=tax_amount,
        line_total=quantize_money(taxable + tax_amount),
        pallet_count=quantize_qty(to_decimal(line.get("pallet_count", 0), field="pallet_count")),
        colis_count=quantize_qty(to_decimal(line.get("colis_count", 0), field="colis_count")),
        cost_price=cost_price,
        reserved_quantity=stock_quantity,
        committed_quantity=ZERO,
    )
    item.allocations = [
        OrderItemAllocation(
            ownership_type=ownership_type,
            factory_id=factory_id,
            quantity=allocated,
            reserved_quantity=allocated,
            committed_quantity=ZERO,
        )
        for ownership_type, factory_id, allocated in allocations
    ]
    order.items.append(item)
    db.session.flush()
    return item


def _recompute_totals(order: Order) -> None:
    """
    subtotal = sum(qty * price - line discount)
    total    = subtotal + tax + delivery + timber - header discount
    """
    subtotal = sum((to_decimal(i.line_total) - to_decimal(i.tax_amount) for i in order.items), ZERO)
    tax = sum((to_decimal(i.tax_amount) for i in order.items), ZERO)
    total = (
        subtotal
        + tax
        + to_decimal(order.delivery_cost)
        + to_decimal(order.timber_price)
        - to_decimal(order.discount_amount)
    )
    if total < ZERO:
        raise ValueError("order discount exceeds order value")
    order.subtotal = quantize_money(subtotal)
    order.tax_amount = quantize_money(tax)
    order.total_amount = quantize_money(total)
    db.session.flush()


def _packaging_shares(item: OrderItem) -> list[tuple[Decimal, Decimal]]:
    """Split the line's pallet/colis counts over its allocations by quantity."""
    allocations = item.allocations
    whole = sum((to_decimal(a.quantity) for a in allocations), ZERO)
    pallets_left = to_decimal(item.pallet_count)
    colis_left = to_decimal(item.colis_count)
    shares = []
    for index, allocation in enumerate(allocations):
        if index == len(allocations) - 1:
            shares.append((pallets_left, colis_left))
            break
        ratio = to_decimal(allocation.quantity) / whole
        pallets = quantize_qty(to_decimal(item.pallet_count) * ratio)
        colis = quantize_qty(to_decimal(item.colis_count) * ratio)
        shares.append((pallets, colis))
        pallets_left -= pallets
        colis_left -= colis
    return shares


def _release_item(order: Order, item: OrderItem) -> None:
    for allocation in item.allocations:
        reserved = to_decimal(allocation.reserved_quantity)
        if reserved > ZERO:
            inventory_service.release_stock(
                product_id=item.product_id,
                warehouse_id=order.warehouse_id,
                quantity=reserved,
                ownership_type=allocation.ownership_type,
                factory_id=allocation.factory_id,
                commit=False,
            )
            allocation.reserved_quantity = ZERO
    item.reserved_quantity = ZERO


def _commit_item(order: Order, item: OrderItem, actor_user_id: int | None) -> None:
    """Turn each allocation's reservation into an OUT on the same key."""
    committed_total = ZERO
    for allocation, (pallets, colis) in zip(item.allocations, _packaging_shares(item)):
        reserved = to_decimal(allocation.reserved_quantity)
        if reserved <= ZERO:
            continue
        tx = inventory_service.commit_stock(
            product_id=item.product_id,
            warehouse_id=order.warehouse_id,
            quantity=reserved,
            pallet_delta=pallets,
            colis_delta=colis,
            ownership_type=allocation.ownership_type,
            factory_id=allocation.factory_id,
            reference_type=REFERENCE_ORDER,
            reference_id=order.id,
            actor_user_id=actor_user_id,
            commit=False,
        )
        allocation.committed_quantity = -to_decimal(tx.quantity)
        allocation.reserved_quantity = ZERO
        committed_total += to_decimal(allocation.committed_quantity)
    item.committed_quantity = committed_total
    item.reserved_quantity = ZERO


def _release_reservations(order: Order) -> None:
    for item in order.items:
        _release_item(order, item)
    db.session.flush()


def _reverse_confirmation(order: Order, actor_user_id: int | None) -> None:
    """Undo commit, balance and cash effects applied by confirm_order."""
    for item in order.items:
        for allocation, (pallets, colis) in zip(item.allocations, _packaging_shares(item)):
            committed = to_decimal(allocation.committed_quantity)
            if committed <= ZERO:
                continue
            inventory_service.restock(
                product_id=item.product_id,
                warehouse_id=order.warehouse_id,
                quantity=committed,
                pallet_delta=pallets,
                colis_delta=colis,
                ownership_type=allocation.ownership_type,
                factory_id=allocation.factory_id,
                reference_type=REFERENCE_ORDER,
                reference_id=order.id,
                actor_user_id=actor_user_id,
                note=f"Reversal of {order.order_number}",
                commit=False,
            )
            allocation.committed_quantity = ZERO
        item.committed_quantity = ZERO

    applied = to_decimal(order.balance_delta_applied)
    if order.customer_id is not None and applied != ZERO:
        accounting_service.adjust_customer_balance(order.customer_id, -applied)
    order.balance_delta_applied = ZERO

    accounting_service.reverse_cash_transactions(REFERENCE_ORDER, order.id)
    db.session.flush()


def _apply_header(order: Order, header: dict) -> None:
    if "customer_id" in header:
        customer = _get_customer(header["customer_id"])
        order.customer_id = customer.id if customer else None
        order.customer = customer
    if "client_name" in header:
        order.client_name = header["client_name"]
    if "order_type" in header or "customer_id" in header:
        order.order_type = _resolve_order_type(header.get("order_type"), order.customer)
    for field in ("payment_amount", "delivery_cost", "timber_price", "discount_amount"):
        if field in header and header[field] is not None:
            setattr(order, field, _non_negative(header[field], field))
    if header.get("payment_method") is not None:
        order.payment_method = accounting_service.normalize_payment_method(header["payment_method"])
    if "notes" in header:
        order.notes = header["notes"]


def order_summary(order: Order) -> dict:
    """Result payload returned to callers after a settlement operation."""
    total = to_decimal(order.total_amount)
    paid = to_decimal(order.payment_amount)
    return {
        "order": order.to_dict(include_items=True),
        "total_amount": float(total),
        "payment_amount": float(paid),
        "remaining_amount": float(total - paid),
        "customer_balance": (
            float(order.customer.current_balance) if order.customer is not None else None
        ),
    }


# =============================================================================
# OPERATIONS
# =============================================================================

def create_order(
    *,
    warehouse_id: int,
    customer_id: int | None = None,
    client_name: str | None = None,
    order_type: str | None = None,
    items: list[dict] | None = None,
    payment_amount=0,
    payment_method: str | None = None,
    delivery_cost=0,
    timber_price=0,
    discount_amount=0,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> Order:
    """Create a PENDING order, reserving stock for any initial items."""
    def _op():
        if db.session.get(Warehouse, warehouse_id) is None:
            raise EntityNotFound("Warehouse", warehouse_id)
        customer = _get_customer(customer_id)
        order = Order(
            order_number=next_document_number(DOC_ORDER),
            customer_id=customer.id if customer else None,
            client_name=client_name,
            warehouse_id=warehouse_id,
            order_type=_resolve_order_type(order_type, customer),
            status=OrderStatus.PENDING.value,
            payment_amount=_non_negative(payment_amount, "payment_amount"),
            payment_method=accounting_service.normalize_payment_method(payment_method),
            delivery_cost=_non_negative(delivery_cost, "delivery_cost"),
            timber_price=_non_negative(timber_price, "timber_price"),
            discount_amount=_non_negative(discount_amount, "discount_amount"),
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        order.customer = customer
        db.session.add(order)
        db.session.flush()
        for line in items or []:
            _insert_item(order, line)
        _recompute_totals(order)
        return order

    order = run_in_transaction(_op)
    schedule_catalogue_refresh(_touched_products(order))
    emit_audit(
        "order.created",
        entity_type="order",
        entity_id=order.id,
        actor_user_id=actor_user_id,
        payload={"order_number": order.order_number, "total_amount": str(order.total_amount)},
    )
    return order


def add_item(
    order_id: int,
    *,
    product_id: int,
    quantity,
    unit_code: str | None = None,
    unit_price=None,
    discount_percent=0,
    tax_percent=0,
    pallet_count=0,
    colis_count=0,
    actor_user_id: int | None = None,
) -> OrderItem:
    """Add a line to a PENDING order: resolve price, convert, reserve."""
    line = {
        "product_id": product_id,
        "quantity": quantity,
        "unit_code": unit_code,
        "unit_price": unit_price,
        "discount_percent": discount_percent,
        "tax_percent": tax_percent,
        "pallet_count": pallet_count,
        "colis_count": colis_count,
    }

    def _op():
        order = _locked_order(order_id)
        ensure_status("Order", order.status, [OrderStatus.PENDING], "add items to")
        item = _insert_item(order, line)
        _recompute_totals(order)
        return item

    item = run_in_transaction(_op)
    schedule_catalogue_refresh([item.product_id])
    emit_audit(
        "order.item_added",
        entity_type="order",
        entity_id=order_id,
        actor_user_id=actor_user_id,
        payload={"item_id": item.id, "product_id": item.product_id, "quantity": str(item.quantity)},
    )
    return item


def remove_item(order_id: int, item_id: int, *, actor_user_id: int | None = None) -> Order:
    """Drop a line from a PENDING order and release its reservation."""
    def _op():
        order = _locked_order(order_id)
        ensure_status("Order", order.status, [OrderStatus.PENDING], "remove items from")
        item = next((i for i in order.items if i.id == item_id), None)
        if item is None:
            raise EntityNotFound("OrderItem", item_id)
        _release_item(order, item)
        product_id = item.product_id
        order.items.remove(item)
        db.session.flush()
        _recompute_totals(order)
        return order, product_id

    order, product_id = run_in_transaction(_op)
    schedule_catalogue_refresh([product_id])
    emit_audit("order.item_removed", entity_type="order", entity_id=order_id,
               actor_user_id=actor_user_id, payload={"item_id": item_id})
    return order


def confirm_order(
    order_id: int,
    *,
    payment_amount=None,
    payment_method: str | None = None,
    cash_account_id: int | None = None,
    actor_user_id: int | None = None,
) -> Order:
    """
    PENDING -> CONFIRMED.

    - VENTE for the total, VERSEMENT for the payment (if any)
    - each tracked item commits its reservation (on_hand and reserved down)
    - wholesale customers: balance += total - payment; retail/walk-in: untouched
    """
    def _op():
        order = _locked_order(order_id)
        ensure_transition("Order", order.status, OrderStatus.CONFIRMED)

        total = to_decimal(order.total_amount)
        if total <= ZERO:
            raise InvalidStateTransition(
                "Order",
                order.status,
                OrderStatus.CONFIRMED.value,
                message="Cannot confirm an order whose total is not greater than zero",
            )
        if payment_amount is not None:
            order.payment_amount = _non_negative(payment_amount, "payment_amount")
        if payment_method is not None:
            order.payment_method = accounting_service.normalize_payment_method(payment_method)
        paid = to_decimal(order.payment_amount)
        method = order.payment_method or accounting_service.normalize_payment_method(None)
        label = order.customer.name if order.customer is not None else (order.client_name or "client")

        accounting_service.record_cash_transaction(
            transaction_type=accounting_service.TX_VENTE,
            amount=total,
            payment_method=method,
            counterparty_type=accounting_service.COUNTERPARTY_CUSTOMER if order.customer_id else None,
            counterparty_id=order.customer_id,
            reference_type=REFERENCE_ORDER,
            reference_id=order.id,
            description=f"Vente {order.order_number} - {label}",
            actor_user_id=actor_user_id,
            cash_account_id=cash_account_id,
        )
        if paid > ZERO:
            accounting_service.record_cash_transaction(
                transaction_type=accounting_service.TX_VERSEMENT,
                amount=paid,
                payment_method=method,
                counterparty_type=accounting_service.COUNTERPARTY_CUSTOMER if order.customer_id else None,
                counterparty_id=order.customer_id,
                reference_type=REFERENCE_ORDER,
                reference_id=order.id,
                description=f"Versement {order.order_number} - {label}",
                actor_user_id=actor_user_id,
                cash_account_id=cash_account_id,
            )

        for item in order.items:
            _commit_item(order, item, actor_user_id)

        if not _is_retail(order):
            delta = quantize_money(total - paid)
            accounting_service.adjust_customer_balance(order.customer_id, delta)
            order.balance_delta_applied = delta

        order.status = OrderStatus.CONFIRMED.value
        order.confirmed_at = utcnow()
        order.confirmed_by_user_id = actor_user_id
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    schedule_catalogue_refresh(_touched_products(order))
    emit_audit(
        "order.confirmed",
        entity_type="order",
        entity_id=order.id,
        actor_user_id=actor_user_id,
        payload={
            "order_number": order.order_number,
            "total_amount": str(order.total_amount),
            "payment_amount": str(order.payment_amount),
        },
    )
    return order


def update_order(
    order_id: int,
    *,
    items: list[dict],
    actor_user_id: int | None = None,
    **header,
) -> Order:
    """
    Edit an order in place: reverse, replace items, re-reserve, back to PENDING.

    header may carry customer_id, client_name, order_type, payment_amount,
    payment_method, delivery_cost, timber_price, discount_amount, notes;
    absent keys keep their current value.
    """
    if not items:
        raise ValueError("at least one item is required")
    allowed = {
        "customer_id", "client_name", "order_type", "payment_amount", "payment_method",
        "delivery_cost", "timber_price", "discount_amount", "notes",
    }
    unknown = set(header) - allowed
    if unknown:
        raise ValueError(f"unknown order fields: {', '.join(sorted(unknown))}")

    def _op():
        order = _locked_order(order_id)
        ensure_status("Order", order.status, EDITABLE_STATUSES, "edit")
        touched = _touched_products(order)
        previous_status = order.status

        if order.status == OrderStatus.PENDING.value:
            _release_reservations(order)
        else:
            _reverse_confirmation(order, actor_user_id)

        order.items.clear()
        db.session.flush()

        _apply_header(order, header)
        order.status = OrderStatus.PENDING.value
        order.confirmed_at = None
        order.confirmed_by_user_id = None

        for line in items:
            _insert_item(order, line)
        _recompute_totals(order)
        return order, touched | _touched_products(order), previous_status

    order, touched, previous_status = run_in_transaction(_op)
    schedule_catalogue_refresh(touched)
    emit_audit(
        "order.updated",
        entity_type="order",
        entity_id=order.id,
        actor_user_id=actor_user_id,
        payload={"previous_status": previous_status, "total_amount": str(order.total_amount)},
    )
    return order


def delete_order(order_id: int, *, actor_user_id: int | None = None) -> None:
    """Delete a PENDING order after releasing its reservations."""
    def _op():
        order = _locked_order(order_id)
        ensure_status("Order", order.status, [OrderStatus.PENDING], "delete")
        touched = _touched_products(order)
        number = order.order_number
        _release_reservations(order)
        db.session.delete(order)
        db.session.flush()
        return touched, number

    touched, number = run_in_transaction(_op)
    schedule_catalogue_refresh(touched)
    emit_audit("order.deleted", entity_type="order", entity_id=order_id,
               actor_user_id=actor_user_id, payload={"order_number": number})


def cancel_order(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """PENDING -> CANCELLED, releasing reservations."""
    def _op():
        order = _locked_order(order_id)
        ensure_transition("Order", order.status, OrderStatus.CANCELLED)
        _release_reservations(order)
        order.status = OrderStatus.CANCELLED.value
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    schedule_catalogue_refresh(_touched_products(order))
    emit_audit("order.cancelled", entity_type="order", entity_id=order.id, actor_user_id=actor_user_id)
    return order


def set_order_status(order_id: int, status: str, *, actor_user_id: int | None = None) -> Order:
    """Delivery tracking moves (PROCESSING / SHIPPED / DELIVERED); no ledger effects."""
    try:
        target = OrderStatus((status or "").strip().upper())
    except ValueError:
        raise ValueError(f"invalid order status: {status}")
    if target not in TRACKING_STATUSES:
        raise ValueError("use confirm_order / cancel_order / update_order for this status")

    def _op():
        order = _locked_order(order_id)
        ensure_transition("Order", order.status, target)
        order.status = target.value
        db.session.flush()
        return order

    order = run_in_transaction(_op)
    emit_audit("order.status_changed", entity_type="order", entity_id=order.id,
               actor_user_id=actor_user_id, payload={"status": order.status})
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise EntityNotFound("Order", order_id)
    return order


def list_orders(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Order]:
    query = db.session.query(Order)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)
    if status:
        query = query.filter(Order.status == status.strip().upper())
    limit = max(1, min(limit, 500))
    return query.order_by(Order.id.desc()).offset(max(offset, 0)).limit(limit).all()
