# Overview: Purchase order / goods receipt state machine; inbound stock and supplier payables.

"""
Purchasing.

PURCHASE ORDER:
- Records intent only; creating or editing a PENDING PO never touches stock.
- An upfront payment posts ACHAT and lowers the supplier balance.
- Status is derived after every receipt or edit:
    PENDING  sum(received) == 0
    PARTIAL  0 < sum(received) < sum(ordered)
    RECEIVED sum(received) >= sum(ordered)
  CANCELLED (from PENDING only) is the one manual move.

GOODS RECEIPT:
- One per delivery; immutable once posted.
- Each line restocks the converted quantity under the PO's ownership
  (consignment lands under the PO's factory), increments the PO line's
  received accumulator, and accrues qty x unit price to the supplier balance.

EDITING A RECEIVED / PARTIAL PO:
- An edited line that already has receipts: a fully received line moves its
  received quantity by the ordered-quantity delta; a partial line keeps its
  received quantity, capped at the new ordered quantity. Resubmitting an
  unchanged line moves nothing and goods still due stay due.
- Same product and warehouse: the signed stocking-unit delta goes to the ledger.
- Changed product or warehouse: the old stock is issued out and the new stock
  restocked, as two separate ledger calls.
- Dropping a line that has receipts raises ReferentialConflict.
"""

from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..models import (
    Brand,
    Factory,
    GoodsReceipt,
    GoodsReceiptItem,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    Warehouse,
)
from ..numeric import ZERO, quantize_money, quantize_qty, to_decimal
from ..time_utils import parse_iso_date, utcnow
from . import accounting_service, inventory_service, units_service
from .audit_service import emit_audit
from .catalogue_service import schedule_catalogue_refresh
from .concurrency import lock_for_update, run_in_transaction
from .document_service import DOC_GOODS_RECEIPT, DOC_PURCHASE_ORDER, next_document_number
from .errors import EntityNotFound, InvalidStateTransition, ReferentialConflict
from .state_machine import PurchaseOrderStatus, ensure_status, ensure_transition


REFERENCE_PURCHASE_ORDER = "PURCHASE_ORDER"
REFERENCE_GOODS_RECEIPT = "GOODS_RECEIPT"

EDITABLE_STATUSES = (
    PurchaseOrderStatus.PENDING,
    PurchaseOrderStatus.PARTIAL,
    PurchaseOrderStatus.RECEIVED,
)


# =============================================================================
# HELPERS
# =============================================================================

def _locked_po(po_id: int) -> PurchaseOrder:
    po = lock_for_update(db.session.query(PurchaseOrder).filter_by(id=po_id)).first()
    if po is None:
        raise EntityNotFound("PurchaseOrder", po_id)
    return po


def _validate_supplier(brand_id: int | None, factory_id: int | None) -> None:
    if (brand_id is None) == (factory_id is None):
        raise ValueError("exactly one of brand_id or factory_id is required")
    if brand_id is not None and db.session.get(Brand, brand_id) is None:
        raise EntityNotFound("Brand", brand_id)
    if factory_id is not None and db.session.get(Factory, factory_id) is None:
        raise EntityNotFound("Factory", factory_id)


def _stock_key(po: PurchaseOrder) -> dict:
    factory_id = po.factory_id if po.ownership_type == inventory_service.OWNERSHIP_CONSIGNMENT else None
    return {"ownership_type": po.ownership_type, "factory_id": factory_id}


def _parse_line(spec: dict) -> tuple[Product, Decimal, str, Decimal]:
    product_id = spec.get("product_id")
    product = db.session.get(Product, product_id) if product_id else None
    if product is None:
        raise EntityNotFound("Product", product_id)
    quantity = quantize_qty(to_decimal(spec.get("quantity"), field="quantity"))
    if quantity <= ZERO:
        raise ValueError("quantity must be positive")
    unit_code = units_service.normalize_unit(spec.get("unit_code") or product.stocking_unit)
    raw_price = spec.get("unit_price")
    if raw_price is None:
        raw_price = product.purchase_price if product.purchase_price is not None else 0
    unit_price = quantize_money(to_decimal(raw_price, field="unit_price"))
    if unit_price < ZERO:
        raise ValueError("unit_price must be >= 0")
    return product, quantity, unit_code, unit_price


def _recompute_total(po: PurchaseOrder) -> None:
    po.total_amount = quantize_money(sum((to_decimal(i.line_total) for i in po.items), ZERO))


def recompute_po_status(po: PurchaseOrder) -> str:
    """Derive PENDING / PARTIAL / RECEIVED from received vs ordered quantities."""
    if po.status == PurchaseOrderStatus.CANCELLED.value:
        return po.status
    ordered = sum((to_decimal(i.quantity) for i in po.items), ZERO)
    received = sum((to_decimal(i.received_quantity) for i in po.items), ZERO)
    if received <= ZERO:
        target = PurchaseOrderStatus.PENDING
    elif received < ordered:
        target = PurchaseOrderStatus.PARTIAL
    else:
        target = PurchaseOrderStatus.RECEIVED
    if target.value != po.status:
        ensure_transition("PurchaseOrder", po.status, target)
        po.status = target.value
    return po.status


def _supplier_delta(po: PurchaseOrder, delta: Decimal) -> None:
    if delta != ZERO:
        accounting_service.adjust_supplier_balance(brand_id=po.brand_id, factory_id=po.factory_id, delta=delta)


def _corrected_receipt(
    item: PurchaseOrderItem,
    product: Product,
    quantity: Decimal,
    unit_code: str,
) -> tuple[Decimal, Decimal]:
    """
    Received quantity (line unit, stocking unit) of an edited line that has receipts.

    Same product and unit: a fully received line follows the ordered delta
    (the edit corrects what was delivered); a partial line keeps what it
    received, capped at the new ordered quantity. An unchanged line moves
    nothing. Otherwise the received share of the old line carries over to
    the new one.
    """
    old_ordered = to_decimal(item.quantity)
    old_received = to_decimal(item.received_quantity)
    same_line = item.product_id == product.id and item.unit_code == unit_code
    if same_line:
        if old_received >= old_ordered:
            received = max(old_received + quantity - old_ordered, ZERO)
        else:
            received = min(old_received, quantity)
        if received == old_received:
            return received, to_decimal(item.received_stock_quantity)
    else:
        received = quantize_qty(quantity * min(old_received / old_ordered, Decimal("1")))
    if received <= ZERO:
        return ZERO, ZERO
    return received, inventory_service.to_stock_quantity(product, received, unit_code)


def _move_stock(
    *,
    product_id: int,
    warehouse_id: int,
    delta: Decimal,
    po: PurchaseOrder,
    actor_user_id: int | None,
    note: str,
) -> None:
    """Signed stocking-unit delta on one inventory key."""
    if delta > ZERO:
        inventory_service.restock(
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity=delta,
            reference_type=REFERENCE_PURCHASE_ORDER,
            reference_id=po.id,
            actor_user_id=actor_user_id,
            note=note,
            commit=False,
            **_stock_key(po),
        )
    elif delta < ZERO:
        inventory_service.issue_stock(
            product_id=product_id,
            warehouse_id=warehouse_id,
            quantity=-delta,
            reference_type=REFERENCE_PURCHASE_ORDER,
            reference_id=po.id,
            actor_user_id=actor_user_id,
            note=note,
            commit=False,
            **_stock_key(po),
        )


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

def create_purchase_order(
    *,
    warehouse_id: int,
    items: list[dict],
    brand_id: int | None = None,
    factory_id: int | None = None,
    ownership_type: str = inventory_service.OWNERSHIP_OWNED,
    payment_amount=0,
    payment_method: str | None = None,
    cash_account_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    if not items:
        raise ValueError("at least one item is required")
    if ownership_type not in inventory_service.OWNERSHIP_TYPES:
        raise ValueError(f"invalid ownership_type: {ownership_type}")
    if ownership_type == inventory_service.OWNERSHIP_CONSIGNMENT and factory_id is None:
        raise ValueError("consignment purchase orders require factory_id")
    payment = quantize_money(to_decimal(payment_amount, field="payment_amount"))
    if payment < ZERO:
        raise ValueError("payment_amount must be >= 0")

    def _op():
        _validate_supplier(brand_id, factory_id)
        if db.session.get(Warehouse, warehouse_id) is None:
            raise EntityNotFound("Warehouse", warehouse_id)
        method = accounting_service.normalize_payment_method(payment_method)
        po = PurchaseOrder(
            po_number=next_document_number(DOC_PURCHASE_ORDER),
            brand_id=brand_id,
            factory_id=factory_id,
            warehouse_id=warehouse_id,
            ownership_type=ownership_type,
            status=PurchaseOrderStatus.PENDING.value,
            payment_amount=payment,
            payment_method=method,
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        db.session.add(po)
        for spec in items:
            product, quantity, unit_code, unit_price = _parse_line(spec)
            po.items.append(PurchaseOrderItem(
                product_id=product.id,
                quantity=quantity,
                unit_code=unit_code,
                unit_price=unit_price,
                line_total=quantize_money(quantity * unit_price),
                received_quantity=ZERO,
                received_stock_quantity=ZERO,
            ))
        _recompute_total(po)
        db.session.flush()

        if payment > ZERO:
            counterparty_type, counterparty_id = accounting_service.supplier_counterparty(brand_id, factory_id)
            accounting_service.record_cash_transaction(
                transaction_type=accounting_service.TX_ACHAT,
                amount=payment,
                payment_method=method,
                counterparty_type=counterparty_type,
                counterparty_id=counterparty_id,
                reference_type=REFERENCE_PURCHASE_ORDER,
                reference_id=po.id,
                description=f"Achat {po.po_number}",
                actor_user_id=actor_user_id,
                cash_account_id=cash_account_id,
            )
            _supplier_delta(po, -payment)
        return po

    po = run_in_transaction(_op)
    emit_audit(
        "purchase_order.created",
        entity_type="purchase_order",
        entity_id=po.id,
        actor_user_id=actor_user_id,
        payload={"po_number": po.po_number, "total_amount": str(po.total_amount)},
    )
    return po


def update_purchase_order(
    po_id: int,
    *,
    items: list[dict],
    warehouse_id: int | None = None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> PurchaseOrder:
    """
    Edit a PENDING / PARTIAL / RECEIVED purchase order.

    items: full new item list. Entries with "id" update that PO line; entries
    without create a line; existing lines missing from the list are deleted.
    """
    if not items:
        raise ValueError("at least one item is required")

    def _op():
        po = _locked_po(po_id)
        ensure_status("PurchaseOrder", po.status, EDITABLE_STATUSES, "edit")
        old_warehouse_id = po.warehouse_id
        new_warehouse_id = warehouse_id if warehouse_id is not None else old_warehouse_id
        if db.session.get(Warehouse, new_warehouse_id) is None:
            raise EntityNotFound("Warehouse", new_warehouse_id)
        receiving = po.status != PurchaseOrderStatus.PENDING.value
        touched: set[int] = set()

        existing = {item.id: item for item in po.items}
        keep_ids = {spec.get("id") for spec in items if spec.get("id") is not None}
        unknown = keep_ids - set(existing)
        if unknown:
            raise EntityNotFound("PurchaseOrderItem", sorted(unknown)[0])

        # Dropped lines: only legal when nothing was received against them
        for item_id, item in existing.items():
            if item_id in keep_ids:
                continue
            has_receipts = db.session.query(GoodsReceiptItem.id).filter_by(
                purchase_order_item_id=item_id
            ).first() is not None
            if has_receipts or to_decimal(item.received_stock_quantity) > ZERO:
                raise ReferentialConflict(
                    f"Purchase order item {item_id} has already been received and cannot be deleted",
                    {"purchase_order_id": po.id, "purchase_order_item_id": item_id},
                )
            po.items.remove(item)

        for spec in items:
            product, quantity, unit_code, unit_price = _parse_line(spec)
            item = existing.get(spec.get("id"))

            if item is None:
                new_stock = ZERO
                if receiving:
                    new_stock = inventory_service.to_stock_quantity(product, quantity, unit_code)
                item = PurchaseOrderItem(
                    product_id=product.id,
                    quantity=quantity,
                    unit_code=unit_code,
                    unit_price=unit_price,
                    line_total=quantize_money(quantity * unit_price),
                    # Lines added to a received PO arrive as received
                    received_quantity=quantity if receiving else ZERO,
                    received_stock_quantity=new_stock,
                )
                po.items.append(item)
                if receiving:
                    _move_stock(product_id=product.id, warehouse_id=new_warehouse_id, delta=new_stock,
                                po=po, actor_user_id=actor_user_id, note=f"{po.po_number} line added")
                    _supplier_delta(po, quantity * unit_price)
                    touched.add(product.id)
                continue

            if to_decimal(item.received_quantity) > ZERO:
                old_stock = to_decimal(item.received_stock_quantity)
                old_value = to_decimal(item.received_quantity) * to_decimal(item.unit_price)
                received, new_stock = _corrected_receipt(item, product, quantity, unit_code)
                if item.product_id == product.id and old_warehouse_id == new_warehouse_id:
                    _move_stock(product_id=product.id, warehouse_id=new_warehouse_id,
                                delta=new_stock - old_stock, po=po, actor_user_id=actor_user_id,
                                note=f"{po.po_number} quantity corrected")
                else:
                    _move_stock(product_id=item.product_id, warehouse_id=old_warehouse_id,
                                delta=-old_stock, po=po, actor_user_id=actor_user_id,
                                note=f"{po.po_number} line moved out")
                    _move_stock(product_id=product.id, warehouse_id=new_warehouse_id,
                                delta=new_stock, po=po, actor_user_id=actor_user_id,
                                note=f"{po.po_number} line moved in")
                _supplier_delta(po, quantize_money(received * unit_price - old_value))
                touched.update({item.product_id, product.id})
                item.received_quantity = received
                item.received_stock_quantity = new_stock

            item.product_id = product.id
            item.quantity = quantity
            item.unit_code = unit_code
            item.unit_price = unit_price
            item.line_total = quantize_money(quantity * unit_price)

        po.warehouse_id = new_warehouse_id
        if notes is not None:
            po.notes = notes
        db.session.flush()
        _recompute_total(po)
        recompute_po_status(po)
        db.session.flush()
        return po, touched

    po, touched = run_in_transaction(_op)
    schedule_catalogue_refresh(touched)
    emit_audit(
        "purchase_order.updated",
        entity_type="purchase_order",
        entity_id=po.id,
        actor_user_id=actor_user_id,
        payload={"status": po.status, "total_amount": str(po.total_amount)},
    )
    return po


def cancel_purchase_order(po_id: int, *, actor_user_id: int | None = None) -> PurchaseOrder:
    """PENDING -> CANCELLED. Nothing was received, so there is no stock to reverse."""
    def _op():
        po = _locked_po(po_id)
        ensure_transition("PurchaseOrder", po.status, PurchaseOrderStatus.CANCELLED)
        po.status = PurchaseOrderStatus.CANCELLED.value
        db.session.flush()
        return po

    po = run_in_transaction(_op)
    emit_audit("purchase_order.cancelled", entity_type="purchase_order", entity_id=po.id,
               actor_user_id=actor_user_id)
    return po


def delete_purchase_order(po_id: int, *, actor_user_id: int | None = None) -> None:
    """Delete a PENDING PO, reversing its upfront payment (ACHAT and supplier balance)."""
    def _op():
        po = _locked_po(po_id)
        ensure_status("PurchaseOrder", po.status, [PurchaseOrderStatus.PENDING], "delete")
        if db.session.query(GoodsReceipt.id).filter_by(purchase_order_id=po.id).first() is not None:
            raise ReferentialConflict(
                f"Purchase order {po.po_number} has goods receipts",
                {"purchase_order_id": po.id},
            )
        paid_out = accounting_service.reverse_cash_transactions(REFERENCE_PURCHASE_ORDER, po.id)
        # ACHAT rows are negative; the supplier balance was lowered by the same magnitude
        _supplier_delta(po, -paid_out)
        number = po.po_number
        db.session.delete(po)
        db.session.flush()
        return number

    number = run_in_transaction(_op)
    emit_audit("purchase_order.deleted", entity_type="purchase_order", entity_id=po_id,
               actor_user_id=actor_user_id, payload={"po_number": number})


def get_purchase_order(po_id: int) -> PurchaseOrder:
    po = db.session.get(PurchaseOrder, po_id)
    if po is None:
        raise EntityNotFound("PurchaseOrder", po_id)
    return po


# =============================================================================
# GOODS RECEIPTS
# =============================================================================

def post_goods_receipt(
    po_id: int,
    *,
    items: list[dict],
    receipt_date=None,
    notes: str | None = None,
    actor_user_id: int | None = None,
) -> GoodsReceipt:
    """
    Post a delivery against a PO.

    items: [{"purchase_order_item_id", "quantity" (PO line unit),
             "pallet_count", "colis_count"}]
    """
    if not items:
        raise ValueError("at least one receipt line is required")
    received_on = parse_iso_date(receipt_date) or utcnow().date()

    def _op():
        po = _locked_po(po_id)
        if po.status == PurchaseOrderStatus.CANCELLED.value:
            raise InvalidStateTransition(
                "PurchaseOrder", po.status, "RECEIVE",
                message=f"Cannot receive against cancelled purchase order {po.po_number}",
            )
        lines = {item.id: item for item in po.items}
        key = _stock_key(po)

        receipt = GoodsReceipt(
            receipt_number=next_document_number(DOC_GOODS_RECEIPT),
            purchase_order_id=po.id,
            warehouse_id=po.warehouse_id,
            ownership_type=key["ownership_type"],
            factory_id=key["factory_id"],
            receipt_date=received_on,
            notes=notes,
            created_by_user_id=actor_user_id,
        )
        db.session.add(receipt)
        db.session.flush()

        accrued = ZERO
        for spec in items:
            po_item = lines.get(spec.get("purchase_order_item_id"))
            if po_item is None:
                raise EntityNotFound("PurchaseOrderItem", spec.get("purchase_order_item_id"))
            quantity = quantize_qty(to_decimal(spec.get("quantity"), field="quantity"))
            if quantity <= ZERO:
                raise ValueError("received quantity must be positive")

            product = db.session.get(Product, po_item.product_id)
            stock_quantity = inventory_service.to_stock_quantity(product, quantity, po_item.unit_code)
            pallets = quantize_qty(to_decimal(spec.get("pallet_count", 0), field="pallet_count"))
            colis = quantize_qty(to_decimal(spec.get("colis_count", 0), field="colis_count"))

            inventory_service.restock(
                product_id=product.id,
                warehouse_id=po.warehouse_id,
                quantity=stock_quantity,
                pallet_delta=pallets,
                colis_delta=colis,
                reference_type=REFERENCE_GOODS_RECEIPT,
                reference_id=receipt.id,
                actor_user_id=actor_user_id,
                note=f"{receipt.receipt_number} / {po.po_number}",
                commit=False,
                **key,
            )
            receipt.items.append(GoodsReceiptItem(
                purchase_order_item_id=po_item.id,
                product_id=product.id,
                quantity=quantity,
                unit_code=po_item.unit_code,
                stock_quantity=stock_quantity,
                unit_price=po_item.unit_price,
                pallet_count=pallets,
                colis_count=colis,
            ))
            po_item.received_quantity = to_decimal(po_item.received_quantity) + quantity
            po_item.received_stock_quantity = to_decimal(po_item.received_stock_quantity) + stock_quantity
            accrued += quantity * to_decimal(po_item.unit_price)

        _supplier_delta(po, quantize_money(accrued))
        recompute_po_status(po)
        db.session.flush()
        return receipt

    receipt = run_in_transaction(_op)
    schedule_catalogue_refresh({item.product_id for item in receipt.items})
    emit_audit(
        "goods_receipt.posted",
        entity_type="goods_receipt",
        entity_id=receipt.id,
        actor_user_id=actor_user_id,
        payload={"receipt_number": receipt.receipt_number, "purchase_order_id": po_id},
    )
    return receipt


def list_goods_receipts(po_id: int) -> list[GoodsReceipt]:
    return (
        db.session.query(GoodsReceipt)
        .filter_by(purchase_order_id=po_id)
        .order_by(GoodsReceipt.id)
        .all()
    )
