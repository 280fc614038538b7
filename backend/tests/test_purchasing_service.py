from decimal import Decimal

import pytest

from ceramerp.extensions import db
from ceramerp.models import Brand, CashTransaction, Factory, PurchaseOrder
from ceramerp.services import accounting_service, inventory_service, purchasing_service
from ceramerp.services.errors import InvalidStateTransition, ReferentialConflict
from ceramerp.services.state_machine import PurchaseOrderStatus


def brand_balance(brand_id):
    db.session.expire_all()
    return db.session.get(Brand, brand_id).current_balance


def receive(po, quantity, line=0):
    return purchasing_service.post_goods_receipt(
        po.id, items=[{"purchase_order_item_id": po.items[line].id, "quantity": quantity}]
    )


@pytest.fixture
def tile_po(db_session, tile, brand, warehouse):
    """20 SQM of tile at 700, 5000 paid upfront."""
    return purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        brand_id=brand.id,
        items=[{"product_id": tile.id, "quantity": 20, "unit_code": "SQM"}],
        payment_amount=5000,
    )


def test_creating_a_po_never_touches_stock(db_session, tile_po, tile, brand, warehouse, read_stock):
    assert tile_po.status == PurchaseOrderStatus.PENDING.value
    assert tile_po.total_amount == Decimal("14000.00")
    assert tile_po.po_number.startswith("PO-")
    assert read_stock(tile.id, warehouse.id) is None

    assert brand_balance(brand.id) == Decimal("-5000.00")
    rows = accounting_service.list_cash_transactions(
        reference_type=purchasing_service.REFERENCE_PURCHASE_ORDER, reference_id=tile_po.id
    )
    assert [(r.transaction_type, r.amount) for r in rows] == [(accounting_service.TX_ACHAT, Decimal("-5000.00"))]


def test_po_requires_exactly_one_supplier(db_session, tile, brand, factory, warehouse):
    items = [{"product_id": tile.id, "quantity": 1}]
    with pytest.raises(ValueError):
        purchasing_service.create_purchase_order(warehouse_id=warehouse.id, items=items)
    with pytest.raises(ValueError):
        purchasing_service.create_purchase_order(
            warehouse_id=warehouse.id, items=items, brand_id=brand.id, factory_id=factory.id
        )
    assert db_session.query(PurchaseOrder).count() == 0


def test_partial_then_full_receipt(db_session, tile_po, tile, brand, warehouse, read_stock):
    first = receive(tile_po, 8)
    assert first.receipt_number.startswith("GR-")
    po = purchasing_service.get_purchase_order(tile_po.id)
    assert po.status == PurchaseOrderStatus.PARTIAL.value
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("8")
    assert brand_balance(brand.id) == Decimal("600.00")

    receive(po, 12)
    po = purchasing_service.get_purchase_order(tile_po.id)
    assert po.status == PurchaseOrderStatus.RECEIVED.value
    assert po.items[0].received_quantity == Decimal("20")
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("20")
    assert brand_balance(brand.id) == Decimal("9000.00")
    assert len(purchasing_service.list_goods_receipts(po.id)) == 2


def test_receipt_converts_po_units(db_session, tile, brand, warehouse, read_stock):
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        brand_id=brand.id,
        items=[{"product_id": tile.id, "quantity": 10, "unit_code": "BOX", "unit_price": 2520}],
    )
    receipt = receive(po, 10)

    assert receipt.items[0].stock_quantity == Decimal("36")
    record = read_stock(tile.id, warehouse.id)
    assert record.quantity_on_hand == Decimal("36")
    assert record.colis_count == Decimal("10")
    assert brand_balance(brand.id) == Decimal("25200.00")


def test_consignment_receipt_lands_under_factory(db_session, tile, factory, warehouse, read_stock):
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        factory_id=factory.id,
        ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT,
        items=[{"product_id": tile.id, "quantity": 5}],
    )
    receive(po, 5)

    assert read_stock(tile.id, warehouse.id) is None
    consigned = read_stock(
        tile.id, warehouse.id, ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT, factory_id=factory.id
    )
    assert consigned.quantity_on_hand == Decimal("5")
    db.session.expire_all()
    assert db.session.get(Factory, factory.id).current_balance == Decimal("3500.00")


def test_cancel_only_from_pending(db_session, tile_po):
    po = purchasing_service.cancel_purchase_order(tile_po.id)
    assert po.status == PurchaseOrderStatus.CANCELLED.value

    with pytest.raises(InvalidStateTransition):
        receive(po, 1)
    with pytest.raises(InvalidStateTransition):
        purchasing_service.update_purchase_order(po.id, items=[{"id": po.items[0].id, "product_id": po.items[0].product_id, "quantity": 1}])


def test_partial_po_cannot_be_cancelled(db_session, tile_po):
    receive(tile_po, 1)
    with pytest.raises(InvalidStateTransition):
        purchasing_service.cancel_purchase_order(tile_po.id)


def test_edit_received_quantity_moves_the_delta(db_session, tile_po, tile, brand, warehouse, read_stock):
    receive(tile_po, 20)
    line = tile_po.items[0]

    po = purchasing_service.update_purchase_order(
        tile_po.id, items=[{"id": line.id, "product_id": tile.id, "quantity": 18, "unit_code": "SQM"}]
    )

    assert po.status == PurchaseOrderStatus.RECEIVED.value
    assert po.items[0].received_quantity == Decimal("18")
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("18")
    assert brand_balance(brand.id) == Decimal("7600.00")


def test_resubmitting_a_partial_po_unchanged_moves_nothing(db_session, tile, brand, warehouse, read_stock):
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        brand_id=brand.id,
        items=[{"product_id": tile.id, "quantity": 100, "unit_code": "SQM"}],
    )
    receive(po, 40)
    line = po.items[0]

    po = purchasing_service.update_purchase_order(
        po.id, items=[{"id": line.id, "product_id": tile.id, "quantity": 100, "unit_code": "SQM"}]
    )

    assert po.status == PurchaseOrderStatus.PARTIAL.value
    assert po.items[0].received_quantity == Decimal("40")
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("40")
    assert brand_balance(brand.id) == Decimal("28000.00")


def test_editing_a_partial_line_only_changes_what_is_still_due(db_session, tile, brand, warehouse, read_stock):
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        brand_id=brand.id,
        items=[{"product_id": tile.id, "quantity": 100, "unit_code": "SQM"}],
    )
    receive(po, 40)
    line_id = po.items[0].id

    po = purchasing_service.update_purchase_order(
        po.id, items=[{"id": line_id, "product_id": tile.id, "quantity": 120, "unit_code": "SQM"}]
    )
    assert po.status == PurchaseOrderStatus.PARTIAL.value
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("40")

    # Cutting the order below what arrived sends the excess back out
    po = purchasing_service.update_purchase_order(
        po.id, items=[{"id": line_id, "product_id": tile.id, "quantity": 30, "unit_code": "SQM"}]
    )
    assert po.status == PurchaseOrderStatus.RECEIVED.value
    assert po.items[0].received_quantity == Decimal("30")
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("30")
    assert brand_balance(brand.id) == Decimal("21000.00")


def test_edit_received_product_issues_old_and_restocks_new(
    db_session, tile_po, tile, wall_tile, brand, warehouse, read_stock
):
    receive(tile_po, 20)
    line = tile_po.items[0]

    purchasing_service.update_purchase_order(
        tile_po.id, items=[{"id": line.id, "product_id": wall_tile.id, "quantity": 20, "unit_code": "SQM"}]
    )

    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("0")
    assert read_stock(wall_tile.id, warehouse.id).quantity_on_hand == Decimal("20")
    # 9000 owed, minus 14000 for the tile, plus 10000 for the wall tile
    assert brand_balance(brand.id) == Decimal("5000.00")


def test_dropping_a_received_line_is_a_conflict(db_session, tile, wall_tile, brand, warehouse, read_stock):
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        brand_id=brand.id,
        items=[
            {"product_id": tile.id, "quantity": 4},
            {"product_id": wall_tile.id, "quantity": 4},
        ],
    )
    receive(po, 4, line=0)
    kept = po.items[1]

    with pytest.raises(ReferentialConflict):
        purchasing_service.update_purchase_order(
            po.id, items=[{"id": kept.id, "product_id": wall_tile.id, "quantity": 4}]
        )
    assert len(purchasing_service.get_purchase_order(po.id).items) == 2
    assert read_stock(tile.id, warehouse.id).quantity_on_hand == Decimal("4")


def test_editing_pending_po_only_changes_intent(db_session, tile_po, tile, warehouse, read_stock):
    line = tile_po.items[0]
    po = purchasing_service.update_purchase_order(
        tile_po.id, items=[{"id": line.id, "product_id": tile.id, "quantity": 30, "unit_price": 650}]
    )
    assert po.total_amount == Decimal("19500.00")
    assert po.status == PurchaseOrderStatus.PENDING.value
    assert read_stock(tile.id, warehouse.id) is None


def test_delete_pending_po_reverses_upfront_payment(db_session, tile_po, brand):
    purchasing_service.delete_purchase_order(tile_po.id)

    assert db_session.query(PurchaseOrder).count() == 0
    assert db_session.query(CashTransaction).count() == 0
    assert brand_balance(brand.id) == Decimal("0.00")


def test_received_po_cannot_be_deleted(db_session, tile_po):
    receive(tile_po, 2)
    with pytest.raises(InvalidStateTransition):
        purchasing_service.delete_purchase_order(tile_po.id)
