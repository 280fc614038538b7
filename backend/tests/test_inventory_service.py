from decimal import Decimal

import pytest

from ceramerp.extensions import db
from ceramerp.models import InventoryRecord, InventoryTransaction, Product
from ceramerp.services import inventory_service, products_service
from ceramerp.services.errors import ConversionAmbiguous, InsufficientStock


def test_restock_creates_record_lazily(db_session, tile, warehouse, read_stock):
    assert read_stock(tile.id, warehouse.id) is None

    inventory_service.restock(product_id=tile.id, warehouse_id=warehouse.id, quantity="7.2")

    record = read_stock(tile.id, warehouse.id)
    assert record.quantity_on_hand == Decimal("7.2")
    assert record.quantity_reserved == Decimal("0")
    # 7.2 SQM of a 60x60 tile at 10 pcs/box, 40 boxes/pallet
    assert record.colis_count == Decimal("2")
    assert record.pallet_count == Decimal("0.05")
    tx = db_session.query(InventoryTransaction).filter_by(product_id=tile.id).one()
    assert tx.type == inventory_service.TX_IN
    assert tx.quantity == Decimal("7.2")


def test_reserve_holds_availability_without_touching_on_hand(db_session, stocked_tile, warehouse, read_stock):
    inventory_service.reserve_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity="7.2")

    record = read_stock(stocked_tile.id, warehouse.id)
    assert record.quantity_on_hand == Decimal("100")
    assert record.quantity_reserved == Decimal("7.2")
    assert record.quantity_available == Decimal("92.8")


def test_reserve_beyond_available_fails_and_changes_nothing(db_session, stocked_tile, warehouse, read_stock):
    inventory_service.reserve_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=95)

    with pytest.raises(InsufficientStock) as exc:
        inventory_service.reserve_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=6)

    assert Decimal(exc.value.details["available"]) == Decimal("5")
    record = read_stock(stocked_tile.id, warehouse.id)
    assert record.quantity_reserved == Decimal("95")


def test_release_clamps_at_zero(db_session, stocked_tile, warehouse, read_stock):
    inventory_service.reserve_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=3)
    inventory_service.release_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=10)

    assert read_stock(stocked_tile.id, warehouse.id).quantity_reserved == Decimal("0")


def test_release_without_record_is_a_noop(db_session, tile, warehouse):
    assert inventory_service.release_stock(product_id=tile.id, warehouse_id=warehouse.id, quantity=1) is None


def test_commit_deducts_on_hand_and_reserved(db_session, stocked_tile, warehouse, read_stock):
    inventory_service.reserve_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity="7.2")
    tx = inventory_service.commit_stock(
        product_id=stocked_tile.id,
        warehouse_id=warehouse.id,
        quantity="7.2",
        reference_type="ORDER",
        reference_id=1,
    )

    record = read_stock(stocked_tile.id, warehouse.id)
    assert record.quantity_on_hand == Decimal("92.8")
    assert record.quantity_reserved == Decimal("0")
    assert tx.type == inventory_service.TX_OUT
    assert tx.quantity == Decimal("-7.2")


def test_commit_clamps_at_on_hand_and_records_actual_deduction(db_session, tile, warehouse, read_stock):
    inventory_service.restock(product_id=tile.id, warehouse_id=warehouse.id, quantity=10)
    inventory_service.reserve_stock(product_id=tile.id, warehouse_id=warehouse.id, quantity=10)
    inventory_service.adjust_stock(
        product_id=tile.id, warehouse_id=warehouse.id, quantity_delta=-4, reason="Casse"
    )

    tx = inventory_service.commit_stock(product_id=tile.id, warehouse_id=warehouse.id, quantity=10)

    record = read_stock(tile.id, warehouse.id)
    assert record.quantity_on_hand == Decimal("0")
    assert record.quantity_reserved == Decimal("0")
    assert tx.quantity == Decimal("-6")


def test_issue_cannot_dig_into_reservations(db_session, stocked_tile, warehouse, read_stock):
    inventory_service.reserve_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=90)

    with pytest.raises(InsufficientStock):
        inventory_service.issue_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=11)

    inventory_service.issue_stock(product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity=10)
    record = read_stock(stocked_tile.id, warehouse.id)
    assert record.quantity_on_hand == Decimal("90")
    assert record.quantity_reserved == Decimal("90")


def test_adjust_rejects_negative_on_hand(db_session, stocked_tile, warehouse, read_stock):
    with pytest.raises(InsufficientStock):
        inventory_service.adjust_stock(
            product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity_delta=-101, reason="Inventaire"
        )
    assert read_stock(stocked_tile.id, warehouse.id).quantity_on_hand == Decimal("100")


def test_adjust_requires_reason_and_non_zero_delta(db_session, stocked_tile, warehouse):
    with pytest.raises(ValueError):
        inventory_service.adjust_stock(
            product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity_delta=1, reason=" "
        )
    with pytest.raises(ValueError):
        inventory_service.adjust_stock(
            product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity_delta=0, reason="x"
        )


def test_quantities_must_be_positive(db_session, tile, warehouse):
    with pytest.raises(ValueError):
        inventory_service.reserve_stock(product_id=tile.id, warehouse_id=warehouse.id, quantity=0)
    with pytest.raises(ValueError):
        inventory_service.restock(product_id=tile.id, warehouse_id=warehouse.id, quantity="-1")
    with pytest.raises(ValueError):
        inventory_service.restock(product_id=tile.id, warehouse_id=warehouse.id, quantity="abc")


def test_consignment_stock_is_keyed_by_factory(db_session, tile, warehouse, factory, read_stock):
    inventory_service.restock(product_id=tile.id, warehouse_id=warehouse.id, quantity=5)
    inventory_service.restock(
        product_id=tile.id,
        warehouse_id=warehouse.id,
        quantity=8,
        ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT,
        factory_id=factory.id,
    )

    assert db_session.query(InventoryRecord).filter_by(product_id=tile.id).count() == 2
    owned = read_stock(tile.id, warehouse.id)
    consigned = read_stock(
        tile.id, warehouse.id, ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT, factory_id=factory.id
    )
    assert owned.quantity_on_hand == Decimal("5")
    assert consigned.quantity_on_hand == Decimal("8")

    with pytest.raises(ValueError):
        inventory_service.restock(
            product_id=tile.id,
            warehouse_id=warehouse.id,
            quantity=1,
            ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT,
        )


def test_caller_counts_are_kept_without_ratios(db_session, wall_tile, warehouse, read_stock):
    inventory_service.restock(
        product_id=wall_tile.id, warehouse_id=warehouse.id, quantity="8.64", pallet_delta=0, colis_delta=6
    )
    record = read_stock(wall_tile.id, warehouse.id)
    assert record.colis_count == Decimal("6")
    assert record.pallet_count == Decimal("0")


def test_conversion_uses_ratios_derived_from_history(app, db_session, wall_tile, warehouse):
    # 8.64 SQM of 30x60 = 48 pieces over 6 colis -> 8 pieces per box
    inventory_service.restock(
        product_id=wall_tile.id, warehouse_id=warehouse.id, quantity="8.64", colis_delta=6
    )

    ratios = inventory_service.derive_packaging_ratios(wall_tile.id)
    assert ratios.pieces_per_box == Decimal("8")

    product = db.session.get(Product, wall_tile.id)
    assert inventory_service.to_stock_quantity(product, 1, "BOX") == Decimal("1.44")


def test_strict_conversion_can_be_relaxed(app, db_session, wall_tile, monkeypatch):
    product = db.session.get(Product, wall_tile.id)
    with pytest.raises(ConversionAmbiguous):
        inventory_service.to_stock_quantity(product, 2, "BOX")

    monkeypatch.setitem(app.config, "STRICT_UNIT_CONVERSION", False)
    assert inventory_service.to_stock_quantity(product, 2, "BOX") == Decimal("0.36")


def test_packaging_edit_recomputes_counts(db_session, wall_tile, warehouse, read_stock):
    inventory_service.restock(product_id=wall_tile.id, warehouse_id=warehouse.id, quantity="8.64", colis_delta=5)

    products_service.update_product_packaging(wall_tile.id, pieces_per_box=8, boxes_per_pallet=60)

    record = read_stock(wall_tile.id, warehouse.id)
    assert record.colis_count == Decimal("6")
    assert record.pallet_count == Decimal("0.1")


def test_transactions_are_listed_newest_first(db_session, stocked_tile, warehouse):
    inventory_service.adjust_stock(
        product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity_delta=-2, reason="Casse"
    )
    txs = inventory_service.list_inventory_transactions(product_id=stocked_tile.id)
    assert [t.type for t in txs] == [inventory_service.TX_ADJUSTMENT, inventory_service.TX_IN]
