import logging
from datetime import timedelta
from decimal import Decimal

from ceramerp.services import catalogue_service, inventory_service, order_service
from ceramerp.services.audit_service import LoggingAuditSink
from ceramerp.time_utils import utcnow


def two_boxes(product):
    return [{"product_id": product.id, "quantity": 2, "unit_code": "BOX"}]


def test_restock_refreshes_the_catalogue(db_session, stocked_tile):
    entry = catalogue_service.get_catalogue(stocked_tile.id)[0]

    assert entry.product_code == "GRS-6060-BEI"
    assert entry.brand_name == "Ceramica Sol"
    assert entry.quantity_on_hand == Decimal("100")
    assert entry.quantity_available == Decimal("100")
    assert entry.pieces_per_box == Decimal("10")
    assert entry.area_per_piece == Decimal("0.36")


def test_order_operations_refresh_availability(db_session, stocked_tile, warehouse):
    order = order_service.create_order(warehouse_id=warehouse.id, items=two_boxes(stocked_tile))
    entry = catalogue_service.get_catalogue(stocked_tile.id)[0]
    assert entry.quantity_reserved == Decimal("7.2")
    assert entry.quantity_available == Decimal("92.8")

    order_service.confirm_order(order.id)
    entry = catalogue_service.get_catalogue(stocked_tile.id)[0]
    assert entry.quantity_on_hand == Decimal("92.8")
    assert entry.quantity_reserved == Decimal("0")


def test_full_refresh_covers_products_without_stock(db_session, tile, wall_tile):
    written = catalogue_service.refresh_catalogue()

    assert written == 2
    entries = {e.product_code: e for e in catalogue_service.get_catalogue()}
    assert entries["FAI-3060-BLA"].quantity_on_hand == Decimal("0")
    assert entries["FAI-3060-BLA"].pieces_per_box is None
    assert catalogue_service.refresh_catalogue([]) == 0


def test_late_refresh_never_overwrites_a_newer_snapshot(db_session, stocked_tile, warehouse):
    started_early = utcnow() - timedelta(seconds=30)
    inventory_service.adjust_stock(
        product_id=stocked_tile.id, warehouse_id=warehouse.id, quantity_delta=-10, reason="Casse"
    )
    newer = catalogue_service.get_catalogue(stocked_tile.id)[0].refreshed_at

    written = catalogue_service.refresh_catalogue([stocked_tile.id], snapshot_at=started_early)

    assert written == 0
    db_session.expire_all()
    entry = catalogue_service.get_catalogue(stocked_tile.id)[0]
    assert entry.refreshed_at == newer
    assert entry.quantity_on_hand == Decimal("90")

    assert catalogue_service.refresh_catalogue([stocked_tile.id]) == 1


def test_refresh_failure_is_logged_not_raised(db_session, stocked_tile, warehouse, monkeypatch, caplog):
    def broken(product_ids=None):
        raise RuntimeError("read model unavailable")

    monkeypatch.setattr(catalogue_service, "refresh_catalogue", broken)

    with caplog.at_level(logging.ERROR):
        order = order_service.create_order(warehouse_id=warehouse.id, items=two_boxes(stocked_tile))

    assert order.id is not None
    assert order_service.get_order(order.id).items[0].reserved_quantity == Decimal("7.2")
    assert "Catalogue refresh failed" in caplog.text


def test_audit_sink_failure_is_swallowed(app, db_session, stocked_tile, warehouse, monkeypatch, caplog):
    class BrokenSink:
        def emit(self, event):
            raise ConnectionError("audit bus down")

    monkeypatch.setitem(app.extensions, "audit_sink", BrokenSink())

    with caplog.at_level(logging.ERROR):
        order = order_service.create_order(warehouse_id=warehouse.id, items=two_boxes(stocked_tile))

    assert order_service.get_order(order.id).status == "PENDING"
    assert "Audit sink failed for order.created" in caplog.text


def test_logging_sink_writes_structured_record(caplog):
    event = {
        "action": "order.confirmed",
        "entity_type": "order",
        "entity_id": 12,
        "actor_user_id": 4,
        "payload": {},
        "occurred_at": "2026-01-05T10:00:00Z",
    }
    with caplog.at_level(logging.INFO, logger="ceramerp.audit"):
        LoggingAuditSink().emit(event)

    record = caplog.records[-1]
    assert record.getMessage() == "order.confirmed order:12 actor=4"
    assert record.audit_event is event
