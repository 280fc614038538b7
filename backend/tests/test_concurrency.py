"""
Concurrency tests on a file-backed SQLite database.

Each worker thread pushes its own app context, so it gets its own session
and connection; BEGIN IMMEDIATE serializes the writers.
"""

import threading
from decimal import Decimal

import pytest

from ceramerp import create_app
from ceramerp.extensions import db
from ceramerp.models import Product, Warehouse
from ceramerp.services import catalogue_service, inventory_service, order_service
from ceramerp.services.audit_service import CollectingAuditSink
from ceramerp.services.errors import InsufficientStock, LockTimeout


def _file_app(db_path, **overrides):
    config = {
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'CATALOGUE_REFRESH_ASYNC': False,
        'AUDIT_SINK': CollectingAuditSink(),
        'LOCK_TIMEOUT_SECONDS': 10,
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture(scope='module')
def db_path(tmp_path_factory):
    return tmp_path_factory.mktemp("concurrency") / "settlement.sqlite3"


@pytest.fixture(scope='module')
def file_app(db_path):
    app = _file_app(db_path)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """Fresh tables with one warehouse and one 60x60 tile; returns their ids."""
    with file_app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        wh = Warehouse(code="MAIN", name="Dépôt principal")
        product = Product(
            code="GRS-6060-BEI",
            name="Grès cérame Beige 60x60",
            size="60x60",
            stocking_unit="SQM",
            pieces_per_box=10,
            boxes_per_pallet=40,
            base_price=Decimal("1000.00"),
        )
        db.session.add_all([wh, product])
        db.session.commit()
        ids = {"warehouse_id": wh.id, "product_id": product.id}
        db.session.remove()
    return ids


def _run_threads(app, count, work):
    """Start count workers behind a barrier; returns their outcomes."""
    barrier = threading.Barrier(count)
    results = []
    lock = threading.Lock()

    def worker():
        with app.app_context():
            try:
                barrier.wait()
                outcome = work()
            except Exception as exc:
                outcome = exc
            finally:
                db.session.remove()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_two_reservations_for_the_last_stock(file_app, seeded):
    with file_app.app_context():
        inventory_service.restock(quantity="7.2", **seeded)
        db.session.remove()

    def reserve():
        inventory_service.reserve_stock(quantity="7.2", **seeded)
        return "ok"

    results = _run_threads(file_app, 2, reserve)

    assert len(results) == 2
    assert results.count("ok") == 1
    failures = [r for r in results if r != "ok"]
    assert isinstance(failures[0], InsufficientStock)

    with file_app.app_context():
        record = inventory_service.get_stock_record(seeded["product_id"], seeded["warehouse_id"])
        assert record.quantity_reserved == Decimal("7.2")
        assert record.quantity_on_hand == Decimal("7.2")
        db.session.remove()


def test_concurrent_orders_get_distinct_numbers(file_app, seeded):
    def create():
        return order_service.create_order(warehouse_id=seeded["warehouse_id"]).order_number

    results = _run_threads(file_app, 4, create)

    assert all(isinstance(r, str) for r in results), results
    assert len(set(results)) == 4


def test_concurrent_orders_never_oversell(file_app, seeded):
    with file_app.app_context():
        inventory_service.restock(quantity="10.8", **seeded)
        db.session.remove()

    def create():
        order = order_service.create_order(
            warehouse_id=seeded["warehouse_id"],
            items=[{"product_id": seeded["product_id"], "quantity": 2, "unit_code": "BOX"}],
        )
        return order.id

    results = _run_threads(file_app, 3, create)

    created = [r for r in results if isinstance(r, int)]
    assert len(created) == 1
    assert sum(isinstance(r, InsufficientStock) for r in results) == 2
    with file_app.app_context():
        record = inventory_service.get_stock_record(seeded["product_id"], seeded["warehouse_id"])
        assert record.quantity_reserved == Decimal("7.2")
        db.session.remove()


def test_contended_lock_surfaces_as_lock_timeout(file_app, db_path, seeded):
    impatient = _file_app(db_path, LOCK_TIMEOUT_SECONDS=0.2)

    with file_app.app_context():
        holder = db.engine.raw_connection()
        try:
            holder.cursor().execute("BEGIN IMMEDIATE")
            with impatient.app_context():
                with pytest.raises(LockTimeout):
                    inventory_service.restock(quantity=1, **seeded)
                db.session.remove()
                db.engine.dispose()
        finally:
            holder.rollback()
            holder.close()


def test_async_catalogue_refresh_runs_after_commit(file_app, seeded, monkeypatch):
    monkeypatch.setitem(file_app.config, "CATALOGUE_REFRESH_ASYNC", True)

    with file_app.app_context():
        inventory_service.restock(quantity=36, **seeded)
        catalogue_service.wait_for_refreshes(timeout=10)

        db.session.expire_all()
        entry = catalogue_service.get_catalogue(seeded["product_id"])[0]
        assert entry.quantity_on_hand == Decimal("36")
        assert entry.colis_count == Decimal("10")
        db.session.remove()


def test_scheduled_refreshes_run_one_at_a_time(file_app, seeded, monkeypatch):
    monkeypatch.setitem(file_app.config, "CATALOGUE_REFRESH_ASYNC", True)
    workers = []
    refresh = catalogue_service.refresh_catalogue

    def tracking_refresh(product_ids=None, **kwargs):
        workers.append(threading.current_thread().name)
        return refresh(product_ids, **kwargs)

    monkeypatch.setattr(catalogue_service, "refresh_catalogue", tracking_refresh)

    with file_app.app_context():
        for _ in range(5):
            inventory_service.restock(quantity="3.6", **seeded)
        catalogue_service.wait_for_refreshes(timeout=10)

        db.session.expire_all()
        entry = catalogue_service.get_catalogue(seeded["product_id"])[0]
        assert entry.quantity_on_hand == Decimal("18")
        assert len(workers) == 5
        assert len(set(workers)) == 1
        assert workers[0].startswith("catalogue-refresh")
        db.session.remove()
