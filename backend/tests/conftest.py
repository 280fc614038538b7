"""
Pytest fixtures for the settlement engine tests.

Provides the application on an in-memory database, per-test table cleanup,
master data (warehouse, brand, factory, tiles, customers) and a test client.
"""

from decimal import Decimal

import pytest

from ceramerp import create_app
from ceramerp.extensions import db
from ceramerp.models import Brand, Customer, Factory, PriceList, Product, Warehouse
from ceramerp.services import inventory_service, purchasing_service
from ceramerp.services.audit_service import CollectingAuditSink


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'CATALOGUE_REFRESH_ASYNC': False,
        'AUDIT_SINK': CollectingAuditSink(),
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def audit_events(app):
    sink = app.extensions["audit_sink"]
    return sink.events


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["audit_sink"].events.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def warehouse(db_session):
    wh = Warehouse(code="MAIN", name="Dépôt principal")
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def second_warehouse(db_session):
    wh = Warehouse(code="ANNEX", name="Dépôt annexe")
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def brand(db_session):
    b = Brand(name="Ceramica Sol", current_balance=0)
    db_session.add(b)
    db_session.commit()
    return b


@pytest.fixture(scope='function')
def factory(db_session):
    f = Factory(name="Usine Nord", current_balance=0)
    db_session.add(f)
    db_session.commit()
    return f


@pytest.fixture(scope='function')
def tile(db_session, brand):
    """60x60 floor tile stocked in SQM: 10 pieces per box, 40 boxes per pallet."""
    product = Product(
        code="GRS-6060-BEI",
        name="Grès cérame Beige 60x60",
        size="60x60",
        stocking_unit="SQM",
        pieces_per_box=10,
        boxes_per_pallet=40,
        base_price=Decimal("1000.00"),
        purchase_price=Decimal("700.00"),
        brand_id=brand.id,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def wall_tile(db_session, brand):
    """30x60 wall tile without packaging ratios."""
    product = Product(
        code="FAI-3060-BLA",
        name="Faïence Blanc 30x60",
        size="30x60",
        stocking_unit="SQM",
        base_price=Decimal("800.00"),
        purchase_price=Decimal("500.00"),
        brand_id=brand.id,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def service_product(db_session):
    """Non-stock line (delivery, cutting)."""
    product = Product(
        code="SRV-COUPE",
        name="Découpe",
        stocking_unit="PCS",
        base_price=Decimal("150.00"),
        track_stock=False,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def wholesale_customer(db_session):
    customer = Customer(code="CL-001", name="Bâti Plus", customer_type="WHOLESALE", current_balance=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def retail_customer(db_session):
    customer = Customer(code="CL-002", name="Client comptoir", customer_type="RETAIL", current_balance=0)
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def price_list(db_session):
    pl = PriceList(name="Revendeurs", is_active=True)
    db_session.add(pl)
    db_session.commit()
    return pl


@pytest.fixture(scope='function')
def stocked_tile(tile, warehouse):
    """tile with 100 SQM on hand in the main warehouse."""
    inventory_service.restock(
        product_id=tile.id,
        warehouse_id=warehouse.id,
        quantity=Decimal("100"),
        reference_type="OPENING",
    )
    return tile


@pytest.fixture(scope='function')
def read_stock(db_session):
    """Fresh read of one inventory key: read_stock(product_id, warehouse_id, **key)."""
    def _read(product_id, warehouse_id, **key):
        db_session.expire_all()
        return inventory_service.get_stock_record(product_id, warehouse_id, **key)
    return _read


@pytest.fixture(scope='function')
def consigned_tile(tile, factory, warehouse):
    """tile with 50 SQM received on consignment from the factory, no owned stock."""
    po = purchasing_service.create_purchase_order(
        warehouse_id=warehouse.id,
        factory_id=factory.id,
        ownership_type=inventory_service.OWNERSHIP_CONSIGNMENT,
        items=[{"product_id": tile.id, "quantity": 50}],
    )
    purchasing_service.post_goods_receipt(
        po.id, items=[{"purchase_order_item_id": po.items[0].id, "quantity": 50}]
    )
    return tile
