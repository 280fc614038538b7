from decimal import Decimal

from ceramerp.services import order_service


def order_payload(warehouse_id, product_id, quantity=2, unit_code="BOX", **extra):
    payload = {
        "warehouse_id": warehouse_id,
        "items": [{"product_id": product_id, "quantity": quantity, "unit_code": unit_code}],
    }
    payload.update(extra)
    return payload


def test_create_and_confirm_order_over_http(client, db_session, stocked_tile, warehouse, wholesale_customer):
    warehouse_id, product_id, customer_id = warehouse.id, stocked_tile.id, wholesale_customer.id

    response = client.post(
        "/api/orders",
        json=order_payload(warehouse_id, product_id, quantity=10, unit_code="SQM", customer_id=customer_id),
        headers={"X-Actor-Id": "5"},
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["order"]["status"] == "PENDING"
    assert body["order"]["created_by_user_id"] == 5
    assert body["order"]["items"][0]["stock_quantity"] == 10.0
    order_id = body["order"]["id"]

    response = client.post(f"/api/orders/{order_id}/confirm", json={"payment_amount": 4000})
    assert response.status_code == 200
    body = response.get_json()
    assert body["order"]["status"] == "CONFIRMED"
    assert body["remaining_amount"] == 6000.0
    assert body["customer_balance"] == 6000.0


def test_insufficient_stock_maps_to_422(client, db_session, stocked_tile, warehouse, read_stock):
    warehouse_id, product_id = warehouse.id, stocked_tile.id

    response = client.post("/api/orders", json=order_payload(warehouse_id, product_id, quantity=500, unit_code="SQM"))

    assert response.status_code == 422
    body = response.get_json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert body["details"]["product_id"] == product_id
    assert read_stock(product_id, warehouse_id).quantity_reserved == Decimal("0")


def test_missing_order_maps_to_404(client, db_session):
    response = client.get("/api/orders/9999")
    assert response.status_code == 404
    assert response.get_json()["code"] == "NOT_FOUND"


def test_double_confirm_maps_to_409(client, db_session, stocked_tile, warehouse):
    order = order_service.create_order(
        warehouse_id=warehouse.id, items=[{"product_id": stocked_tile.id, "quantity": 1, "unit_code": "BOX"}]
    )
    order_id = order.id

    assert client.post(f"/api/orders/{order_id}/confirm").status_code == 200
    response = client.post(f"/api/orders/{order_id}/confirm")
    assert response.status_code == 409
    assert response.get_json()["details"]["current"] == "CONFIRMED"


def test_missing_ratio_maps_to_422(client, db_session, wall_tile, warehouse):
    response = client.post("/api/orders", json=order_payload(warehouse.id, wall_tile.id))
    assert response.status_code == 422
    assert response.get_json()["code"] == "CONVERSION_AMBIGUOUS"


def test_malformed_input_maps_to_400(client, db_session, warehouse):
    assert client.post("/api/orders", json={}).status_code == 400

    response = client.post("/api/orders", json=[1, 2])
    assert response.status_code == 400
    assert response.get_json()["code"] == "INVALID_INPUT"

    response = client.post("/api/orders", json={"warehouse_id": warehouse.id, "payment_method": "TROC"})
    assert response.status_code == 400


def test_unexpected_errors_are_logged_as_500(client, db_session, monkeypatch):
    def explode(order_id):
        raise RuntimeError("boom")

    monkeypatch.setattr(order_service, "get_order", explode)

    response = client.get("/api/orders/1")
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error", "code": "INTERNAL", "details": {}}


def test_edit_and_status_routes(client, db_session, stocked_tile, warehouse, read_stock):
    warehouse_id, product_id = warehouse.id, stocked_tile.id
    order_id = client.post("/api/orders", json=order_payload(warehouse_id, product_id)).get_json()["order"]["id"]
    client.post(f"/api/orders/{order_id}/confirm")

    response = client.put(f"/api/orders/{order_id}", json=order_payload(warehouse_id, product_id, quantity=1))
    assert response.status_code == 200
    assert response.get_json()["order"]["status"] == "PENDING"
    record = read_stock(product_id, warehouse_id)
    assert record.quantity_on_hand == Decimal("100")
    assert record.quantity_reserved == Decimal("3.6")

    response = client.post(f"/api/orders/{order_id}/status", json={"status": "SHIPPED"})
    assert response.status_code == 409


def test_pricing_resolve_endpoint(client, db_session, tile, wholesale_customer):
    product_id, customer_id = tile.id, wholesale_customer.id

    response = client.get(f"/api/pricing/resolve?product_id={product_id}&customer_id={customer_id}")
    assert response.get_json() == {"price": 1000.0, "source": "BASE"}

    client.put("/api/pricing/contracts", json={"customer_id": customer_id, "product_id": product_id, "price": 880})
    response = client.get(f"/api/pricing/resolve?product_id={product_id}&customer_id={customer_id}")
    assert response.get_json() == {"price": 880.0, "source": "CONTRACT"}

    assert client.get("/api/pricing/resolve").status_code == 400


def test_adjustment_and_catalogue_routes(client, db_session, stocked_tile, warehouse):
    response = client.post(
        "/api/inventory/adjust",
        json={"product_id": stocked_tile.id, "warehouse_id": warehouse.id, "quantity_delta": -3.6, "reason": "Casse"},
        headers={"X-Actor-Id": "9"},
    )
    assert response.status_code == 201
    assert response.get_json()["transaction"]["type"] == "ADJUSTMENT"

    response = client.get(f"/api/inventory/catalogue?product_id={stocked_tile.id}")
    entry = response.get_json()["items"][0]
    assert entry["quantity_on_hand"] == 96.4
    assert entry["quantity_available"] == 96.4


def test_customer_payment_route(client, db_session, wholesale_customer):
    response = client.post(
        "/api/accounting/payments/customer",
        json={"customer_id": wholesale_customer.id, "amount": 250, "payment_method": "cheque"},
    )
    assert response.status_code == 201
    tx = response.get_json()["transaction"]
    assert tx["transaction_type"] == "VERSEMENT"
    assert tx["payment_method"] == "CHEQUE"

    listing = client.get(f"/api/accounting/transactions?counterparty_type=CUSTOMER&counterparty_id={wholesale_customer.id}")
    assert listing.get_json()["count"] == 1


def test_non_finite_quantity_maps_to_400(client, db_session, stocked_tile, warehouse):
    response = client.post("/api/orders", json=order_payload(warehouse.id, stocked_tile.id, quantity="NaN"))

    assert response.status_code == 400
    assert response.get_json()["code"] == "INVALID_INPUT"
