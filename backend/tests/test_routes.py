"""HTTP surface: catalog setup, cart lines, checkout, transitions and payment status."""

import pytest


@pytest.fixture
def catalog(client, store):
    response = client.post("/api/products", json={
        "store_id": store.id,
        "sku": "BOOT-1",
        "name": "Chelsea Boot",
        "retail_price_cents": 20000,
        "wholesale_price_cents": 15000,
        "min_wholesale_qty": 6,
    })
    assert response.status_code == 201
    product = response.get_json()["product"]

    response = client.post(f"/api/products/{product['id']}/stock", json={"quantity_delta": 8, "note": "opening"})
    assert response.status_code == 201
    return product


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "healthy"


def test_product_payload_cannot_set_stock(client, store):
    response = client.post("/api/products", json={"store_id": store.id, "sku": "X", "name": "X", "stock": 50})
    assert response.status_code == 400
    assert response.get_json()["code"] == "VALIDATION_ERROR"


def test_duplicate_sku_conflicts(client, store, catalog):
    response = client.post("/api/products", json={"store_id": store.id, "sku": "BOOT-1", "name": "Again"})
    assert response.status_code == 409


def test_product_detail_includes_variations_and_tiers(client, catalog):
    pid = catalog["id"]
    response = client.post(f"/api/products/{pid}/variations", json={
        "is_grade": True,
        "grade_name": "Grade 36-38",
        "grade_sizes": ["36", "37", "38"],
        "grade_pairs": [2, 2, 2],
        "flexible_grade_config": {"allow_half_grade": True, "half_grade_discount_percentage": 5},
    })
    assert response.status_code == 201

    response = client.put(f"/api/products/{pid}/price-tiers", json={"tiers": [
        {"tier_order": 1, "tier_type": "retail", "min_quantity": 1, "price_cents": 20000},
        {"tier_order": 2, "tier_type": "gradual_wholesale", "min_quantity": 12, "price_cents": 17000},
    ]})
    assert response.status_code == 200

    detail = client.get(f"/api/products/{pid}").get_json()["product"]
    assert detail["stock"] == 8
    assert detail["variations"][0]["label"] == "Grade 36-38"
    assert [t["price_cents"] for t in detail["price_tiers"]] == [20000, 17000]


def test_invalid_tier_table_is_rejected(client, catalog):
    response = client.put(f"/api/products/{catalog['id']}/price-tiers", json={"tiers": [
        {"tier_order": 1, "tier_type": "gradual_wholesale", "min_quantity": 5, "price_cents": 100},
    ]})
    assert response.status_code == 400


def test_cart_line_applies_wholesale_minimum(client, store, catalog):
    response = client.post("/api/cart/lines", json={
        "store_id": store.id, "product_id": catalog["id"], "catalog_mode": "wholesale", "quantity": 2,
    })
    assert response.status_code == 200
    line = response.get_json()["line"]
    assert line["quantity"] == 6
    assert line["line_total_cents"] == 90000
    assert line["line_id"] == f"{catalog['id']}-wholesale"


def test_cart_line_reports_next_tier(client, store, catalog):
    client.put(f"/api/products/{catalog['id']}/price-tiers", json={"tiers": [
        {"tier_order": 1, "tier_type": "retail", "min_quantity": 1, "price_cents": 20000},
        {"tier_order": 2, "tier_type": "gradual_wholesale", "min_quantity": 3, "price_cents": 18000},
    ]})
    body = client.post("/api/cart/lines", json={
        "store_id": store.id, "product_id": catalog["id"], "catalog_mode": "retail", "quantity": 1,
    }).get_json()
    assert body["next_tier"]["quantity_needed"] == 2
    assert body["next_tier"]["unit_savings_cents"] == 2000


def test_cart_line_rejects_zero_quantity(client, store, catalog):
    response = client.post("/api/cart/lines", json={
        "store_id": store.id, "product_id": catalog["id"], "catalog_mode": "retail", "quantity": 0,
    })
    assert response.status_code == 400


def test_checkout_and_lifecycle(client, store, catalog):
    response = client.post("/api/orders", json={
        "store_id": store.id,
        "customer_name": "Joana",
        "items": [{"product_id": catalog["id"], "catalog_mode": "retail", "quantity": 5, "unit_price_cents": 1}],
    })
    assert response.status_code == 201
    order = response.get_json()["order"]
    assert order["status"] == "pending"
    assert order["total_amount_cents"] == 100000

    response = client.post(f"/api/orders/{order['id']}/status", json={"status": "confirmed"})
    assert response.status_code == 200
    assert response.get_json()["order"]["stock_reserved"] is True

    response = client.post(f"/api/orders/{order['id']}/status", json={"status": "delivered"})
    assert response.status_code == 409
    assert response.get_json()["code"] == "INVALID_TRANSITION"

    response = client.post(f"/api/orders/{order['id']}/status", json={"status": "cancelled"})
    assert response.status_code == 200

    movements = client.get(f"/api/stock/movements?order_id={order['id']}").get_json()["items"]
    assert [(m["movement_type"], m["quantity"]) for m in movements] == [("reservation", 5), ("release", 5)]

    detail = client.get(f"/api/orders/{order['id']}").get_json()
    assert [e["new_status"] for e in detail["events"]] == ["pending", "confirmed", "cancelled"]


def test_checkout_beyond_stock(client, store, catalog):
    response = client.post("/api/orders", json={
        "store_id": store.id,
        "customer_name": "Joana",
        "items": [{"product_id": catalog["id"], "quantity": 9}],
    })
    assert response.status_code == 400
    body = response.get_json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert body["error"] == "insufficient stock for Chelsea Boot, available: 8"


def test_unknown_order_is_404(client, db_session):
    assert client.get("/api/orders/999").status_code == 404
    assert client.post("/api/orders/999/status", json={"status": "confirmed"}).status_code == 404
    assert client.get("/api/orders/999/payment-status").status_code == 404


def test_payment_status_endpoint(client, store, catalog):
    order = client.post("/api/orders", json={
        "store_id": store.id,
        "customer_name": "Joana",
        "items": [{"product_id": catalog["id"], "quantity": 1}],
    }).get_json()["order"]

    body = client.get(f"/api/orders/{order['id']}/payment-status").get_json()
    assert body["payment_status"] == "pending"
    assert body["balance_cents"] == 20000


def test_expire_reservations_endpoint(client, db_session):
    response = client.post("/api/stock/expire-reservations", json={"now": "2030-01-01T00:00:00Z"})
    assert response.status_code == 200
    assert response.get_json()["released_order_ids"] == []

    response = client.post("/api/stock/expire-reservations", json={"now": "not-a-date"})
    assert response.status_code == 400


@pytest.mark.parametrize("config", [
    {"allow_half_grade": True, "half_grade_discount_percentage": "10"},
    {"allow_half_grade": True, "half_grade_discount_percentage": True},
    {"allow_half_grade": True, "half_grade_discount_percentage": 120},
    {"allow_half_grade": "yes"},
    {"allow_custom_mix": True, "custom_mix_price_adjustment_cents": "abc"},
    {"allow_custom_mix": True, "custom_mix_price_adjustment_cents": 1.5},
    {"allow_custom_mix": True, "custom_mix_min_pairs": 0},
    {"allow_custom_mix": True, "custom_mix_min_pairs": False},
])
def test_malformed_grade_config_is_rejected(client, catalog, config):
    response = client.post(f"/api/products/{catalog['id']}/variations", json={
        "is_grade": True,
        "grade_name": "Grade 36-38",
        "grade_sizes": ["36", "37", "38"],
        "grade_pairs": [2, 2, 2],
        "flexible_grade_config": config,
    })
    assert response.status_code == 400
    assert response.get_json()["code"] == "VALIDATION_ERROR"


def test_unexpected_order_read_failures_return_500(client, store, monkeypatch):
    from app.services import order_service

    def _boom(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(order_service, "list_orders", _boom)
    monkeypatch.setattr(order_service, "get_order", _boom)

    response = client.get(f"/api/orders?store_id={store.id}")
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}
    assert client.get("/api/orders/1").status_code == 500
