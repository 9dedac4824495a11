"""HTTP tests for the products, inventory and orders routers."""

from decimal import Decimal

import pytest

from conftest import STAFF_HEADERS, customer_headers, order_payload


def _create_product(client, **overrides):
    body = {"sku": "SP-001", "name": "Widget", "price": "10.00", "quantity": 50}
    body.update(overrides)
    response = client.post("/api/v1/products", json=body, headers=STAFF_HEADERS)
    assert response.status_code == 201
    return response.json()


def _place_order(client, product_id, quantity=1, customer="cust-1", **overrides):
    return client.post(
        "/api/v1/orders",
        json=order_payload((product_id, quantity), customer_id=None, **overrides),
        headers=customer_headers(customer),
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


class TestProducts:
    def test_create_and_get(self, client):
        product = _create_product(client)

        response = client.get(f"/api/v1/products/{product['id']}")
        assert response.status_code == 200
        assert response.json()["sku"] == "SP-001"
        assert response.json()["stock_status"] == "in_stock"

    def test_duplicate_sku(self, client):
        _create_product(client)
        response = client.post("/api/v1/products", json={"sku": "SP-001", "name": "Again"}, headers=STAFF_HEADERS)
        assert response.status_code == 400

    def test_customer_cannot_create(self, client):
        response = client.post("/api/v1/products", json={"sku": "X", "name": "X"}, headers=customer_headers())
        assert response.status_code == 403

    def test_inventory_update_and_history(self, client):
        product = _create_product(client, quantity=5)

        response = client.put(
            f"/api/v1/products/{product['id']}/inventory",
            json={"type": "purchase", "quantity": 7, "notes": "Restock"},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["quantity_after"] == 12

        history = client.get(f"/api/v1/products/{product['id']}/inventory-history").json()
        assert [h["type"] for h in history] == ["purchase", "purchase"]
        assert history[0]["notes"] == "Restock"

    def test_inventory_update_cannot_go_negative(self, client):
        product = _create_product(client, quantity=2)

        response = client.put(
            f"/api/v1/products/{product['id']}/inventory",
            json={"type": "damage", "quantity": 3},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 422

    def test_inventory_update_unknown_product(self, client):
        response = client.put(
            "/api/v1/products/missing/inventory", json={"quantity": 3}, headers=STAFF_HEADERS
        )
        assert response.status_code == 404

    def test_low_stock_listing_and_alerts(self, client):
        _create_product(client, sku="LOW", quantity=3, low_stock_threshold=5)
        _create_product(client, sku="PLENTY", quantity=30)

        low = client.get("/api/v1/products/low-stock").json()
        assert [row["sku"] for row in low] == ["LOW"]

        alerts = client.get("/api/v1/inventory/alerts").json()
        assert len(alerts) == 1
        resolved = client.post(f"/api/v1/inventory/alerts/{alerts[0]['id']}/resolve", headers=STAFF_HEADERS)
        assert resolved.json()["is_resolved"] is True
        assert client.get("/api/v1/inventory/alerts").json() == []

    def test_ledger_audit_is_clean(self, client):
        _create_product(client)
        response = client.get("/api/v1/inventory/ledger/discrepancies", headers=STAFF_HEADERS)
        assert response.status_code == 200
        assert response.json() == []


class TestOrders:
    def test_create_order(self, client):
        product = _create_product(client)

        response = _place_order(client, product["id"], 5, tax="2.00", shipping_fee="3.00", discount="1.00")

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["customer_id"] == "cust-1"
        assert Decimal(data["total_amount"]) == Decimal("54.00")
        assert len(data["items"]) == 1
        assert client.get(f"/api/v1/products/{product['id']}").json()["quantity"] == 45

    def test_requires_identity(self, client):
        product = _create_product(client)
        response = client.post("/api/v1/orders", json=order_payload((product["id"], 1)))
        assert response.status_code == 401

    def test_insufficient_stock_is_422(self, client):
        product = _create_product(client, quantity=2)

        response = _place_order(client, product["id"], 3)

        assert response.status_code == 422
        assert "Insufficient stock" in response.json()["detail"]

    def test_unknown_product_is_422(self, client):
        assert _place_order(client, "missing").status_code == 422

    def test_empty_order_is_422(self, client):
        body = order_payload(customer_id=None)
        response = client.post("/api/v1/orders", json=body, headers=customer_headers())
        assert response.status_code == 422

    def test_customer_cannot_order_for_someone_else(self, client):
        product = _create_product(client)
        response = client.post(
            "/api/v1/orders",
            json=order_payload((product["id"], 1), customer_id="cust-2"),
            headers=customer_headers("cust-1"),
        )
        assert response.status_code == 403

    def test_unknown_order_is_404(self, client):
        assert client.get("/api/v1/orders/missing", headers=customer_headers()).status_code == 404

    def test_other_customers_order_is_403(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        response = client.get(f"/api/v1/orders/{order['id']}", headers=customer_headers("cust-2"))
        assert response.status_code == 403
        assert client.get(f"/api/v1/orders/{order['id']}", headers=STAFF_HEADERS).status_code == 200

    def test_lookup_by_number(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        response = client.get(f"/api/v1/orders/by-number/{order['order_number']}", headers=customer_headers())
        assert response.json()["id"] == order["id"]

    def test_customers_list_only_their_orders(self, client):
        product = _create_product(client)
        _place_order(client, product["id"], customer="cust-1")
        _place_order(client, product["id"], customer="cust-2")

        mine = client.get("/api/v1/orders", headers=customer_headers("cust-1")).json()
        assert [o["customer_id"] for o in mine] == ["cust-1"]
        assert len(client.get("/api/v1/orders", headers=STAFF_HEADERS).json()) == 2

    def test_owner_can_cancel_once(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"], 4).json()

        response = client.post(
            f"/api/v1/orders/{order['id']}/cancel", json={"reason": "Changed mind"}, headers=customer_headers()
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert client.get(f"/api/v1/products/{product['id']}").json()["quantity"] == 50

        again = client.post(
            f"/api/v1/orders/{order['id']}/cancel", json={"reason": "Again"}, headers=customer_headers()
        )
        assert again.status_code == 422

    def test_other_customer_cannot_cancel(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        response = client.post(
            f"/api/v1/orders/{order['id']}/cancel", json={"reason": "x"}, headers=customer_headers("cust-2")
        )
        assert response.status_code == 403

    @pytest.mark.parametrize("status,code", [("processing", 200), ("shipped", 422), ("delivered", 422)])
    def test_status_update_from_pending(self, client, status, code):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        response = client.put(f"/api/v1/orders/{order['id']}/status", json={"status": status}, headers=STAFF_HEADERS)
        assert response.status_code == code

    def test_customer_cannot_change_status(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        response = client.put(
            f"/api/v1/orders/{order['id']}/status", json={"status": "processing"}, headers=customer_headers()
        )
        assert response.status_code == 403

    def test_status_history(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()
        client.put(f"/api/v1/orders/{order['id']}/status", json={"status": "processing"}, headers=STAFF_HEADERS)

        history = client.get(f"/api/v1/orders/{order['id']}/status-history", headers=customer_headers()).json()
        assert [h["status"] for h in history] == ["pending", "processing"]
        assert history[1]["changed_by"] == "staff-1"

    def test_statistics_need_capability(self, client):
        product = _create_product(client)
        _place_order(client, product["id"], 2)

        assert client.get("/api/v1/orders/statistics", headers=customer_headers()).status_code == 403
        stats = client.get("/api/v1/orders/statistics", headers=STAFF_HEADERS).json()
        assert stats["total_orders"] == 1
        assert Decimal(stats["total_revenue"]) == Decimal("20.00")

    def test_soft_delete(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        assert client.delete(f"/api/v1/orders/{order['id']}", headers=STAFF_HEADERS).status_code == 204
        assert client.get(f"/api/v1/orders/{order['id']}", headers=STAFF_HEADERS).status_code == 404

    def test_missing_invoice_is_404(self, client):
        product = _create_product(client)
        order = _place_order(client, product["id"]).json()

        assert client.get(f"/api/v1/orders/{order['id']}/invoice", headers=customer_headers()).status_code == 404


class TestCatalogInput:
    @pytest.mark.parametrize("field", ["low_stock_threshold", "name", "is_active", "price"])
    def test_null_product_fields_are_rejected(self, client, field):
        product = _create_product(client)

        response = client.patch(f"/api/v1/products/{product['id']}", json={field: None}, headers=STAFF_HEADERS)

        assert response.status_code == 422
        assert client.get(f"/api/v1/products/{product['id']}").json()["low_stock_threshold"] == 10

    def test_null_variant_fields(self, client):
        product = _create_product(
            client, variants=[{"sku": "SP-001-M", "quantity": 3, "price_override": "12.00"}]
        )
        variant_id = product["variants"][0]["id"]

        rejected = client.patch(f"/api/v1/products/variants/{variant_id}", json={"is_active": None}, headers=STAFF_HEADERS)
        assert rejected.status_code == 422

        # Clearing an override falls back to the product price
        cleared = client.patch(
            f"/api/v1/products/variants/{variant_id}", json={"price_override": None}, headers=STAFF_HEADERS
        )
        assert cleared.status_code == 200
        assert Decimal(cleared.json()["effective_price"]) == Decimal("10.00")

    def test_duplicate_variant_skus_are_400(self, client):
        response = client.post(
            "/api/v1/products",
            json={"sku": "TEE", "name": "Tee", "variants": [{"sku": "TEE-M"}, {"sku": "TEE-M"}]},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 400
        assert client.get("/api/v1/products").json() == []

    def test_variant_sharing_product_sku_is_400(self, client):
        response = client.post(
            "/api/v1/products",
            json={"sku": "SAME", "name": "Tee", "variants": [{"sku": "SAME"}]},
            headers=STAFF_HEADERS,
        )
        assert response.status_code == 400

    def test_search(self, client):
        _create_product(client, sku="LMP-01", name="Desk Lamp")
        _create_product(client, sku="CHR-01", name="Office Chair")

        found = client.get("/api/v1/products", params={"search": "lamp"}).json()
        assert [p["sku"] for p in found] == ["LMP-01"]

    def test_soft_delete(self, client):
        product = _create_product(client)

        assert client.delete(f"/api/v1/products/{product['id']}", headers=customer_headers()).status_code == 403
        assert client.delete(f"/api/v1/products/{product['id']}", headers=STAFF_HEADERS).status_code == 204
        assert client.get(f"/api/v1/products/{product['id']}").status_code == 404
        assert client.get("/api/v1/products").json() == []
        assert client.delete(f"/api/v1/products/{product['id']}", headers=STAFF_HEADERS).status_code == 404

        response = _place_order(client, product["id"])
        assert response.status_code == 422
        assert "not available" in response.json()["detail"]
