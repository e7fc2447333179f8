"""Integration tests for the cart, order and admin API endpoints."""

import pytest

CUSTOMER = {
    "id": "cust-001",
    "name": "Asha Rao",
    "email": "asha@example.com",
    "addresses": [
        {
            "id": "addr-home",
            "name": "Asha Rao",
            "phone": "+91 98765 43210",
            "line1": "12 MG Road",
            "city": "Bengaluru",
            "state": "Karnataka",
            "postal_code": "560001",
            "is_default": True,
        }
    ],
}


@pytest.fixture()
def product(make_product):
    return make_product(price=500.0, stock=10)


def _checkout(client, product, payment_method="razorpay", quantity=2):
    response = client.post(f"/carts/{CUSTOMER['id']}/items", json={"product_id": product.id, "quantity": quantity})
    assert response.status_code == 200, response.text
    return client.post("/orders", json={"customer": CUSTOMER, "payment_method": payment_method})


class TestCartEndpoints:
    def test_add_item_merges_quantities(self, client, product):
        client.post("/carts/cust-001/items", json={"product_id": product.id, "quantity": 1})
        response = client.post("/carts/cust-001/items", json={"product_id": product.id, "quantity": 2})

        assert response.json()["items"] == [{"product_id": product.id, "quantity": 3}]

    def test_zero_quantity_is_unprocessable(self, client, product):
        response = client.post("/carts/cust-001/items", json={"product_id": product.id, "quantity": 0})
        assert response.status_code == 422

    def test_get_empty_cart(self, client):
        response = client.get("/carts/cust-042")

        assert response.status_code == 200
        assert response.json()["items"] == []


class TestCheckoutEndpoint:
    def test_checkout_returns_created_order(self, client, product):
        response = _checkout(client, product)

        assert response.status_code == 201, response.text
        body = response.json()
        assert body["order_number"] == "ORD202601050001"
        assert body["grand_total"] == 1080.0
        assert body["status"] == "pending"
        assert body["gateway_order_id"].startswith("order_fake")

    def test_cod_checkout_returns_awb(self, client, product):
        body = _checkout(client, product, payment_method="cod").json()

        assert body["awb_code"] == "AWB00000002"
        assert body["shipping_status"] == "confirmed"

    def test_checkout_without_cart(self, client):
        response = client.post("/orders", json={"customer": CUSTOMER, "payment_method": "razorpay"})

        assert response.status_code == 400
        assert "cart" in response.json()["messages"]

    def test_insufficient_stock_is_conflict(self, client, product):
        response = _checkout(client, product, quantity=11)

        assert response.status_code == 409
        assert response.json()["error"] == "StockError"

    def test_unknown_payment_method_is_bad_request(self, client, product):
        response = _checkout(client, product, payment_method="barter")
        assert response.status_code == 400


class TestOrderEndpoints:
    def test_get_order(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]

        body = client.get(f"/orders/{order_number}", params={"customer_id": "cust-001"}).json()

        assert body["subtotal"] == 1000.0
        assert body["items"][0]["line_total"] == 1000.0
        assert {a["type"] for a in body["addresses"]} == {"shipping", "billing"}

    def test_get_order_of_another_customer_is_forbidden(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]

        response = client.get(f"/orders/{order_number}", params={"customer_id": "cust-999"})
        assert response.status_code == 403

    def test_unknown_order_is_not_found(self, client):
        assert client.get("/orders/ORD209901010001").status_code == 404

    def test_cancel_order(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]

        response = client.post(
            f"/orders/{order_number}/cancel", json={"reason": "Changed my mind", "customer_id": "cust-001"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "Changed my mind"

    def test_cancel_twice_is_conflict(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]
        body = {"reason": "Changed my mind", "customer_id": "cust-001"}
        client.post(f"/orders/{order_number}/cancel", json=body)

        response = client.post(f"/orders/{order_number}/cancel", json=body)

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidStatusTransition"


class TestAdminEndpoints:
    def test_admin_confirms_order(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]

        response = client.patch(f"/admin/orders/{order_number}/status", json={"status": "confirmed"})

        assert response.status_code == 200
        assert response.json()["status"] == "confirmed"

    def test_admin_cannot_ship_unpaid_order(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]

        response = client.patch(f"/admin/orders/{order_number}/status", json={"status": "shipped"})

        assert response.status_code == 409

    def test_admin_cancel_uses_note_as_reason(self, client, product):
        order_number = _checkout(client, product).json()["order_number"]

        response = client.patch(
            f"/admin/orders/{order_number}/status", json={"status": "cancelled", "note": "Address unreachable"}
        )

        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellation_reason"] == "Address unreachable"

    def test_health_reports_adapters(self, client):
        body = client.get("/health").json()

        assert body["status"] == "ok"
        assert body["adapters"] == {"gateway": "FakeGateway", "carrier": "FakeCarrier"}
