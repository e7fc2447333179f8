"""Integration tests for the inventory API endpoints."""


def _register(client, **overrides):
    body = {"name": "Copper Bottle", "sku": "CB-001", "price": 750.0, "initial_quantity": 30}
    body.update(overrides)
    response = client.post("/inventory/products", json=body)
    assert response.status_code == 201, response.text
    return response.json()


class TestProductRegistration:
    def test_register_product(self, client):
        product = _register(client)

        assert product["stock_quantity"] == 30
        assert product["stock_status"] == "in_stock"

    def test_duplicate_sku_is_bad_request(self, client):
        _register(client)
        response = client.post(
            "/inventory/products", json={"name": "Other", "sku": "CB-001", "price": 10.0}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"
        assert "sku" in response.json()["messages"]


class TestStockEndpoints:
    def test_adjust_and_history(self, client):
        product = _register(client)

        response = client.post(f"/inventory/{product['id']}/adjust", json={"new_quantity": 12, "reason": "Recount"})
        assert response.status_code == 200
        assert response.json()["type"] == "adjustment"
        assert response.json()["new_stock"] == 12

        history = client.get(f"/inventory/{product['id']}/history").json()
        assert [m["type"] for m in history] == ["adjustment", "stock_in"]

    def test_receive_return_and_damage(self, client):
        product = _register(client, initial_quantity=5)

        assert client.post(f"/inventory/{product['id']}/receive", json={"quantity": 5}).json()["new_stock"] == 10
        assert client.post(f"/inventory/{product['id']}/returns", json={"quantity": 1}).json()["new_stock"] == 11
        assert client.post(f"/inventory/{product['id']}/damage", json={"quantity": 2}).json()["new_stock"] == 9

    def test_damage_beyond_stock_is_conflict(self, client):
        product = _register(client, initial_quantity=1)

        response = client.post(f"/inventory/{product['id']}/damage", json={"quantity": 5})

        assert response.status_code == 409
        assert response.json()["error"] == "StockError"

    def test_unknown_product_history_is_not_found(self, client):
        response = client.get("/inventory/missing/history")
        assert response.status_code == 404

    def test_replay_reports_consistency(self, client):
        product = _register(client)
        client.post(f"/inventory/{product['id']}/damage", json={"quantity": 3})

        result = client.get(f"/inventory/{product['id']}/replay").json()

        assert result["consistent"] is True
        assert result["replayed_quantity"] == 27

    def test_low_stock_listing(self, client):
        low = _register(client, sku="CB-LOW", initial_quantity=3)
        _register(client, sku="CB-OK", initial_quantity=300)

        listing = client.get("/inventory/low-stock").json()

        assert [p["id"] for p in listing] == [low["id"]]

    def test_bulk_update_reports_errors_per_item(self, client):
        product = _register(client, initial_quantity=2)

        response = client.post(
            "/inventory/bulk",
            json={
                "updates": [
                    {"product_id": product["id"], "quantity": 8, "type": "stock_in"},
                    {"product_id": "missing", "quantity": 1, "type": "stock_in"},
                ]
            },
        )

        body = response.json()
        assert response.status_code == 200
        assert body["results"][0]["new_stock"] == 10
        assert body["errors"][0]["product_id"] == "missing"

    def test_bulk_update_rejects_unknown_movement_type(self, client):
        response = client.post(
            "/inventory/bulk",
            json={"updates": [{"product_id": "p", "quantity": 1, "type": "teleport"}]},
        )
        assert response.status_code == 400
