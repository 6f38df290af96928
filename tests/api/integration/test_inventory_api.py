"""Integration tests for inventory and digital download endpoints."""

import json

from storefront.gateway.fake_adapter import TEST_SIGNATURE


class TestInventoryEndpoints:
    def test_initialize_and_query(self, client):
        response = client.post("/inventory/stock", json={"product_id": "prod-001", "quantity": 4})

        assert response.status_code == 201
        assert response.json() == {"stock_key": "prod-001:-"}
        assert client.get("/inventory/products/prod-001").json() == {
            "stock_key": "prod-001:-",
            "on_hand": 4,
            "reserved": 0,
            "available": 4,
        }

    def test_initialize_twice(self, client):
        client.post("/inventory/stock", json={"product_id": "prod-001", "quantity": 4})
        response = client.post("/inventory/stock", json={"product_id": "prod-001", "quantity": 4})
        assert response.status_code == 400

    def test_receive_for_variant(self, client):
        client.post("/inventory/stock", json={"product_id": "prod-001", "variant_id": "var-1", "quantity": 1})

        response = client.post(
            "/inventory/products/prod-001/receive",
            params={"variant_id": "var-1"},
            json={"quantity": 5, "reference": "PO-7"},
        )

        assert response.json()["on_hand"] == 6

    def test_unknown_product(self, client):
        assert client.get("/inventory/products/nope").status_code == 404

    def test_sweep_with_nothing_expired(self, client, checked_out):
        checked_out()
        assert client.post("/inventory/reservations/expire").json() == {"released": 0}
        assert client.get("/inventory/products/prod-001").json()["reserved"] == 1


class TestDownloadEndpoints:
    def _paid_ebook(self, client, checked_out):
        order = checked_out(
            "ebook",
            price=8.0,
            product_type="Digital",
            digital_file_url="https://files.example.com/ebook.pdf",
        )["order"]
        client.post(
            "/payments/webhook",
            content=json.dumps({"type": "payment_intent.succeeded", "data": {"object": {"id": order["payment_intent_id"]}}}),
            headers={"Stripe-Signature": TEST_SIGNATURE},
        )
        return order

    def test_paid_digital_order_can_be_downloaded(self, client, checked_out):
        order = self._paid_ebook(client, checked_out)
        assert client.get(f"/orders/{order['order_id']}").json()["status"] == "Delivered"

        (download,) = client.get("/downloads", params={"user_id": "user-001"}).json()
        assert download["can_download"] is True

        token = client.post(f"/downloads/{download['download_id']}/token", json={"user_id": "user-001"}).json()["token"]
        response = client.post(f"/downloads/redeem/{token}")

        assert response.json() == {"file_url": "https://files.example.com/ebook.pdf", "downloads_remaining": 2}

    def test_token_for_someone_else(self, client, checked_out):
        self._paid_ebook(client, checked_out)
        (download,) = client.get("/downloads", params={"user_id": "user-001"}).json()

        response = client.post(f"/downloads/{download['download_id']}/token", json={"user_id": "user-999"})

        assert response.status_code == 404

    def test_unknown_token(self, client):
        assert client.post("/downloads/redeem/forged").status_code == 404
