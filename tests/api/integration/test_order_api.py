"""Integration tests for basket, checkout and order endpoints via TestClient."""

import inspect

from fastapi.routing import APIRoute
from protean import current_domain

from storefront.order.order import Order, OrderStatus


class TestBasketEndpoints:
    def test_basket_lifecycle(self, client):
        basket_id = client.post("/baskets", json={"buyer_id": "user-001"}).json()["basket_id"]

        client.post(f"/baskets/{basket_id}/items", json={"product_id": "prod-001", "quantity": 2})
        client.post(f"/baskets/{basket_id}/items", json={"product_id": "prod-002", "variant_id": "var-1"})
        client.delete(f"/baskets/{basket_id}/items/prod-001", params={"quantity": 1})

        body = client.get(f"/baskets/{basket_id}").json()
        assert body["buyer_id"] == "user-001"
        assert body["items"] == [
            {"product_id": "prod-001", "variant_id": None, "quantity": 1},
            {"product_id": "prod-002", "variant_id": "var-1", "quantity": 1},
        ]

    def test_clear_basket(self, client):
        basket_id = client.post("/baskets", json={}).json()["basket_id"]
        client.post(f"/baskets/{basket_id}/items", json={"product_id": "prod-001"})

        assert client.delete(f"/baskets/{basket_id}/items").status_code == 200
        assert client.get(f"/baskets/{basket_id}").json()["items"] == []

    def test_missing_basket(self, client):
        assert client.get("/baskets/nope").status_code == 404

    def test_zero_quantity_rejected(self, client):
        basket_id = client.post("/baskets", json={}).json()["basket_id"]
        response = client.post(f"/baskets/{basket_id}/items", json={"product_id": "prod-001", "quantity": 0})
        assert response.status_code == 422


class TestCheckoutEndpoint:
    def test_checkout_creates_pending_order(self, checked_out):
        body = checked_out(price=1000.0, quantity=2)

        order = body["order"]
        assert order["status"] == OrderStatus.PENDING.value
        assert order["payment_status"] == "Pending"
        assert order["totals"]["subtotal"] == 2000.0
        assert order["totals"]["total_amount"] == 2000.0
        assert order["items"][0]["quantity"] == 2
        assert body["client_secret"]

        saved = current_domain.repository_for(Order).get(order["order_id"])
        assert saved.order_number == order["order_number"]

    def test_checkout_with_insufficient_stock(self, client, stocked_product, gateway, shipping_address):
        stocked_product("prod-001", quantity=1)
        basket_id = client.post("/baskets", json={"buyer_id": "user-001"}).json()["basket_id"]
        client.post(f"/baskets/{basket_id}/items", json={"product_id": "prod-001", "quantity": 2})

        response = client.post("/orders", json={"basket_id": basket_id, "shipping_address": shipping_address})

        assert response.status_code == 400

    def test_checkout_with_empty_basket(self, client, gateway, shipping_address):
        basket_id = client.post("/baskets", json={}).json()["basket_id"]

        response = client.post("/orders", json={"basket_id": basket_id, "shipping_address": shipping_address})

        assert response.status_code == 400

    def test_checkout_with_gateway_down(self, client, stocked_product, gateway, shipping_address):
        stocked_product("prod-001", quantity=3)
        basket_id = client.post("/baskets", json={"buyer_id": "user-001"}).json()["basket_id"]
        client.post(f"/baskets/{basket_id}/items", json={"product_id": "prod-001", "quantity": 1})
        client.put("/payments/gateway", json={"should_succeed": False})

        response = client.post("/orders", json={"basket_id": basket_id, "shipping_address": shipping_address})

        assert response.status_code == 400
        assert client.get("/inventory/products/prod-001").json()["available"] == 3


class TestOrderQueries:
    def test_get_and_list_orders(self, client, checked_out):
        order_id = checked_out()["order"]["order_id"]

        assert client.get(f"/orders/{order_id}").json()["order_id"] == order_id
        listed = client.get("/orders", params={"user_id": "user-001"}).json()
        assert [o["order_id"] for o in listed] == [order_id]

    def test_missing_order(self, client):
        assert client.get("/orders/missing").status_code == 404

    def test_history(self, client, checked_out):
        order_id = checked_out()["order"]["order_id"]

        history = client.get(f"/orders/{order_id}/history").json()

        assert [h["to_status"] for h in history] == ["Pending"]


class TestCustomerCancel:
    def test_customer_cancels_own_order(self, client, checked_out):
        order_id = checked_out()["order"]["order_id"]

        response = client.post(f"/orders/{order_id}/cancel", json={"user_id": "user-001"})

        assert response.status_code == 200
        assert response.json()["to_status"] == "Cancelled"
        assert client.get("/inventory/products/prod-001").json()["available"] == 5

    def test_other_customer_gets_not_found(self, client, checked_out):
        order_id = checked_out()["order"]["order_id"]

        response = client.post(f"/orders/{order_id}/cancel", json={"user_id": "user-999"})

        assert response.status_code == 404


class TestRetryPayment:
    def test_retry_opens_new_intent(self, client, checked_out):
        order = checked_out()["order"]

        response = client.post(f"/orders/{order['order_id']}/payments")

        assert response.status_code == 201
        assert response.json()["payment_intent_id"] != order["payment_intent_id"]


def test_blocking_endpoints_run_in_threadpool(client):
    async_endpoints = {
        route.path
        for route in client.app.routes
        if isinstance(route, APIRoute) and inspect.iscoroutinefunction(route.endpoint)
    }

    # Only the webhook awaits its raw body; it hands the event off itself
    assert async_endpoints == {"/payments/webhook"}
