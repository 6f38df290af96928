import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from storefront.api import (
    admin_router,
    basket_router,
    download_router,
    inventory_router,
    order_router,
    payment_router,
)
from storefront.api.errors import register_storefront_handlers


@pytest.fixture()
def client():
    app = FastAPI()
    register_storefront_handlers(app)
    for router in (basket_router, order_router, admin_router, payment_router, inventory_router, download_router):
        app.include_router(router)
    return TestClient(app)


@pytest.fixture()
def checked_out(client, stocked_product, gateway, shipping_address):
    """Check out one unit of a product through the API and return the response body."""

    def _checkout(product_id="prod-001", quantity=1, **product):
        stocked_product(product_id, **product)
        basket_id = client.post("/baskets", json={"buyer_id": "user-001", "buyer_email": "ada@example.com"}).json()[
            "basket_id"
        ]
        client.post(f"/baskets/{basket_id}/items", json={"product_id": product_id, "quantity": quantity})
        response = client.post("/orders", json={"basket_id": basket_id, "shipping_address": shipping_address})
        assert response.status_code == 201
        return response.json()

    return _checkout
