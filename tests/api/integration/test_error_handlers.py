import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean.exceptions import ExpectedVersionError

from storefront.api.errors import register_storefront_handlers
from storefront.exceptions import ConcurrencyConflictError


def _client_raising(exc):
    app = FastAPI()
    register_storefront_handlers(app)

    @app.put("/orders/{order_id}")
    async def update(order_id: str):
        raise exc

    return TestClient(app)


@pytest.mark.parametrize(
    "exc",
    [
        ConcurrencyConflictError("Order", "o1", 0, 1),
        ExpectedVersionError("Wrong expected version: 1 (Aggregate: Order(o1), Version: 2)"),
    ],
)
def test_conflicts_render_as_409(exc):
    response = _client_raising(exc).put("/orders/o1")

    assert response.status_code == 409
    assert list(response.json()["error"]) == ["revision"]
