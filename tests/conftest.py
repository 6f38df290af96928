import os
from pathlib import Path

import pytest
from protean.integrations.pytest import DomainFixture


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Select the config overlay before the domain is imported."""
    os.environ["PROTEAN_ENV"] = session.config.option.env


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture(scope="session")
def storefront_bed():
    from storefront.domain import storefront

    bed = DomainFixture(storefront)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(storefront_bed):
    """Push the domain context before each test, cleanup after."""
    with storefront_bed.domain_context():
        yield

        from protean import current_domain

        for _, provider in current_domain.providers.items():
            provider._data_reset()

        for _, broker in current_domain.brokers.items():
            broker._data_reset()

        current_domain.event_store.store._data_reset()

    _reset_collaborators()


def _reset_collaborators():
    from storefront.basket import reset_basket_service
    from storefront.catalogue import reset_catalog
    from storefront.concurrency import order_locks, stock_locks
    from storefront.delivery import reset_delivery
    from storefront.gateway import reset_gateway
    from storefront.notifications import reset_sender

    reset_basket_service()
    reset_catalog()
    reset_delivery()
    reset_gateway()
    reset_sender()
    order_locks.clear()
    stock_locks.clear()


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------
ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "address_line1": "12 Analytical Way",
    "city": "London",
    "postal_code": "N1 9GU",
    "country": "GB",
}


@pytest.fixture()
def catalog():
    from storefront.catalogue import set_catalog
    from storefront.catalogue.memory_adapter import InMemoryCatalog

    catalog = InMemoryCatalog()
    set_catalog(catalog)
    return catalog


@pytest.fixture()
def gateway():
    from storefront.gateway import set_gateway
    from storefront.gateway.fake_adapter import FakeGateway

    gateway = FakeGateway()
    set_gateway(gateway)
    return gateway


@pytest.fixture()
def sender():
    from storefront.notifications import set_sender
    from storefront.notifications.fake_sender import FakeNotificationSender

    sender = FakeNotificationSender()
    set_sender(sender)
    return sender


@pytest.fixture()
def shipping_address():
    return dict(ADDRESS)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
@pytest.fixture()
def stocked_product(catalog):
    """Register a product in the catalog and start tracking its stock."""
    from storefront.catalogue.port import Product
    from storefront.inventory.ledger import ledger

    def _make(
        product_id="prod-001",
        price=10.0,
        quantity=5,
        product_type="Physical",
        digital_file_url=None,
        low_stock_threshold=0,
    ):
        catalog.add_product(
            Product(
                id=product_id,
                name=f"Product {product_id}",
                price=price,
                description=f"Description of {product_id}",
                product_type=product_type,
                digital_file_url=digital_file_url,
            )
        )
        ledger.initialize(product_id, quantity=quantity, low_stock_threshold=low_stock_threshold)
        return product_id

    return _make


@pytest.fixture()
def basket_with():
    """Create a basket holding ``(product_id, quantity)`` or ``(product_id, variant_id, quantity)`` lines."""
    from protean import current_domain

    from storefront.basket.management import AddBasketItem, CreateBasket

    def _make(*lines, buyer_id="user-001", buyer_email="ada@example.com"):
        basket_id = current_domain.process(
            CreateBasket(buyer_id=buyer_id, buyer_email=buyer_email),
            asynchronous=False,
        )
        for line in lines:
            product_id, variant_id, quantity = line if len(line) == 3 else (line[0], None, line[1])
            current_domain.process(
                AddBasketItem(basket_id=basket_id, product_id=product_id, variant_id=variant_id, quantity=quantity),
                asynchronous=False,
            )
        return basket_id

    return _make


@pytest.fixture()
def place_order(stocked_product, basket_with, gateway, sender, shipping_address):
    """Check out a single-line basket and return the Pending order."""
    from storefront.checkout.orchestrator import checkout

    def _place(product_id="prod-001", price=10.0, quantity=1, stock=5, **product):
        stocked_product(product_id, price=price, quantity=stock, **product)
        basket_id = basket_with((product_id, quantity))
        return checkout.create_order(basket_id, shipping_address).order

    return _place
