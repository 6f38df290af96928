import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError

from storefront.basket import get_basket_service
from storefront.basket.management import AddBasketItem, CreateBasket, RemoveBasketItem


class TestBasketService:
    def test_snapshot_reflects_saved_basket(self, basket_with):
        basket_id = basket_with(("prod-001", 2), ("prod-002", "var-1", 1))

        snapshot = get_basket_service().get_basket(basket_id)

        assert snapshot.buyer_id == "user-001"
        assert [(line.product_id, line.variant_id, line.quantity) for line in snapshot.items] == [
            ("prod-001", None, 2),
            ("prod-002", "var-1", 1),
        ]

    def test_missing_basket_is_none(self):
        assert get_basket_service().get_basket("nope") is None

    def test_clear(self, basket_with):
        basket_id = basket_with(("prod-001", 2))

        get_basket_service().clear(basket_id)

        assert get_basket_service().get_basket(basket_id).items == ()


class TestBasketCommands:
    def test_anonymous_basket(self):
        basket_id = current_domain.process(CreateBasket(), asynchronous=False)

        assert get_basket_service().get_basket(basket_id).buyer_id is None

    def test_remove_item(self, basket_with):
        basket_id = basket_with(("prod-001", 2))

        current_domain.process(
            RemoveBasketItem(basket_id=basket_id, product_id="prod-001", quantity=1),
            asynchronous=False,
        )

        (line,) = get_basket_service().get_basket(basket_id).items
        assert line.quantity == 1

    def test_add_to_missing_basket(self):
        with pytest.raises(ObjectNotFoundError):
            current_domain.process(
                AddBasketItem(basket_id="nope", product_id="prod-001", quantity=1),
                asynchronous=False,
            )
