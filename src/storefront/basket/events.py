"""Domain events for the Basket aggregate."""

from protean.fields import Identifier, Integer

from storefront.domain import storefront


@storefront.event(part_of="Basket")
class BasketItemAdded:
    __version__ = 1

    basket_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True)


@storefront.event(part_of="Basket")
class BasketItemRemoved:
    __version__ = 1

    basket_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    remaining_quantity = Integer(required=True)


@storefront.event(part_of="Basket")
class BasketCleared:
    """All items were removed, usually because the basket became an order."""

    __version__ = 1

    basket_id = Identifier(required=True)
