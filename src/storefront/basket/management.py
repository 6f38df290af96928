"""Basket management — commands and handler."""

from protean import handle
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.basket.basket import Basket
from storefront.domain import storefront


@storefront.command(part_of="Basket")
class CreateBasket:
    buyer_id = Identifier()
    buyer_email = String(max_length=254)


@storefront.command(part_of="Basket")
class AddBasketItem:
    basket_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)


@storefront.command(part_of="Basket")
class RemoveBasketItem:
    basket_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(min_value=1)


@storefront.command(part_of="Basket")
class ClearBasket:
    basket_id = Identifier(required=True)


@storefront.command_handler(part_of=Basket)
class BasketHandler:
    @handle(CreateBasket)
    def create_basket(self, command):
        basket = Basket.create(buyer_id=command.buyer_id, buyer_email=command.buyer_email)
        current_domain.repository_for(Basket).add(basket)
        return str(basket.id)

    @handle(AddBasketItem)
    def add_item(self, command):
        repo = current_domain.repository_for(Basket)
        basket = repo.get(command.basket_id)
        basket.add_item(command.product_id, command.quantity, variant_id=command.variant_id)
        repo.add(basket)

    @handle(RemoveBasketItem)
    def remove_item(self, command):
        repo = current_domain.repository_for(Basket)
        basket = repo.get(command.basket_id)
        basket.remove_item(command.product_id, quantity=command.quantity, variant_id=command.variant_id)
        repo.add(basket)

    @handle(ClearBasket)
    def clear_basket(self, command):
        repo = current_domain.repository_for(Basket)
        basket = repo.get(command.basket_id)
        basket.clear()
        repo.add(basket)
