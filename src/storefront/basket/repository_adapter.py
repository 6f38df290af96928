"""Basket service backed by the Basket aggregate."""

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from storefront.basket.basket import Basket
from storefront.basket.management import ClearBasket
from storefront.basket.port import BasketLine, BasketService, BasketSnapshot


class RepositoryBasketService(BasketService):
    def get_basket(self, basket_id: str) -> BasketSnapshot | None:
        try:
            basket = current_domain.repository_for(Basket).get(basket_id)
        except ObjectNotFoundError:
            return None

        return BasketSnapshot(
            id=str(basket.id),
            buyer_id=str(basket.buyer_id) if basket.buyer_id else None,
            buyer_email=basket.buyer_email,
            items=tuple(
                BasketLine(
                    product_id=str(item.product_id),
                    variant_id=str(item.variant_id) if item.variant_id else None,
                    quantity=item.quantity,
                )
                for item in basket.ordered_items()
            ),
        )

    def clear(self, basket_id: str) -> None:
        current_domain.process(ClearBasket(basket_id=basket_id), asynchronous=False)
