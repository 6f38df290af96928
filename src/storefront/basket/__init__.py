"""Basket service registry. Defaults to the repository-backed service."""

from storefront.basket.port import BasketService

_current_service: BasketService | None = None


def get_basket_service() -> BasketService:
    global _current_service
    if _current_service is None:
        from storefront.basket.repository_adapter import RepositoryBasketService

        _current_service = RepositoryBasketService()
    return _current_service


def set_basket_service(service: BasketService) -> None:
    global _current_service
    _current_service = service


def reset_basket_service() -> None:
    global _current_service
    _current_service = None
