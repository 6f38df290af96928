"""Basket service port — what checkout needs from the basket store."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class BasketLine:
    product_id: str
    variant_id: str | None
    quantity: int


@dataclass(frozen=True)
class BasketSnapshot:
    id: str
    buyer_id: str | None
    buyer_email: str | None
    items: tuple[BasketLine, ...]


class BasketService(ABC):
    @abstractmethod
    def get_basket(self, basket_id: str) -> BasketSnapshot | None:
        """Return the basket, or None when it does not exist."""
        ...

    @abstractmethod
    def clear(self, basket_id: str) -> None:
        ...
