"""Digital delivery port — grants access to purchased files."""

from abc import ABC, abstractmethod


class DigitalDelivery(ABC):
    @abstractmethod
    def grant_download(self, order_id, order_item_id, user_id, file_ref, product_name) -> str:
        """Grant ``user_id`` access to ``file_ref``; returns the grant id."""
        ...
