"""Digital delivery registry. Defaults to the repository-backed grants."""

from storefront.delivery.port import DigitalDelivery

_current_delivery: DigitalDelivery | None = None


def get_delivery() -> DigitalDelivery:
    global _current_delivery
    if _current_delivery is None:
        from storefront.delivery.repository_adapter import RepositoryDigitalDelivery

        _current_delivery = RepositoryDigitalDelivery()
    return _current_delivery


def set_delivery(delivery: DigitalDelivery) -> None:
    global _current_delivery
    _current_delivery = delivery


def reset_delivery() -> None:
    global _current_delivery
    _current_delivery = None
