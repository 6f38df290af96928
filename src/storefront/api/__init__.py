"""Storefront API package."""

from storefront.api.routes import (
    admin_router,
    basket_router,
    download_router,
    inventory_router,
    order_router,
    payment_router,
)

__all__ = [
    "basket_router",
    "order_router",
    "admin_router",
    "payment_router",
    "inventory_router",
    "download_router",
]
