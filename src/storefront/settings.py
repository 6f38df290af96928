"""Business settings read from the ``[custom]`` section of domain.toml."""

from datetime import timedelta

from protean.utils.globals import current_domain

DEFAULTS = {
    "reservation_ttl_minutes": 15,
    "currency": "USD",
    "shipping_policy": "threshold",
    "flat_shipping_rate": 5.00,
    "free_shipping_threshold": 100.00,
    "tax_rate": 0.0,
    "gateway_timeout_seconds": 10,
    "max_conflict_retries": 3,
    "digital_auto_advance": True,
    "download_expiry_days": 30,
    "max_downloads": 3,
    "download_token_minutes": 60,
    "low_stock_threshold": 5,
}


def setting(name: str):
    """Return a custom setting of the active domain, or its default."""
    custom = current_domain.config.get("custom", {}) or {}
    return custom.get(name, DEFAULTS[name])


def reservation_ttl() -> timedelta:
    return timedelta(minutes=setting("reservation_ttl_minutes"))


def download_expiry() -> timedelta:
    return timedelta(days=setting("download_expiry_days"))


def download_token_ttl() -> timedelta:
    return timedelta(minutes=setting("download_token_minutes"))
