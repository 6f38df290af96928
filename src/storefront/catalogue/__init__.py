"""Catalog lookup registry. Defaults to the in-memory catalog."""

from storefront.catalogue.memory_adapter import InMemoryCatalog
from storefront.catalogue.port import CatalogLookup

_current_catalog: CatalogLookup | None = None


def get_catalog() -> CatalogLookup:
    global _current_catalog
    if _current_catalog is None:
        _current_catalog = InMemoryCatalog()
    return _current_catalog


def set_catalog(catalog: CatalogLookup) -> None:
    global _current_catalog
    _current_catalog = catalog


def reset_catalog() -> None:
    global _current_catalog
    _current_catalog = None
