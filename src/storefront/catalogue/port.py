"""Catalog lookup port — read access to products and variants for snapshotting."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum


class ProductType(Enum):
    PHYSICAL = "Physical"
    DIGITAL = "Digital"


@dataclass(frozen=True)
class AttributeValue:
    """One attribute choice of a variant, e.g. Colour = Red."""

    id: str
    attribute_name: str
    value: str


@dataclass(frozen=True)
class Variant:
    id: str
    product_id: str
    attribute_values: tuple[AttributeValue, ...] = ()
    price_override: float | None = None
    quantity_in_stock: int = 0

    @property
    def attribute_set(self) -> frozenset[str]:
        return frozenset(v.id for v in self.attribute_values)


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price: float
    description: str = ""
    image_url: str | None = None
    product_type: str = ProductType.PHYSICAL.value
    digital_file_url: str | None = None
    variants: tuple[Variant, ...] = field(default=())

    @property
    def is_digital(self) -> bool:
        return self.product_type == ProductType.DIGITAL.value


class CatalogLookup(ABC):
    @abstractmethod
    def get_product(self, product_id: str) -> Product | None:
        """Return the product, or None when it no longer exists."""
        ...

    @abstractmethod
    def get_variant(self, product_id: str, variant_id: str) -> Variant | None:
        """Return the variant of ``product_id``, or None when it no longer exists."""
        ...
