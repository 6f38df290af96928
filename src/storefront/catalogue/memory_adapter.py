"""In-memory catalog used in development and tests."""

from dataclasses import replace

from protean.exceptions import ValidationError

from storefront.catalogue.port import CatalogLookup, Product, Variant


class InMemoryCatalog(CatalogLookup):
    def __init__(self):
        self._products: dict[str, Product] = {}

    def add_product(self, product: Product) -> Product:
        self._products[str(product.id)] = replace(product, variants=())
        for variant in product.variants:
            self.add_variant(variant)
        return self._products[str(product.id)]

    def add_variant(self, variant: Variant) -> Variant:
        """Register a variant. No two variants of a product may share an attribute set."""
        product = self._products.get(str(variant.product_id))
        if product is None:
            raise ValidationError({"product_id": [f"Product {variant.product_id} does not exist"]})

        clash = next(
            (v for v in product.variants if v.attribute_set == variant.attribute_set and v.id != variant.id),
            None,
        )
        if clash is not None:
            raise ValidationError(
                {"attribute_values": [f"Variant {clash.id} already uses the same attribute combination"]}
            )

        others = tuple(v for v in product.variants if v.id != variant.id)
        self._products[str(product.id)] = replace(product, variants=others + (variant,))
        return variant

    def remove_product(self, product_id: str) -> None:
        self._products.pop(str(product_id), None)

    def update_price(self, product_id: str, price: float) -> None:
        self._products[str(product_id)] = replace(self._products[str(product_id)], price=price)

    def get_product(self, product_id: str) -> Product | None:
        return self._products.get(str(product_id))

    def get_variant(self, product_id: str, variant_id: str) -> Variant | None:
        product = self.get_product(product_id)
        if product is None:
            return None
        return next((v for v in product.variants if str(v.id) == str(variant_id)), None)
