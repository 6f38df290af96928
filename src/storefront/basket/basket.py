"""Basket aggregate — a buyer's pre-checkout selection.

Items are kept in insertion order and keyed by (product, variant). Adding a
key that is already present increases its quantity instead of duplicating it.
"""

from datetime import UTC, datetime

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from storefront.basket.events import BasketCleared, BasketItemAdded, BasketItemRemoved
from storefront.domain import storefront


@storefront.entity(part_of="Basket")
class BasketItem:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    position = Integer(default=0)
    added_at = DateTime()

    @property
    def key(self):
        return (str(self.product_id), str(self.variant_id) if self.variant_id else None)


@storefront.aggregate
class Basket:
    buyer_id = Identifier()
    buyer_email = String(max_length=254)
    items = HasMany(BasketItem)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def one_item_per_product_variant(self):
        keys = [item.key for item in (self.items or [])]
        if len(keys) != len(set(keys)):
            raise ValidationError({"items": ["A product variant can appear only once in a basket"]})

    @classmethod
    def create(cls, buyer_id=None, buyer_email=None):
        now = datetime.now(UTC)
        return cls(buyer_id=buyer_id, buyer_email=buyer_email, created_at=now, updated_at=now)

    def ordered_items(self) -> list[BasketItem]:
        return sorted(self.items or [], key=lambda item: item.position)

    def add_item(self, product_id, quantity, variant_id=None):
        """Add an item, or increase the quantity of a matching one."""
        if quantity < 1:
            raise ValidationError({"quantity": ["Quantity must be at least 1"]})

        key = (str(product_id), str(variant_id) if variant_id else None)
        existing = next((i for i in (self.items or []) if i.key == key), None)
        now = datetime.now(UTC)

        if existing:
            existing.quantity += quantity
            new_quantity = existing.quantity
        else:
            position = max((i.position for i in (self.items or [])), default=-1) + 1
            self.add_items(
                BasketItem(
                    product_id=product_id,
                    variant_id=variant_id,
                    quantity=quantity,
                    position=position,
                    added_at=now,
                )
            )
            new_quantity = quantity

        self.updated_at = now
        self.raise_(
            BasketItemAdded(
                basket_id=str(self.id),
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                quantity=new_quantity,
            )
        )

    def remove_item(self, product_id, quantity=None, variant_id=None):
        """Reduce an item's quantity, dropping it when nothing is left."""
        key = (str(product_id), str(variant_id) if variant_id else None)
        item = next((i for i in (self.items or []) if i.key == key), None)
        if item is None:
            raise ValidationError({"product_id": ["Item not found in basket"]})

        if quantity is None or quantity >= item.quantity:
            self.remove_items(item)
            remaining = 0
        else:
            item.quantity -= quantity
            remaining = item.quantity

        self.updated_at = datetime.now(UTC)
        self.raise_(
            BasketItemRemoved(
                basket_id=str(self.id),
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                remaining_quantity=remaining,
            )
        )

    def clear(self):
        for item in list(self.items or []):
            self.remove_items(item)
        self.updated_at = datetime.now(UTC)
        self.raise_(BasketCleared(basket_id=str(self.id)))
