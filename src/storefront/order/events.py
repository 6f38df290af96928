"""Domain events for the Order aggregate.

All events are versioned, immutable facts. Amounts are serialized as floats
rounded to cents; item lists travel as JSON text.
"""

from protean.fields import DateTime, Float, Identifier, String, Text

from storefront.domain import storefront


@storefront.event(part_of="Order")
class OrderPlaced:
    """A basket was converted into a Pending order with a payment intent."""

    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    user_id = Identifier()
    buyer_email = String()
    items = Text(required=True)  # JSON: list of item dicts
    subtotal = Float(required=True)
    tax_amount = Float()
    shipping_cost = Float()
    total_amount = Float(required=True)
    currency = String(default="USD")
    payment_intent_id = String()
    placed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    order_number = String(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    updated_by = String()
    notes = Text()
    tracking_number = String()
    changed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderPaymentStatusChanged:
    __version__ = 1

    order_id = Identifier(required=True)
    payment_intent_id = String()
    from_status = String()
    to_status = String(required=True)
    failure_reason = String()
    changed_at = DateTime(required=True)


@storefront.event(part_of="Order")
class OrderTrackingUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    tracking_number = String(required=True)
    updated_by = String()


@storefront.event(part_of="Order")
class OrderNotesUpdated:
    __version__ = 1

    order_id = Identifier(required=True)
    notes = Text()
    updated_by = String()
