"""Domain events for the Payment aggregate."""

from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront


@storefront.event(part_of="Payment")
class PaymentInitiated:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    amount = Float(required=True)
    currency = String(required=True)
    created_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentSucceeded:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    charge_id = String()
    amount = Float(required=True)
    processed_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentFailed:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    reason = String()
    failed_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentRefunded:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    amount = Float(required=True)
    refunded_amount = Float(required=True)
    status = String(required=True)
    refunded_at = DateTime(required=True)


@storefront.event(part_of="Payment")
class PaymentCancelled:
    __version__ = 1

    payment_id = Identifier(required=True)
    order_id = Identifier(required=True)
    payment_intent_id = String(required=True)
    reason = String()
    cancelled_at = DateTime(required=True)
