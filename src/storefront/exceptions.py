"""Error taxonomy for checkout, inventory and order lifecycle failures.

Every error carries a field-keyed ``messages`` dict, like Protean's own
``ValidationError``, so the FastAPI integration renders them without leaking
internals. ``ConcurrencyConflictError`` is the only one callers are expected
to retry.
"""

from protean.exceptions import InvalidOperationError, ValidationError


class InsufficientStockError(ValidationError):
    def __init__(self, product_id, variant_id, requested, available):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        self.available = available
        item = f"product {product_id}" + (f" variant {variant_id}" if variant_id else "")
        super().__init__(
            {"quantity": [f"Insufficient stock for {item}: {available} available, {requested} requested"]}
        )


class ReservationExpiredError(ValidationError):
    def __init__(self, reservation_id, reason="expired"):
        self.reservation_id = reservation_id
        super().__init__({"reservation": [f"Reservation {reservation_id} is {reason} and must be re-reserved"]})


class EmptyBasketError(ValidationError):
    def __init__(self, basket_id):
        self.basket_id = basket_id
        super().__init__({"basket": [f"Basket {basket_id} is missing or has no items"]})


class ProductUnavailableError(ValidationError):
    def __init__(self, product_id, variant_id=None):
        self.product_id = product_id
        self.variant_id = variant_id
        item = f"Product {product_id}" + (f" variant {variant_id}" if variant_id else "")
        super().__init__({"product_id": [f"{item} is no longer available"]})


class TotalsMismatchError(ValidationError):
    def __init__(self, expected, actual):
        self.expected = expected
        self.actual = actual
        super().__init__({"total_amount": [f"Order total {actual:.2f} does not match computed total {expected:.2f}"]})


class InvalidTransitionError(ValidationError):
    def __init__(self, current, attempted):
        self.current = current
        self.attempted = attempted
        super().__init__({"status": [f"Cannot transition from {current} to {attempted}"]})


class PaymentSetupError(ValidationError):
    def __init__(self, reason):
        self.reason = reason
        super().__init__({"payment": [f"Payment could not be set up: {reason}"]})


class OverRefundError(ValidationError):
    def __init__(self, requested, refundable):
        self.requested = requested
        self.refundable = refundable
        super().__init__(
            {"amount": [f"Refund of {requested:.2f} exceeds refundable amount {refundable:.2f}"]}
        )


class ConcurrencyConflictError(InvalidOperationError):
    def __init__(self, aggregate, identifier, expected=None, actual=None, detail=None):
        self.aggregate = aggregate
        self.identifier = identifier
        self.expected = expected
        self.actual = actual
        # InvalidOperationError keeps only args; the handlers read messages
        self.messages = {
            "revision": [
                detail or f"{aggregate} {identifier} was modified concurrently (expected {expected}, found {actual})"
            ]
        }
        super().__init__(self.messages)

    @classmethod
    def from_version_error(cls, exc) -> "ConcurrencyConflictError":
        """Wrap the store's own stale-version rejection."""
        return cls(None, None, detail=str(exc))


# Errors raised while turning a basket into an order.
CHECKOUT_ERRORS = (
    EmptyBasketError,
    InsufficientStockError,
    ProductUnavailableError,
    PaymentSetupError,
    TotalsMismatchError,
)
