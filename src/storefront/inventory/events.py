"""Domain events for the StockRecord aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from storefront.domain import storefront


@storefront.event(part_of="StockRecord")
class StockInitialized:
    """Stock tracking started for a product (or one of its variants)."""

    __version__ = 1

    stock_key = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    on_hand = Integer(required=True)
    initialized_at = DateTime(required=True)


@storefront.event(part_of="StockRecord")
class StockReceived:
    """Units were added to the physical count (restock)."""

    __version__ = 1

    stock_key = Identifier(required=True)
    quantity = Integer(required=True)
    previous_on_hand = Integer(required=True)
    new_on_hand = Integer(required=True)
    reference = String(max_length=255)
    received_at = DateTime(required=True)


@storefront.event(part_of="StockRecord")
class StockReserved:
    """A time-boxed hold was placed on stock for an order."""

    __version__ = 1

    stock_key = Identifier(required=True)
    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    available_after = Integer(required=True)
    reserved_at = DateTime(required=True)
    expires_at = DateTime(required=True)


@storefront.event(part_of="StockRecord")
class ReservationReleased:
    """A hold was dropped without consuming stock (cancel, failure or expiry)."""

    __version__ = 1

    stock_key = Identifier(required=True)
    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    reason = String(max_length=50)
    released_at = DateTime(required=True)


@storefront.event(part_of="StockRecord")
class ReservationCommitted:
    """A hold became a permanent decrement of the physical count."""

    __version__ = 1

    stock_key = Identifier(required=True)
    reservation_id = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True)
    new_on_hand = Integer(required=True)
    committed_at = DateTime(required=True)


@storefront.event(part_of="StockRecord")
class LowStockDetected:
    """The physical count fell to or below the record's threshold."""

    __version__ = 1

    stock_key = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    on_hand = Integer(required=True)
    threshold = Integer(required=True)
