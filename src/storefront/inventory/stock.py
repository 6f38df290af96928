"""StockRecord aggregate — stock on hand and time-boxed reservations.

One record per (product, variant). Stock model:
    on_hand:   physical count, only reduced when a reservation is committed
    reserved:  quantity held by reservations that are not yet released
    available: on_hand minus active reservations, computed as of a moment

A reservation whose ``expires_at`` has passed but is not yet released is
logically expired: ``available()`` ignores it and ``commit()`` refuses it.
The sweep later marks it released so ``reserved`` catches up.
"""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, HasMany, Identifier, Integer, String

from storefront.domain import storefront
from storefront.exceptions import InsufficientStockError, ReservationExpiredError
from storefront.inventory.events import (
    LowStockDetected,
    ReservationCommitted,
    ReservationReleased,
    StockInitialized,
    StockReceived,
    StockReserved,
)
from storefront.utils.clock import as_utc


def stock_key(product_id, variant_id=None) -> str:
    """Identity of the stock record for a product or one of its variants."""
    return f"{product_id}:{variant_id or '-'}"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="StockRecord")
class Reservation:
    order_id = Identifier(required=True)
    stock_key = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    reserved_at = DateTime(required=True)
    expires_at = DateTime(required=True)
    is_released = Boolean(default=False)
    is_committed = Boolean(default=False)
    released_at = DateTime()
    release_reason = String(max_length=50)

    def is_active(self, as_of: datetime) -> bool:
        return not self.is_released and as_utc(self.expires_at) > as_of

    def is_expired(self, as_of: datetime) -> bool:
        return not self.is_released and as_utc(self.expires_at) <= as_of


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class StockRecord:
    product_id = Identifier(required=True)
    variant_id = Identifier()
    on_hand = Integer(default=0, min_value=0)
    reserved = Integer(default=0, min_value=0)
    low_stock_threshold = Integer(default=5, min_value=0)
    reservations = HasMany(Reservation)
    revision = Integer(default=0)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def active_reservations_cannot_exceed_stock(self):
        held = sum(r.quantity for r in (self.reservations or []) if r.is_active(datetime.now(UTC)))
        if held > (self.on_hand or 0):
            raise ValidationError({"reserved": [f"Active reservations ({held}) exceed stock on hand ({self.on_hand})"]})

    # -------------------------------------------------------------------
    # Factory
    # -------------------------------------------------------------------
    @classmethod
    def create(cls, product_id, variant_id=None, quantity=0, low_stock_threshold=5):
        if quantity < 0:
            raise ValidationError({"quantity": ["Initial quantity cannot be negative"]})

        now = datetime.now(UTC)
        key = stock_key(product_id, variant_id)
        record = cls(
            id=key,
            product_id=product_id,
            variant_id=variant_id,
            on_hand=quantity,
            reserved=0,
            low_stock_threshold=low_stock_threshold,
            created_at=now,
            updated_at=now,
        )
        record.raise_(
            StockInitialized(
                stock_key=key,
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                on_hand=quantity,
                initialized_at=now,
            )
        )
        return record

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def available(self, as_of: datetime | None = None) -> int:
        as_of = as_of or datetime.now(UTC)
        held = sum(r.quantity for r in (self.reservations or []) if r.is_active(as_of))
        return self.on_hand - held

    def reservation(self, reservation_id) -> Reservation:
        found = next((r for r in (self.reservations or []) if str(r.id) == str(reservation_id)), None)
        if found is None:
            raise ValidationError({"reservation_id": [f"Reservation {reservation_id} not found"]})
        return found

    def unreleased(self) -> list[Reservation]:
        return [r for r in (self.reservations or []) if not r.is_released]

    @property
    def is_low_on_stock(self) -> bool:
        return self.on_hand <= self.low_stock_threshold

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def reserve(self, order_id, quantity, ttl: timedelta, as_of: datetime | None = None) -> str:
        """Hold ``quantity`` units for ``order_id`` until ``as_of + ttl``.

        Fails without side effects when fewer units are available.
        """
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})

        as_of = as_of or datetime.now(UTC)
        available = self.available(as_of)
        if quantity > available:
            raise InsufficientStockError(self.product_id, self.variant_id, quantity, available)

        reservation_id = str(uuid4())
        expires_at = as_of + ttl
        self.add_reservations(
            Reservation(
                id=reservation_id,
                order_id=order_id,
                stock_key=str(self.id),
                product_id=self.product_id,
                variant_id=self.variant_id,
                quantity=quantity,
                reserved_at=as_of,
                expires_at=expires_at,
            )
        )
        self.reserved = (self.reserved or 0) + quantity
        self._touch(as_of)

        self.raise_(
            StockReserved(
                stock_key=str(self.id),
                reservation_id=reservation_id,
                order_id=str(order_id),
                quantity=quantity,
                available_after=available - quantity,
                reserved_at=as_of,
                expires_at=expires_at,
            )
        )
        return reservation_id

    def release(self, reservation_id, reason="released", as_of: datetime | None = None) -> bool:
        """Drop a hold. Returns False when it was already released."""
        reservation = self.reservation(reservation_id)
        if reservation.is_released:
            return False

        as_of = as_of or datetime.now(UTC)
        self._mark_released(reservation, reason, as_of)
        self._touch(as_of)

        self.raise_(
            ReservationReleased(
                stock_key=str(self.id),
                reservation_id=str(reservation.id),
                order_id=str(reservation.order_id),
                quantity=reservation.quantity,
                reason=reason,
                released_at=as_of,
            )
        )
        return True

    def commit(self, reservation_id, as_of: datetime | None = None) -> bool:
        """Turn a hold into a permanent decrement of ``on_hand``.

        Returns False when the reservation was already committed.
        """
        reservation = self.reservation(reservation_id)
        if reservation.is_committed:
            return False
        if reservation.is_released:
            raise ReservationExpiredError(reservation_id, reason=reservation.release_reason or "released")

        as_of = as_of or datetime.now(UTC)
        if reservation.is_expired(as_of):
            raise ReservationExpiredError(reservation_id)

        # Release before decrementing so active holds never exceed on_hand
        self._mark_released(reservation, "committed", as_of)
        reservation.is_committed = True
        self.on_hand = self.on_hand - reservation.quantity
        self._touch(as_of)

        self.raise_(
            ReservationCommitted(
                stock_key=str(self.id),
                reservation_id=str(reservation.id),
                order_id=str(reservation.order_id),
                quantity=reservation.quantity,
                new_on_hand=self.on_hand,
                committed_at=as_of,
            )
        )
        if self.is_low_on_stock:
            self.raise_(
                LowStockDetected(
                    stock_key=str(self.id),
                    product_id=str(self.product_id),
                    variant_id=str(self.variant_id) if self.variant_id else None,
                    on_hand=self.on_hand,
                    threshold=self.low_stock_threshold,
                )
            )
        return True

    def expire_reservations(self, as_of: datetime | None = None) -> int:
        """Release every hold past its expiry. Returns how many were released."""
        as_of = as_of or datetime.now(UTC)
        expired = [r for r in (self.reservations or []) if r.is_expired(as_of)]
        for reservation in expired:
            self.release(reservation.id, reason="expired", as_of=as_of)
        return len(expired)

    # -------------------------------------------------------------------
    # Stock movements
    # -------------------------------------------------------------------
    def receive(self, quantity, reference=None):
        """Add units to the physical count."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Received quantity must be positive"]})

        now = datetime.now(UTC)
        previous = self.on_hand
        self.on_hand = previous + quantity
        self._touch(now)

        self.raise_(
            StockReceived(
                stock_key=str(self.id),
                quantity=quantity,
                previous_on_hand=previous,
                new_on_hand=self.on_hand,
                reference=reference,
                received_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _mark_released(self, reservation, reason, as_of):
        reservation.is_released = True
        reservation.released_at = as_of
        reservation.release_reason = reason
        self.reserved = max((self.reserved or 0) - reservation.quantity, 0)

    def _touch(self, as_of):
        self.revision = (self.revision or 0) + 1
        self.updated_at = as_of
