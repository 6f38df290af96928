"""Order aggregate — the canonical record of a purchase.

Items, status history and reservation links are owned collections of the
order and reference products, stock records and reservations by plain id.

State Machine (8 states):
    Pending → Confirmed → PaymentReceived → Processing → Shipped → Delivered
    Cancelled from Pending, Confirmed, PaymentReceived, Processing
    Returned from PaymentReceived, Shipped, Delivered
    Cancelled and Returned are terminal.
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from storefront.domain import storefront
from storefront.exceptions import InvalidTransitionError, ProductUnavailableError, TotalsMismatchError
from storefront.order.events import (
    OrderNotesUpdated,
    OrderPaymentStatusChanged,
    OrderPlaced,
    OrderStatusChanged,
    OrderTrackingUpdated,
)
from storefront.payment.payment import PaymentStatus
from storefront.utils.clock import as_utc


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    PAYMENT_RECEIVED = "PaymentReceived"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    RETURNED = "Returned"


class ReservationState(Enum):
    HELD = "Held"
    COMMITTED = "Committed"
    RELEASED = "Released"


# State machine transition map
_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PAYMENT_RECEIVED, OrderStatus.CANCELLED},
    OrderStatus.PAYMENT_RECEIVED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.RETURNED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED, OrderStatus.RETURNED},
    OrderStatus.DELIVERED: {OrderStatus.RETURNED},
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.RETURNED: set(),  # Terminal
}

# Entering these states consumes held stock; entering Cancelled frees it
COMMITTING_STATES = {OrderStatus.CONFIRMED, OrderStatus.PAYMENT_RECEIVED}
RELEASING_STATES = {OrderStatus.CANCELLED}

# States a customer may still cancel from
CUSTOMER_CANCELLABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}

SYSTEM_ACTOR = "System"


def allowed_transitions(status: OrderStatus) -> set[OrderStatus]:
    return set(_VALID_TRANSITIONS[status])


def is_terminal(status: OrderStatus) -> bool:
    return not _VALID_TRANSITIONS[status]


# Totals may differ from the sum of their parts by at most one cent
ONE_CENT = 0.01


def to_cents(amount: float) -> float:
    return round(float(amount), 2)


def snapshot_lines(basket_items, catalog) -> list[dict]:
    """Capture each basket line at the catalog's current price.

    A variant's price override wins over the product price. Raises
    ``ProductUnavailableError`` when a product or variant is gone.
    """
    snapshots = []
    for line in basket_items:
        product = catalog.get_product(line.product_id)
        if product is None:
            raise ProductUnavailableError(line.product_id)

        unit_price = product.price
        attributes = []
        if line.variant_id:
            variant = catalog.get_variant(line.product_id, line.variant_id)
            if variant is None:
                raise ProductUnavailableError(line.product_id, line.variant_id)
            if variant.price_override is not None:
                unit_price = variant.price_override
            attributes = [{"name": v.attribute_name, "value": v.value} for v in variant.attribute_values]

        unit_price = to_cents(unit_price)
        snapshots.append(
            {
                "product_id": str(line.product_id),
                "variant_id": str(line.variant_id) if line.variant_id else None,
                "product_name": product.name,
                "product_description": product.description,
                "product_image_url": product.image_url,
                "product_type": product.product_type,
                "digital_file_url": product.digital_file_url,
                "unit_price": unit_price,
                "quantity": line.quantity,
                "line_total": to_cents(unit_price * line.quantity),
                "attributes": json.dumps(attributes),
            }
        )
    return snapshots


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@storefront.value_object(part_of="Order")
class OrderAddress:
    """Delivery or billing address captured at checkout time."""

    first_name = String(required=True, max_length=100)
    last_name = String(required=True, max_length=100)
    company = String(max_length=200)
    address_line1 = String(required=True, max_length=255)
    address_line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)
    phone_number = String(max_length=30)


@storefront.value_object(part_of="Order")
class OrderTotals:
    """Money summary of an order. Locked once the order leaves Pending."""

    subtotal = Float(default=0.0, min_value=0.0)
    tax_amount = Float(default=0.0, min_value=0.0)
    shipping_cost = Float(default=0.0, min_value=0.0)
    total_amount = Float(default=0.0, min_value=0.0)
    currency = String(max_length=3, default="USD")

    def is_balanced(self) -> bool:
        return abs(self.subtotal + self.tax_amount + self.shipping_cost - self.total_amount) <= ONE_CENT + 1e-9


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@storefront.entity(part_of="Order")
class OrderItem:
    """Snapshot of a purchased line, decoupled from the live catalog."""

    product_id = Identifier(required=True)
    variant_id = Identifier()
    product_name = String(required=True, max_length=255)
    product_description = Text()
    product_image_url = String(max_length=500)
    product_type = String(max_length=20, default="Physical")
    digital_file_url = String(max_length=500)
    unit_price = Float(required=True, min_value=0.0)
    quantity = Integer(required=True, min_value=1)
    line_total = Float(required=True, min_value=0.0)
    attributes = Text()  # JSON: list of {"name", "value"}
    position = Integer(default=0)

    @property
    def is_digital(self) -> bool:
        return self.product_type == "Digital"

    def attribute_snapshots(self) -> list[dict]:
        return json.loads(self.attributes) if self.attributes else []


@storefront.entity(part_of="Order")
class OrderStatusHistory:
    """Append-only log entry of a status change."""

    sequence = Integer(required=True, min_value=0)
    from_status = String(required=True, choices=OrderStatus)
    to_status = String(required=True, choices=OrderStatus)
    changed_at = DateTime(required=True)
    notes = Text()
    tracking_number = String(max_length=255)
    actor_id = Identifier()
    updated_by = String(max_length=255, default=SYSTEM_ACTOR)


@storefront.entity(part_of="Order")
class ReservationLink:
    """An inventory reservation held on behalf of the order."""

    stock_key = Identifier(required=True)
    reservation_id = Identifier(required=True)
    product_id = Identifier(required=True)
    variant_id = Identifier()
    quantity = Integer(required=True, min_value=1)
    state = String(choices=ReservationState, default=ReservationState.HELD.value)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@storefront.aggregate
class Order:
    order_number = String(required=True, max_length=50, unique=True)
    user_id = Identifier()
    buyer_email = String(max_length=254)
    order_date = DateTime(required=True)
    status = String(choices=OrderStatus, default=OrderStatus.PENDING.value)
    contains_digital_products = Boolean(default=False)
    requires_shipping = Boolean(default=True)
    totals = ValueObject(OrderTotals)
    payment_intent_id = String(max_length=255)
    payment_status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_failure_reason = String(max_length=500)
    shipping_address = ValueObject(OrderAddress)
    billing_address = ValueObject(OrderAddress)
    items = HasMany(OrderItem)
    status_history = HasMany(OrderStatusHistory)
    reservations = HasMany(ReservationLink)
    notes = Text()
    tracking_number = String(max_length=255)
    revision = Integer(default=0)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        order_number,
        buyer_email=None,
        user_id=None,
        shipping_address=None,
        billing_address=None,
        currency="USD",
        order_id=None,
    ):
        """Start a Pending order with its initial history entry.

        Args:
            shipping_address: Dict of OrderAddress fields.
            billing_address: Optional dict of OrderAddress fields.
        """
        now = datetime.now(UTC)
        values = dict(
            order_number=order_number,
            user_id=user_id,
            buyer_email=buyer_email,
            order_date=now,
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            totals=OrderTotals(currency=currency),
            shipping_address=OrderAddress(**shipping_address) if shipping_address else None,
            billing_address=OrderAddress(**billing_address) if billing_address else None,
            created_at=now,
            updated_at=now,
        )
        if order_id is not None:
            values["id"] = order_id

        order = cls(**values)
        order.add_status_history(
            OrderStatusHistory(
                sequence=0,
                from_status=OrderStatus.PENDING.value,
                to_status=OrderStatus.PENDING.value,
                changed_at=now,
                notes="Order created",
                actor_id=user_id,
                updated_by=SYSTEM_ACTOR,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Items and totals (Pending only)
    # -------------------------------------------------------------------
    def _assert_pending(self, action):
        if OrderStatus(self.status) != OrderStatus.PENDING:
            raise ValidationError({"status": [f"Cannot {action} once the order is {self.status}"]})

    def ordered_items(self) -> list[OrderItem]:
        return sorted(self.items or [], key=lambda item: item.position)

    def snapshot_items_from(self, basket_items, catalog):
        """Copy each basket line into an OrderItem at the catalog's current price."""
        self._assert_pending("add items")
        self.add_snapshot_items(snapshot_lines(basket_items, catalog))

    def add_snapshot_items(self, snapshots):
        """Add OrderItems from snapshot dicts, as produced by ``snapshot_lines``."""
        self._assert_pending("add items")

        position = len(self.items or [])
        for snapshot in snapshots:
            self.add_items(OrderItem(**snapshot, position=position))
            position += 1

        items = self.items or []
        self.contains_digital_products = any(item.is_digital for item in items)
        self.requires_shipping = any(not item.is_digital for item in items)
        self.compute_subtotal()

    @property
    def is_digital_only(self) -> bool:
        return bool(self.contains_digital_products) and not self.requires_shipping

    def compute_subtotal(self) -> float:
        subtotal = to_cents(sum(item.line_total for item in (self.items or [])))
        totals = self.totals or OrderTotals()
        self.totals = OrderTotals(
            subtotal=subtotal,
            tax_amount=totals.tax_amount,
            shipping_cost=totals.shipping_cost,
            total_amount=to_cents(subtotal + totals.tax_amount + totals.shipping_cost),
            currency=totals.currency,
        )
        return subtotal

    def apply_charges(self, tax_amount, shipping_cost):
        """Set tax and shipping, keeping the total consistent with the items."""
        self._assert_pending("change charges")
        totals = self.totals or OrderTotals()
        subtotal = to_cents(sum(item.line_total for item in (self.items or [])))
        self.totals = OrderTotals(
            subtotal=subtotal,
            tax_amount=to_cents(tax_amount),
            shipping_cost=to_cents(shipping_cost),
            total_amount=to_cents(subtotal + tax_amount + shipping_cost),
            currency=totals.currency,
        )

    def compute_totals(self) -> OrderTotals:
        """Recompute the subtotal from the items and check the total against it.

        Raises ``TotalsMismatchError`` when subtotal + tax + shipping does not
        equal the recorded total.
        """
        self._assert_pending("recompute totals")
        totals = self.totals or OrderTotals()
        subtotal = to_cents(sum(item.line_total for item in (self.items or [])))
        expected = to_cents(subtotal + totals.tax_amount + totals.shipping_cost)
        if abs(expected - totals.total_amount) > ONE_CENT + 1e-9:
            raise TotalsMismatchError(expected, totals.total_amount)

        if subtotal != totals.subtotal:
            self.totals = OrderTotals(
                subtotal=subtotal,
                tax_amount=totals.tax_amount,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total_amount,
                currency=totals.currency,
            )
        return self.totals

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def attach_reservation(self, stock_key, reservation_id, product_id, quantity, variant_id=None):
        self.add_reservations(
            ReservationLink(
                stock_key=stock_key,
                reservation_id=reservation_id,
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
            )
        )

    def held_reservations(self) -> list[ReservationLink]:
        return [r for r in (self.reservations or []) if r.state == ReservationState.HELD.value]

    def mark_reservation(self, reservation_id, state: ReservationState):
        link = next((r for r in (self.reservations or []) if str(r.reservation_id) == str(reservation_id)), None)
        if link is None:
            raise ValidationError({"reservation_id": [f"Reservation {reservation_id} is not held by this order"]})
        link.state = state.value

    def replace_reservation(self, old_reservation_id, new_reservation_id):
        link = next(r for r in (self.reservations or []) if str(r.reservation_id) == str(old_reservation_id))
        link.reservation_id = new_reservation_id
        link.state = ReservationState.HELD.value

    # -------------------------------------------------------------------
    # Placement
    # -------------------------------------------------------------------
    def place(self, payment_intent_id):
        """Finalize a Pending order against its payment intent."""
        self._assert_pending("place the order")
        if not self.items:
            raise ValidationError({"items": ["An order needs at least one item"]})
        totals = self.compute_totals()

        now = datetime.now(UTC)
        self.payment_intent_id = payment_intent_id
        self.payment_status = PaymentStatus.PENDING.value
        self.updated_at = now

        self.raise_(
            OrderPlaced(
                order_id=str(self.id),
                order_number=self.order_number,
                user_id=str(self.user_id) if self.user_id else None,
                buyer_email=self.buyer_email,
                items=json.dumps(
                    [
                        {
                            "product_id": str(item.product_id),
                            "variant_id": str(item.variant_id) if item.variant_id else None,
                            "product_name": item.product_name,
                            "unit_price": item.unit_price,
                            "quantity": item.quantity,
                            "line_total": item.line_total,
                        }
                        for item in self.ordered_items()
                    ]
                ),
                subtotal=totals.subtotal,
                tax_amount=totals.tax_amount,
                shipping_cost=totals.shipping_cost,
                total_amount=totals.total_amount,
                currency=totals.currency,
                payment_intent_id=payment_intent_id,
                placed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------
    def can_transition_to(self, target: OrderStatus) -> bool:
        return target in _VALID_TRANSITIONS[OrderStatus(self.status)]

    def assert_can_transition(self, target: OrderStatus):
        current = OrderStatus(self.status)
        if target not in _VALID_TRANSITIONS[current]:
            raise InvalidTransitionError(current.value, target.value)

    def history(self) -> list[OrderStatusHistory]:
        return sorted(self.status_history or [], key=lambda h: h.sequence)

    def transition_to(
        self,
        target: OrderStatus,
        updated_by=SYSTEM_ACTOR,
        actor_id=None,
        notes=None,
        tracking_number=None,
    ) -> OrderStatusHistory:
        """Move to ``target`` and append the history entry for it.

        Raises ``InvalidTransitionError`` and leaves the order untouched when
        the edge is not in the transition table.
        """
        self.assert_can_transition(target)

        previous = OrderStatus(self.status)
        now = datetime.now(UTC)
        entries = self.history()
        # Entries stay strictly ordered even when the clock does not advance
        last_changed = as_utc(entries[-1].changed_at) if entries else None
        if last_changed and now <= last_changed:
            now = last_changed + timedelta(microseconds=1)
        entry = OrderStatusHistory(
            sequence=(entries[-1].sequence + 1) if entries else 0,
            from_status=previous.value,
            to_status=target.value,
            changed_at=now,
            notes=notes,
            tracking_number=tracking_number,
            actor_id=actor_id,
            updated_by=updated_by or SYSTEM_ACTOR,
        )

        self.status = target.value
        if tracking_number:
            self.tracking_number = tracking_number
        if notes:
            self.notes = notes
        self.add_status_history(entry)
        self._touch(now)

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                order_number=self.order_number,
                from_status=previous.value,
                to_status=target.value,
                updated_by=entry.updated_by,
                notes=notes,
                tracking_number=tracking_number,
                changed_at=now,
            )
        )
        return entry

    # -------------------------------------------------------------------
    # Payment status
    # -------------------------------------------------------------------
    def set_payment_status(self, status: PaymentStatus, failure_reason=None, payment_intent_id=None):
        previous = self.payment_status
        now = datetime.now(UTC)
        self.payment_status = status.value
        self.payment_failure_reason = failure_reason
        if payment_intent_id:
            self.payment_intent_id = payment_intent_id
        self._touch(now)

        self.raise_(
            OrderPaymentStatusChanged(
                order_id=str(self.id),
                payment_intent_id=self.payment_intent_id,
                from_status=previous,
                to_status=status.value,
                failure_reason=failure_reason,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Back-office annotations
    # -------------------------------------------------------------------
    def update_tracking(self, tracking_number, updated_by=SYSTEM_ACTOR, notes=None):
        if not tracking_number:
            raise ValidationError({"tracking_number": ["Tracking number is required"]})
        self.tracking_number = tracking_number
        if notes:
            self.notes = notes
        self._touch(datetime.now(UTC))
        self.raise_(
            OrderTrackingUpdated(order_id=str(self.id), tracking_number=tracking_number, updated_by=updated_by)
        )

    def update_notes(self, notes, updated_by=SYSTEM_ACTOR):
        self.notes = notes
        self._touch(datetime.now(UTC))
        self.raise_(OrderNotesUpdated(order_id=str(self.id), notes=notes, updated_by=updated_by))

    def _touch(self, as_of):
        self.revision = (self.revision or 0) + 1
        self.updated_at = as_of
