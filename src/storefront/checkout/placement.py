"""Order placement — persist a checked-out order with its first payment.

``PlaceOrder`` carries everything checkout gathered before the gateway call
(item snapshots, charges, reservations and the payment intent). The handler
rebuilds the order from it and saves the order, its initial history and a
Pending payment in one unit of work.
"""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Float, Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.exceptions import TotalsMismatchError
from storefront.order.order import ONE_CENT, Order, OrderStatus
from storefront.order.transition import check_order_revision
from storefront.payment.payment import Payment, PaymentStatus


@storefront.command(part_of="Order")
class PlaceOrder:
    order_id = Identifier(required=True)
    order_number = String(required=True, max_length=50)
    user_id = Identifier()
    buyer_email = String(max_length=254)
    currency = String(max_length=3, default="USD")
    shipping_address = Text(required=True)  # JSON: address dict
    billing_address = Text()  # JSON: address dict
    items = Text(required=True)  # JSON: list of item snapshots
    reservations = Text(required=True)  # JSON: list of reservation links
    tax_amount = Float(default=0.0)
    shipping_cost = Float(default=0.0)
    total_amount = Float(required=True)
    payment_intent_id = String(required=True, max_length=255)


@storefront.command(part_of="Order")
class AttachPaymentIntent:
    """Replace an unpaid order's payment intent with a fresh one."""

    order_id = Identifier(required=True)
    payment_intent_id = String(required=True, max_length=255)
    expected_revision = Integer()


# Orders that can still be paid for
PAYABLE_STATES = {OrderStatus.PENDING, OrderStatus.CONFIRMED}


def build_order(
    order_id,
    order_number,
    items,
    tax_amount,
    shipping_cost,
    shipping_address,
    billing_address=None,
    user_id=None,
    buyer_email=None,
    currency="USD",
) -> Order:
    """Assemble a Pending order in memory from item snapshots and charges."""
    order = Order.create(
        order_number=order_number,
        buyer_email=buyer_email,
        user_id=user_id,
        shipping_address=shipping_address,
        billing_address=billing_address,
        currency=currency,
        order_id=order_id,
    )
    order.add_snapshot_items(items)
    order.apply_charges(tax_amount, shipping_cost)
    return order


def _loads(value):
    return json.loads(value) if isinstance(value, str) else value


@storefront.command_handler(part_of=Order)
class OrderPlacementHandler:
    @handle(PlaceOrder)
    def place_order(self, command):
        repo = current_domain.repository_for(Order)
        if repo.find_by_number(command.order_number) is not None:
            raise ValidationError({"order_number": [f"Order number {command.order_number} is already taken"]})

        order = build_order(
            order_id=command.order_id,
            order_number=command.order_number,
            items=_loads(command.items),
            tax_amount=command.tax_amount or 0.0,
            shipping_cost=command.shipping_cost or 0.0,
            shipping_address=_loads(command.shipping_address),
            billing_address=_loads(command.billing_address) if command.billing_address else None,
            user_id=command.user_id,
            buyer_email=command.buyer_email,
            currency=command.currency or "USD",
        )
        if abs(order.totals.total_amount - command.total_amount) > ONE_CENT + 1e-9:
            raise TotalsMismatchError(order.totals.total_amount, command.total_amount)

        for link in _loads(command.reservations):
            order.attach_reservation(**link)
        order.place(command.payment_intent_id)

        payment = Payment.create(
            order_id=order.id,
            payment_intent_id=command.payment_intent_id,
            amount=order.totals.total_amount,
            currency=order.totals.currency,
        )

        current_domain.repository_for(Payment).add(payment)
        repo.add(order)
        return str(order.id)

    @handle(AttachPaymentIntent)
    def attach_payment_intent(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_update(command.order_id)
        check_order_revision(order, command.expected_revision)

        if OrderStatus(order.status) not in PAYABLE_STATES:
            raise ValidationError({"status": [f"Cannot take payment for an order in {order.status} state"]})
        if order.payment_status == PaymentStatus.SUCCEEDED.value:
            raise ValidationError({"payment_status": ["Order is already paid"]})

        payment_repo = current_domain.repository_for(Payment)
        for previous in payment_repo.for_order(order.id):
            if previous.status in (PaymentStatus.PENDING.value, PaymentStatus.REQUIRES_ACTION.value):
                previous.cancel("Superseded by a new payment intent")
                payment_repo.add(previous)

        payment = Payment.create(
            order_id=order.id,
            payment_intent_id=command.payment_intent_id,
            amount=order.totals.total_amount,
            currency=order.totals.currency,
        )
        order.set_payment_status(PaymentStatus.PENDING, payment_intent_id=command.payment_intent_id)

        payment_repo.add(payment)
        repo.add(order)
        return str(payment.id)
