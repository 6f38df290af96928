"""Application tests for turning a basket into a Pending order."""

import re

import pytest
from protean import current_domain
from protean.exceptions import ValidationError

from storefront.basket import get_basket_service
from storefront.catalogue.port import AttributeValue, Product, Variant
from storefront.checkout.orchestrator import checkout, generate_order_number
from storefront.exceptions import EmptyBasketError, InsufficientStockError, PaymentSetupError, ProductUnavailableError
from storefront.inventory.ledger import ledger
from storefront.notifications.port import ADMIN_ROLE, NotificationType
from storefront.order.order import Order, OrderStatus, ReservationState
from storefront.order.state_machine import state_machine
from storefront.payment.payment import Payment, PaymentStatus


def _orders():
    return current_domain.repository_for(Order)._dao.query.all().items


def _payments():
    return current_domain.repository_for(Payment)._dao.query.all().items


class TestSuccessfulCheckout:
    def test_order_is_pending_with_snapshot_and_totals(
        self, stocked_product, basket_with, gateway, shipping_address
    ):
        stocked_product("prod-001", price=1000.0, quantity=5)
        basket_id = basket_with(("prod-001", 2))

        result = checkout.create_order(basket_id, shipping_address)

        order = result.order
        assert order.status == OrderStatus.PENDING.value
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.totals.subtotal == 2000.0
        assert order.totals.shipping_cost == 0.0
        assert order.totals.total_amount == 2000.0
        assert order.user_id == "user-001"
        assert order.buyer_email == "ada@example.com"
        assert order.shipping_address.city == "London"
        (item,) = order.items
        assert item.unit_price == 1000.0
        assert item.quantity == 2
        assert result.client_secret.startswith(order.payment_intent_id)

    def test_stock_is_held_until_confirmation(self, stocked_product, basket_with, gateway, shipping_address):
        stocked_product("prod-001", price=1000.0, quantity=5)
        basket_id = basket_with(("prod-001", 2))

        order = checkout.create_order(basket_id, shipping_address).order

        record = ledger.record("prod-001")
        assert record.on_hand == 5
        assert record.available() == 3
        (link,) = order.reservations
        assert link.state == ReservationState.HELD.value
        assert record.reservation(link.reservation_id).order_id == order.id

    def test_shipping_charged_below_threshold(self, place_order):
        order = place_order(price=10.0, quantity=2)

        assert order.totals.subtotal == 20.0
        assert order.totals.shipping_cost == 5.0
        assert order.totals.total_amount == 25.0

    def test_digital_only_orders_ship_free(self, place_order):
        order = place_order(price=10.0, product_type="Digital", digital_file_url="https://files.example.com/a.pdf")

        assert order.requires_shipping is False
        assert order.totals.shipping_cost == 0.0

    def test_variant_price_override_is_used(self, catalog, basket_with, gateway, shipping_address):
        catalog.add_product(
            Product(
                id="shirt",
                name="T-Shirt",
                price=20.0,
                variants=(
                    Variant(
                        id="shirt-red",
                        product_id="shirt",
                        attribute_values=(AttributeValue(id="red", attribute_name="Colour", value="Red"),),
                        price_override=22.5,
                    ),
                ),
            )
        )
        ledger.initialize("shirt", variant_id="shirt-red", quantity=3)
        basket_id = basket_with(("shirt", "shirt-red", 1))

        order = checkout.create_order(basket_id, shipping_address).order

        (item,) = order.items
        assert item.unit_price == 22.5
        assert item.attribute_snapshots() == [{"name": "Colour", "value": "Red"}]
        assert ledger.available("shirt", "shirt-red") == 2

    def test_order_number_format(self, place_order):
        order = place_order()
        assert re.fullmatch(r"ORD-\d{8}-[0-9A-F]{8}", order.order_number)

    def test_order_numbers_are_unique(self):
        assert len({generate_order_number() for _ in range(50)}) == 50

    def test_basket_is_cleared(self, stocked_product, basket_with, gateway, shipping_address):
        stocked_product()
        basket_id = basket_with(("prod-001", 1))

        checkout.create_order(basket_id, shipping_address)

        assert get_basket_service().get_basket(basket_id).items == ()

    def test_admin_is_told_about_new_order(self, place_order, sender):
        order = place_order()

        (message,) = sender.of_type(NotificationType.NEW_ORDER.value)
        assert message["recipient"] == ADMIN_ROLE
        assert message["payload"]["order_number"] == order.order_number

    def test_one_pending_payment_for_the_intent(self, place_order, gateway):
        order = place_order()

        (payment,) = _payments()
        assert payment.order_id == order.id
        assert payment.payment_intent_id == order.payment_intent_id
        assert payment.status == PaymentStatus.PENDING.value
        assert payment.amount == order.totals.total_amount
        assert gateway.calls[0]["idempotency_key"] == order.order_number
        assert gateway.calls[0]["amount_cents"] == 1500


class TestFailedCheckout:
    def test_missing_basket(self, gateway, shipping_address):
        with pytest.raises(EmptyBasketError):
            checkout.create_order("no-such-basket", shipping_address)

    def test_empty_basket(self, basket_with, gateway, shipping_address):
        basket_id = basket_with()

        with pytest.raises(EmptyBasketError):
            checkout.create_order(basket_id, shipping_address)

        assert gateway.calls == []

    def test_insufficient_stock_releases_earlier_lines(self, stocked_product, basket_with, gateway, shipping_address):
        stocked_product("prod-001", quantity=5)
        stocked_product("prod-002", quantity=1)
        basket_id = basket_with(("prod-001", 2), ("prod-002", 3))

        with pytest.raises(InsufficientStockError) as exc:
            checkout.create_order(basket_id, shipping_address)

        assert exc.value.product_id == "prod-002"
        assert ledger.available("prod-001") == 5
        assert ledger.record("prod-001").reserved == 0
        assert _orders() == []
        assert gateway.calls == []

    def test_untracked_product_has_no_stock(self, catalog, basket_with, gateway, shipping_address):
        catalog.add_product(Product(id="ghost", name="Ghost", price=1.0))
        basket_id = basket_with(("ghost", 1))

        with pytest.raises(InsufficientStockError) as exc:
            checkout.create_order(basket_id, shipping_address)
        assert exc.value.available == 0

    def test_product_removed_from_catalog_releases_stock(
        self, stocked_product, catalog, basket_with, gateway, shipping_address
    ):
        stocked_product("prod-001", quantity=5)
        basket_id = basket_with(("prod-001", 2))
        catalog.remove_product("prod-001")

        with pytest.raises(ProductUnavailableError):
            checkout.create_order(basket_id, shipping_address)

        assert ledger.available("prod-001") == 5
        assert _orders() == []

    def test_gateway_refusal_releases_stock(self, stocked_product, basket_with, gateway, shipping_address):
        stocked_product("prod-001", quantity=5)
        basket_id = basket_with(("prod-001", 2))
        gateway.configure(should_succeed=False, failure_reason="Card declined")

        with pytest.raises(PaymentSetupError) as exc:
            checkout.create_order(basket_id, shipping_address)

        assert exc.value.reason == "Card declined"
        assert ledger.available("prod-001") == 5
        assert _orders() == []
        assert _payments() == []

    def test_gateway_timeout_releases_stock(
        self, stocked_product, basket_with, gateway, shipping_address, monkeypatch
    ):
        monkeypatch.setitem(current_domain.config["custom"], "gateway_timeout_seconds", 0.1)
        stocked_product("prod-001", quantity=5)
        basket_id = basket_with(("prod-001", 1))
        gateway.configure(should_succeed=True, delay_seconds=1.0)

        with pytest.raises(PaymentSetupError):
            checkout.create_order(basket_id, shipping_address)

        assert ledger.available("prod-001") == 5
        assert _orders() == []

    def test_failed_checkout_keeps_basket(self, stocked_product, basket_with, gateway, shipping_address):
        stocked_product("prod-001", quantity=5)
        basket_id = basket_with(("prod-001", 1))
        gateway.configure(should_succeed=False)

        with pytest.raises(PaymentSetupError):
            checkout.create_order(basket_id, shipping_address)

        assert len(get_basket_service().get_basket(basket_id).items) == 1


class TestRetryPayment:
    def test_retry_replaces_the_intent(self, place_order, gateway):
        order = place_order()
        first_intent = order.payment_intent_id

        result = checkout.retry_payment(order.id)

        assert result.order.payment_intent_id != first_intent
        assert gateway.calls[-1]["idempotency_key"] == f"{order.order_number}-2"
        statuses = {p.payment_intent_id: p.status for p in _payments()}
        assert statuses == {
            first_intent: PaymentStatus.CANCELLED.value,
            result.order.payment_intent_id: PaymentStatus.PENDING.value,
        }

    def test_retry_refused_for_cancelled_order(self, place_order):
        order = place_order()
        state_machine.transition(order.id, OrderStatus.CANCELLED)

        with pytest.raises(ValidationError):
            checkout.retry_payment(order.id)
