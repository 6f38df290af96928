"""Checkout orchestrator — turns a basket into a Pending order with a payment intent.

Flow:
    1. Load the basket (EmptyBasketError when missing or empty)
    2. Reserve every line through the inventory ledger; each reservation is
       committed on its own before any external call
    3. Snapshot the lines at live catalog prices and price the order
    4. Request a payment intent, bounded by ``gateway_timeout_seconds``
    5. Persist order, initial history and Pending payment in one unit of work
    6. Clear the basket and tell the back office about the new order

Any failure in steps 2-5 releases the reservations already taken, so an
order exists with its payment intent or not at all.
"""

import json
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4

import structlog
from protean.exceptions import ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.basket import get_basket_service
from storefront.catalogue import get_catalog
from storefront.checkout.placement import PAYABLE_STATES, AttachPaymentIntent, PlaceOrder, build_order
from storefront.checkout.pricing import pricing_from_settings
from storefront.concurrency import order_locks
from storefront.exceptions import EmptyBasketError, InsufficientStockError, PaymentSetupError
from storefront.gateway import get_gateway
from storefront.inventory.ledger import ledger
from storefront.inventory.stock import stock_key
from storefront.notifications import notify_safely
from storefront.notifications.port import ADMIN_ROLE, NotificationType
from storefront.order.order import Order, OrderStatus, snapshot_lines
from storefront.payment.payment import Payment, PaymentStatus
from storefront.settings import reservation_ttl, setting

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    """A placed order and the secret the client confirms its payment with."""

    order: Order
    client_secret: str | None


def generate_order_number(as_of: datetime | None = None) -> str:
    as_of = as_of or datetime.now(UTC)
    return f"ORD-{as_of:%Y%m%d}-{uuid4().hex[:8].upper()}"


class CheckoutOrchestrator:
    def create_order(self, basket_id, shipping_address: dict, billing_address: dict | None = None) -> CheckoutResult:
        baskets = get_basket_service()
        basket = baskets.get_basket(basket_id)
        if basket is None or not basket.items:
            raise EmptyBasketError(basket_id)

        order_id = str(uuid4())
        order_number = generate_order_number()
        log = logger.bind(order_id=order_id, order_number=order_number, basket_id=str(basket_id))

        links = self._reserve_all(basket.items, order_id)
        try:
            items = snapshot_lines(basket.items, get_catalog())
            draft = build_order(
                order_id=order_id,
                order_number=order_number,
                items=items,
                tax_amount=0.0,
                shipping_cost=0.0,
                shipping_address=shipping_address,
                billing_address=billing_address,
                user_id=basket.buyer_id,
                buyer_email=basket.buyer_email,
                currency=setting("currency"),
            )
            charges = pricing_from_settings().charges(draft.totals.subtotal, draft.requires_shipping)
            draft.apply_charges(charges.tax_amount, charges.shipping_cost)
            totals = draft.totals

            intent = self._request_intent(
                amount=totals.total_amount,
                currency=totals.currency,
                idempotency_key=order_number,
                metadata={"order_id": order_id, "order_number": order_number},
            )

            current_domain.process(
                PlaceOrder(
                    order_id=order_id,
                    order_number=order_number,
                    user_id=basket.buyer_id,
                    buyer_email=basket.buyer_email,
                    currency=totals.currency,
                    shipping_address=json.dumps(shipping_address),
                    billing_address=json.dumps(billing_address) if billing_address else None,
                    items=json.dumps(items),
                    reservations=json.dumps(links),
                    tax_amount=totals.tax_amount,
                    shipping_cost=totals.shipping_cost,
                    total_amount=totals.total_amount,
                    payment_intent_id=intent.payment_intent_id,
                ),
                asynchronous=False,
            )
        except Exception:
            log.warning("Checkout failed, releasing reservations", reservations=len(links))
            self._release_all(links)
            raise

        log.info("Order placed", total_amount=totals.total_amount, payment_intent_id=intent.payment_intent_id)

        try:
            baskets.clear(basket_id)
        except (ValidationError, ObjectNotFoundError):
            log.warning("Basket could not be cleared after checkout", exc_info=True)

        notify_safely(
            ADMIN_ROLE,
            NotificationType.NEW_ORDER,
            {
                "order_id": order_id,
                "order_number": order_number,
                "total_amount": totals.total_amount,
                "currency": totals.currency,
                "buyer_email": basket.buyer_email,
            },
        )

        order = current_domain.repository_for(Order).get(order_id)
        return CheckoutResult(order=order, client_secret=intent.client_secret)

    def retry_payment(self, order_id) -> CheckoutResult:
        """Open a fresh payment intent for an unpaid Pending or Confirmed order."""
        order = current_domain.repository_for(Order).get(order_id)
        if OrderStatus(order.status) not in PAYABLE_STATES:
            raise ValidationError({"status": [f"Cannot take payment for an order in {order.status} state"]})
        if order.payment_status == PaymentStatus.SUCCEEDED.value:
            raise ValidationError({"payment_status": ["Order is already paid"]})

        attempt = len(current_domain.repository_for(Payment).for_order(order.id)) + 1
        intent = self._request_intent(
            amount=order.totals.total_amount,
            currency=order.totals.currency,
            idempotency_key=f"{order.order_number}-{attempt}",
            metadata={"order_id": str(order.id), "order_number": order.order_number, "attempt": attempt},
        )

        with order_locks.holding(str(order.id)):
            current_domain.process(
                AttachPaymentIntent(order_id=order.id, payment_intent_id=intent.payment_intent_id),
                asynchronous=False,
            )

        logger.info("Payment intent replaced", order_id=str(order.id), payment_intent_id=intent.payment_intent_id)
        return CheckoutResult(order=current_domain.repository_for(Order).get(order.id), client_secret=intent.client_secret)

    # -------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------
    def _reserve_all(self, lines, order_id) -> list[dict]:
        links = []
        ttl = reservation_ttl()
        try:
            for line in lines:
                try:
                    reservation_id = ledger.reserve(line.product_id, line.variant_id, line.quantity, order_id, ttl=ttl)
                except ObjectNotFoundError as exc:
                    raise InsufficientStockError(line.product_id, line.variant_id, line.quantity, 0) from exc
                links.append(
                    {
                        "stock_key": stock_key(line.product_id, line.variant_id),
                        "reservation_id": reservation_id,
                        "product_id": line.product_id,
                        "variant_id": line.variant_id,
                        "quantity": line.quantity,
                    }
                )
        except Exception:
            self._release_all(links)
            raise
        return links

    def _release_all(self, links) -> None:
        for link in links:
            ledger.release(link["reservation_id"], reason="checkout_failed")

    def _request_intent(self, amount, currency, idempotency_key, metadata):
        gateway = get_gateway()
        timeout = setting("gateway_timeout_seconds")
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gateway")
        try:
            future = executor.submit(gateway.create_intent, amount, currency, idempotency_key, metadata)
            result = future.result(timeout=timeout)
        except FuturesTimeoutError as exc:
            logger.warning("Payment gateway timed out", idempotency_key=idempotency_key, timeout=timeout)
            raise PaymentSetupError("payment provider timed out") from exc
        except Exception as exc:
            logger.warning("Payment gateway call failed", idempotency_key=idempotency_key, exc_info=True)
            raise PaymentSetupError("payment provider unavailable") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        if not result.success:
            logger.info("Payment intent refused", idempotency_key=idempotency_key, reason=result.failure_reason)
            raise PaymentSetupError(result.failure_reason or "payment intent refused")
        return result


checkout = CheckoutOrchestrator()
