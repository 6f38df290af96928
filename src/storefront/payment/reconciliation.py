"""Payment reconciliation — apply gateway outcomes to payments, orders and stock.

Each gateway outcome is one command processed in one unit of work that saves
the payment, the order and any stock records it touched together. The
``PaymentReconciliation`` facade serializes the work per order and per stock
key, then performs the best-effort follow-ups (customer notifications,
digital download grants, auto-advancing digital-only orders) after the unit
of work has committed.

Redelivered webhooks are harmless: a payment already marked Succeeded is not
processed again.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

import structlog
from protean import handle
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.fields import Float, String, Text
from protean.utils.globals import current_domain

from storefront.concurrency import order_locks, stock_locks
from storefront.delivery import get_delivery
from storefront.domain import storefront
from storefront.exceptions import InsufficientStockError
from storefront.gateway.port import GatewayEvent, GatewayEventType
from storefront.inventory.ledger import alert_if_low
from storefront.inventory.stock import StockRecord
from storefront.notifications import notify_safely
from storefront.notifications.port import ADMIN_ROLE, NotificationType
from storefront.order.order import ONE_CENT, Order, OrderStatus, is_terminal
from storefront.order.state_machine import notify_status_change, order_recipient, state_machine
from storefront.order.transition import lock_held_records, transition_with_side_effects
from storefront.payment.payment import SETTLED_STATES, Payment, PaymentStatus
from storefront.settings import reservation_ttl, setting
from storefront.utils.logging import log_context

logger = structlog.get_logger(__name__)


@storefront.command(part_of="Payment")
class RecordPaymentSuccess:
    payment_intent_id = String(required=True, max_length=255)
    charge_id = String(max_length=255)
    amount = Float()


@storefront.command(part_of="Payment")
class RecordPaymentFailure:
    payment_intent_id = String(required=True, max_length=255)
    reason = Text()


@storefront.command(part_of="Payment")
class RecordRefund:
    payment_intent_id = String(required=True, max_length=255)
    amount = Float(required=True)


@dataclass
class ReconciliationOutcome:
    order_id: str
    payment_id: str
    payment_status: str
    already_processed: bool = False
    order_closed: bool = False
    stock_shortfall: list[str] = field(default_factory=list)
    transitions: list = field(default_factory=list)
    stock_keys: list[str] = field(default_factory=list)


def _payment_for_intent(payment_intent_id) -> Payment:
    payment = current_domain.repository_for(Payment).find_by_intent(payment_intent_id)
    if payment is None:
        raise ObjectNotFoundError({"payment_intent_id": [f"No payment for intent {payment_intent_id}"]})
    return payment


def _lock_order_and_payment(payment_intent_id):
    """Lock the order behind an intent, then read its payment under that lock."""
    order_id = _payment_for_intent(payment_intent_id).order_id
    order = current_domain.repository_for(Order).get_for_update(order_id)
    return order, _payment_for_intent(payment_intent_id)


def _order_is_settled(order) -> bool:
    return PaymentStatus(order.payment_status) in SETTLED_STATES


def renew_lapsed_reservations(order, records: dict, as_of: datetime) -> list[str]:
    """Re-reserve held stock whose reservation expired before payment arrived.

    Returns the stock keys that could not be re-reserved. Those links stay
    as they are; the rest point at fresh reservations.
    """
    lock_held_records(order, records)
    shortfall = []
    for link in order.held_reservations():
        key = str(link.stock_key)
        record = records[key]

        reservation = record.reservation(link.reservation_id)
        if reservation.is_active(as_of):
            continue

        if not reservation.is_released:
            record.release(reservation.id, reason="expired", as_of=as_of)
        try:
            new_id = record.reserve(order.id, link.quantity, reservation_ttl(), as_of=as_of)
        except InsufficientStockError:
            shortfall.append(key)
            continue
        order.replace_reservation(link.reservation_id, new_id)
    return shortfall


@storefront.command_handler(part_of=Payment)
class PaymentReconciliationHandler:
    @handle(RecordPaymentSuccess)
    def record_success(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        order, payment = _lock_order_and_payment(command.payment_intent_id)

        outcome = ReconciliationOutcome(
            order_id=str(order.id), payment_id=str(payment.id), payment_status=payment.status
        )
        if payment.is_settled:
            outcome.already_processed = True
            return outcome

        if command.amount is not None and abs(command.amount - payment.amount) > ONE_CENT:
            logger.warning(
                "Captured amount differs from payment amount",
                payment_id=str(payment.id),
                expected=payment.amount,
                captured=command.amount,
            )

        payment.mark_succeeded(charge_id=command.charge_id)
        outcome.payment_status = payment.status
        payment_repo.add(payment)

        if _order_is_settled(order):
            # Another payment already settled this order
            logger.warning("Duplicate payment for settled order", order_id=str(order.id), payment_id=str(payment.id))
            outcome.already_processed = True
            return outcome

        order.set_payment_status(PaymentStatus.SUCCEEDED, payment_intent_id=payment.payment_intent_id)
        status = OrderStatus(order.status)
        if is_terminal(status):
            logger.warning("Payment received for closed order", order_id=str(order.id), status=order.status)
            outcome.order_closed = True
            order_repo.add(order)
            return outcome

        records = {}
        if status in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
            outcome.stock_shortfall = renew_lapsed_reservations(order, records, datetime.now(UTC))
            if not outcome.stock_shortfall:
                if status == OrderStatus.PENDING:
                    outcome.transitions.append(
                        transition_with_side_effects(order, OrderStatus.CONFIRMED, records, notes="Payment confirmed")
                    )
                outcome.transitions.append(
                    transition_with_side_effects(order, OrderStatus.PAYMENT_RECEIVED, records, notes="Payment received")
                )

        stock_repo = current_domain.repository_for(StockRecord)
        for record in records.values():
            stock_repo.add(record)
        order_repo.add(order)
        outcome.stock_keys = list(records)
        return outcome

    @handle(RecordPaymentFailure)
    def record_failure(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        order, payment = _lock_order_and_payment(command.payment_intent_id)

        outcome = ReconciliationOutcome(
            order_id=str(order.id), payment_id=str(payment.id), payment_status=payment.status
        )
        reason = command.reason or "Payment failed"
        if not payment.mark_failed(reason):
            outcome.already_processed = True
            return outcome

        outcome.payment_status = payment.status
        payment_repo.add(payment)

        # Only the payment that currently speaks for the order changes its status
        if order.payment_intent_id == payment.payment_intent_id and not _order_is_settled(order):
            order.set_payment_status(PaymentStatus.FAILED, failure_reason=reason)
            order_repo.add(order)
        return outcome

    @handle(RecordRefund)
    def record_refund(self, command):
        payment_repo = current_domain.repository_for(Payment)
        order_repo = current_domain.repository_for(Order)
        order, payment = _lock_order_and_payment(command.payment_intent_id)

        payment.refund(command.amount)
        payment_repo.add(payment)

        if order.payment_intent_id == payment.payment_intent_id:
            order.set_payment_status(PaymentStatus(payment.status))
            order_repo.add(order)

        return ReconciliationOutcome(order_id=str(order.id), payment_id=str(payment.id), payment_status=payment.status)


class PaymentReconciliation:
    def on_payment_succeeded(self, payment_intent_id, charge_id=None, amount=None) -> ReconciliationOutcome:
        command = RecordPaymentSuccess(payment_intent_id=payment_intent_id, charge_id=charge_id, amount=amount)
        outcome = self._process_locked(payment_intent_id, command, with_stock=True)
        log = logger.bind(order_id=outcome.order_id, payment_intent_id=payment_intent_id)

        if outcome.already_processed:
            log.info("Payment success already recorded")
            return outcome

        log.info("Payment succeeded", transitions=len(outcome.transitions))
        order = current_domain.repository_for(Order).get(outcome.order_id)
        for entry in outcome.transitions:
            notify_status_change(order, entry)

        stock_repo = current_domain.repository_for(StockRecord)
        for key in outcome.stock_keys:
            alert_if_low(stock_repo.get(key))

        if outcome.stock_shortfall:
            log.warning("Paid order could not renew its stock", stock_keys=outcome.stock_shortfall)
            notify_safely(
                ADMIN_ROLE,
                NotificationType.INVENTORY_ALERT,
                {
                    "order_id": outcome.order_id,
                    "order_number": order.order_number,
                    "stock_keys": outcome.stock_shortfall,
                    "message": "Payment received but reserved stock expired and could not be renewed",
                },
            )
            return outcome

        if outcome.order_closed:
            return outcome

        if order.contains_digital_products:
            self._grant_downloads(order)
            if order.is_digital_only and setting("digital_auto_advance"):
                self._auto_advance(order)
        return outcome

    def on_payment_failed(self, payment_intent_id, reason=None) -> ReconciliationOutcome:
        command = RecordPaymentFailure(payment_intent_id=payment_intent_id, reason=reason)
        outcome = self._process_locked(payment_intent_id, command)
        if outcome.already_processed:
            return outcome

        logger.info("Payment failed", order_id=outcome.order_id, payment_intent_id=payment_intent_id, reason=reason)
        order = current_domain.repository_for(Order).get(outcome.order_id)
        notify_safely(
            order_recipient(order),
            NotificationType.PAYMENT_FAILED,
            {"order_id": str(order.id), "order_number": order.order_number, "reason": reason},
        )
        return outcome

    def on_refund(self, payment_intent_id, amount) -> ReconciliationOutcome:
        outcome = self._process_locked(payment_intent_id, RecordRefund(payment_intent_id=payment_intent_id, amount=amount))
        logger.info(
            "Refund recorded",
            order_id=outcome.order_id,
            payment_intent_id=payment_intent_id,
            amount=amount,
            payment_status=outcome.payment_status,
        )
        return outcome

    def handle_webhook(self, event: GatewayEvent) -> ReconciliationOutcome | None:
        with log_context(payment_intent_id=event.payment_intent_id, gateway_event=event.provider_event_type):
            if event.type == GatewayEventType.SUCCEEDED:
                return self.on_payment_succeeded(event.payment_intent_id, charge_id=event.charge_id, amount=event.amount)
            if event.type == GatewayEventType.FAILED:
                return self.on_payment_failed(event.payment_intent_id, reason=event.failure_reason)
            if event.type == GatewayEventType.REFUNDED:
                return self.on_refund(event.payment_intent_id, event.amount)

            logger.debug("Ignoring gateway event")
            return None

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def _process_locked(self, payment_intent_id, command, with_stock=False) -> ReconciliationOutcome:
        order_id = str(_payment_for_intent(payment_intent_id).order_id)
        with order_locks.holding(order_id):
            keys = []
            if with_stock:
                order = current_domain.repository_for(Order).get(order_id)
                keys = [str(link.stock_key) for link in order.held_reservations()]
            with stock_locks.holding(*keys):
                return current_domain.process(command, asynchronous=False)

    def _grant_downloads(self, order) -> None:
        delivery = get_delivery()
        granted = []
        for item in order.ordered_items():
            if not item.is_digital:
                continue
            try:
                granted.append(
                    delivery.grant_download(
                        order_id=str(order.id),
                        order_item_id=str(item.id),
                        user_id=str(order.user_id) if order.user_id else None,
                        file_ref=item.digital_file_url,
                        product_name=item.product_name,
                    )
                )
            except (ValidationError, InvalidOperationError):
                logger.warning("Digital download grant failed", order_id=str(order.id), item_id=str(item.id), exc_info=True)

        if granted:
            notify_safely(
                order_recipient(order),
                NotificationType.DOWNLOADS_READY,
                {"order_id": str(order.id), "order_number": order.order_number, "download_ids": granted},
            )

    def _auto_advance(self, order) -> None:
        for target in (OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            try:
                state_machine.transition(order.id, target, notes="Digital order fulfilled automatically")
            except (ValidationError, InvalidOperationError):
                logger.warning("Digital order auto-advance stopped", order_id=str(order.id), target=target.value, exc_info=True)
                return


reconciliation = PaymentReconciliation()
