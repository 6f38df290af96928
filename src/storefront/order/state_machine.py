"""Order state machine — serialized, all-or-nothing status changes.

Every transition on an order runs under that order's lock and under the
locks of the stock records its held reservations live on, so a transition
never interleaves with a reservation on the same stock. The customer is
notified after the unit of work commits; notification failures are logged
and do not undo the transition.
"""

from dataclasses import dataclass

import structlog
from protean.exceptions import InvalidOperationError, ObjectNotFoundError, ValidationError
from protean.utils.globals import current_domain

from storefront.concurrency import order_locks, retry_on_conflict, stock_locks
from storefront.exceptions import InvalidTransitionError
from storefront.inventory.ledger import alert_if_low
from storefront.inventory.stock import StockRecord
from storefront.notifications import notify_safely
from storefront.notifications.port import NotificationType
from storefront.order.annotations import UpdateOrderNotes, UpdateOrderTracking
from storefront.order.order import (
    CUSTOMER_CANCELLABLE_STATES,
    SYSTEM_ACTOR,
    Order,
    OrderStatus,
    OrderStatusHistory,
)
from storefront.order.transition import TransitionOrder
from storefront.utils.logging import log_context

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class BulkTransitionResult:
    order_id: str
    succeeded: bool
    error: str | None = None


def order_recipient(order) -> str | None:
    return str(order.user_id) if order.user_id else order.buyer_email


def notify_status_change(order, entry) -> None:
    notify_safely(
        order_recipient(order),
        NotificationType.ORDER_STATUS_UPDATED,
        {
            "order_id": str(order.id),
            "order_number": order.order_number,
            "from_status": entry.from_status,
            "to_status": entry.to_status,
            "tracking_number": entry.tracking_number,
            "customer_name": order.shipping_address.first_name if order.shipping_address else None,
        },
    )


class OrderStateMachine:
    def transition(
        self,
        order_id,
        to_status,
        updated_by=SYSTEM_ACTOR,
        actor_id=None,
        notes=None,
        tracking_number=None,
        expected_revision=None,
    ) -> OrderStatusHistory:
        """Move an order to ``to_status``.

        With ``expected_revision`` the caller's view of the order must still
        be current, otherwise ``ConcurrencyConflictError`` is raised. Without
        it, conflicts with other writers are retried against fresh state.
        """
        with log_context(order_id=order_id):
            target = OrderStatus(to_status)
            repo = current_domain.repository_for(Order)

            def attempt():
                with order_locks.holding(str(order_id)):
                    order = repo.get(order_id)
                    keys = [str(link.stock_key) for link in order.held_reservations()]
                    with stock_locks.holding(*keys):
                        entry = current_domain.process(
                            TransitionOrder(
                                order_id=order_id,
                                to_status=target.value,
                                updated_by=updated_by,
                                actor_id=actor_id,
                                notes=notes,
                                tracking_number=tracking_number,
                                expected_revision=order.revision if expected_revision is None else expected_revision,
                            ),
                            asynchronous=False,
                        )
                return entry, keys

            if expected_revision is None:
                entry, keys = retry_on_conflict(attempt)
            else:
                entry, keys = attempt()

            logger.info(
                "Order status changed",
                from_status=entry.from_status,
                to_status=entry.to_status,
                updated_by=entry.updated_by,
            )

            order = repo.get(order_id)
            notify_status_change(order, entry)
            stock_repo = current_domain.repository_for(StockRecord)
            for key in keys:
                alert_if_low(stock_repo.get(key))
            return entry

    def cancel_by_customer(self, order_id, user_id) -> OrderStatusHistory:
        """Customers may cancel their own orders while Pending or Confirmed."""
        order = current_domain.repository_for(Order).get(order_id)
        if str(order.user_id) != str(user_id):
            raise ObjectNotFoundError({"order_id": [f"Order {order_id} not found"]})

        current = OrderStatus(order.status)
        if current not in CUSTOMER_CANCELLABLE_STATES:
            raise InvalidTransitionError(current.value, OrderStatus.CANCELLED.value)

        return self.transition(
            order_id,
            OrderStatus.CANCELLED,
            updated_by=str(user_id),
            actor_id=user_id,
            notes="Cancelled by customer",
            expected_revision=order.revision,
        )

    def bulk_transition(self, order_ids, to_status, updated_by="Admin", actor_id=None) -> list[BulkTransitionResult]:
        """Transition each order independently; one failure does not stop the rest."""
        results = []
        for order_id in order_ids:
            try:
                self.transition(
                    order_id,
                    to_status,
                    updated_by=updated_by,
                    actor_id=actor_id,
                    notes="Bulk status update",
                )
            except (ValidationError, InvalidOperationError, ObjectNotFoundError) as exc:
                results.append(BulkTransitionResult(order_id=str(order_id), succeeded=False, error=_first_message(exc)))
            else:
                results.append(BulkTransitionResult(order_id=str(order_id), succeeded=True))
        return results

    def update_tracking(self, order_id, tracking_number, updated_by=SYSTEM_ACTOR, notes=None, expected_revision=None):
        with order_locks.holding(str(order_id)):
            current_domain.process(
                UpdateOrderTracking(
                    order_id=order_id,
                    tracking_number=tracking_number,
                    notes=notes,
                    updated_by=updated_by,
                    expected_revision=expected_revision,
                ),
                asynchronous=False,
            )

    def update_notes(self, order_id, notes, updated_by=SYSTEM_ACTOR, expected_revision=None):
        with order_locks.holding(str(order_id)):
            current_domain.process(
                UpdateOrderNotes(
                    order_id=order_id,
                    notes=notes,
                    updated_by=updated_by,
                    expected_revision=expected_revision,
                ),
                asynchronous=False,
            )

    def history(self, order_id, newest_first=True) -> list[OrderStatusHistory]:
        entries = current_domain.repository_for(Order).get(order_id).history()
        return list(reversed(entries)) if newest_first else entries


def _first_message(exc) -> str:
    messages = getattr(exc, "messages", None)
    if isinstance(messages, dict):
        for values in messages.values():
            if values:
                return values[0] if isinstance(values, list) else str(values)
    return str(exc)


state_machine = OrderStateMachine()
