"""Order status transitions — command, handler and inventory side effects.

The handler runs in one unit of work: the stock records it commits or
releases are saved together with the order, so a failing side effect (an
expired reservation, say) leaves both the order and the stock untouched.
"""

from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.exceptions import ConcurrencyConflictError
from storefront.inventory.stock import StockRecord
from storefront.order.order import (
    COMMITTING_STATES,
    RELEASING_STATES,
    SYSTEM_ACTOR,
    Order,
    OrderStatus,
    ReservationState,
)


@storefront.command(part_of="Order")
class TransitionOrder:
    order_id = Identifier(required=True)
    to_status = String(required=True, choices=OrderStatus)
    updated_by = String(max_length=255, default=SYSTEM_ACTOR)
    actor_id = Identifier()
    notes = Text()
    tracking_number = String(max_length=255)
    expected_revision = Integer()


def check_order_revision(order, expected_revision):
    if expected_revision is not None and order.revision != expected_revision:
        raise ConcurrencyConflictError("Order", order.id, expected_revision, order.revision)


def lock_held_records(order, records: dict) -> dict:
    """Load the stock records behind the order's held reservations into ``records``.

    Rows are locked in key order so concurrent units of work on overlapping
    records queue instead of deadlocking.
    """
    stock_repo = current_domain.repository_for(StockRecord)
    for key in sorted({str(link.stock_key) for link in order.held_reservations()}):
        if key not in records:
            records[key] = stock_repo.get_for_update(key)
    return records


def apply_stock_side_effects(order, target: OrderStatus, records: dict):
    """Commit or release the order's held reservations for ``target``.

    Loaded stock records are collected in ``records`` (keyed by stock key)
    so the caller can save them in the same unit of work.
    """
    if target not in COMMITTING_STATES and target not in RELEASING_STATES:
        return

    lock_held_records(order, records)
    for link in order.held_reservations():
        record = records[str(link.stock_key)]

        if target in COMMITTING_STATES:
            record.commit(link.reservation_id)
            order.mark_reservation(link.reservation_id, ReservationState.COMMITTED)
        else:
            record.release(link.reservation_id, reason="cancelled")
            order.mark_reservation(link.reservation_id, ReservationState.RELEASED)


def transition_with_side_effects(
    order,
    target: OrderStatus,
    records: dict,
    updated_by=SYSTEM_ACTOR,
    actor_id=None,
    notes=None,
    tracking_number=None,
):
    """Validate the edge, apply stock side effects, then move the order."""
    order.assert_can_transition(target)
    apply_stock_side_effects(order, target, records)
    return order.transition_to(
        target,
        updated_by=updated_by,
        actor_id=actor_id,
        notes=notes,
        tracking_number=tracking_number,
    )


@storefront.command_handler(part_of=Order)
class OrderTransitionHandler:
    @handle(TransitionOrder)
    def transition_order(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_update(command.order_id)
        check_order_revision(order, command.expected_revision)

        records = {}
        entry = transition_with_side_effects(
            order,
            OrderStatus(command.to_status),
            records,
            updated_by=command.updated_by,
            actor_id=command.actor_id,
            notes=command.notes,
            tracking_number=command.tracking_number,
        )

        stock_repo = current_domain.repository_for(StockRecord)
        for record in records.values():
            stock_repo.add(record)
        repo.add(order)
        return entry
