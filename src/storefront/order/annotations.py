"""Back-office annotations — tracking number and notes updates.

These do not change the order's status and are not recorded in its status
history.
"""

from protean import handle
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.order.order import SYSTEM_ACTOR, Order
from storefront.order.transition import check_order_revision


@storefront.command(part_of="Order")
class UpdateOrderTracking:
    order_id = Identifier(required=True)
    tracking_number = String(required=True, max_length=255)
    notes = Text()
    updated_by = String(max_length=255, default=SYSTEM_ACTOR)
    expected_revision = Integer()


@storefront.command(part_of="Order")
class UpdateOrderNotes:
    order_id = Identifier(required=True)
    notes = Text()
    updated_by = String(max_length=255, default=SYSTEM_ACTOR)
    expected_revision = Integer()


@storefront.command_handler(part_of=Order)
class OrderAnnotationHandler:
    @handle(UpdateOrderTracking)
    def update_tracking(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_update(command.order_id)
        check_order_revision(order, command.expected_revision)
        order.update_tracking(command.tracking_number, updated_by=command.updated_by, notes=command.notes)
        repo.add(order)

    @handle(UpdateOrderNotes)
    def update_notes(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get_for_update(command.order_id)
        check_order_revision(order, command.expected_revision)
        order.update_notes(command.notes, updated_by=command.updated_by)
        repo.add(order)
