"""Stock reservation — commands and handler.

Each command is its own unit of work. Callers that need the check-and-write
to be race free go through ``InventoryLedger``, which holds the record's lock
around the command and passes the revision it read.
"""

from datetime import UTC, datetime, timedelta

from protean import handle
from protean.fields import DateTime, Identifier, Integer, String
from protean.utils.globals import current_domain

from storefront.domain import storefront
from storefront.exceptions import ConcurrencyConflictError
from storefront.inventory.stock import StockRecord
from storefront.settings import reservation_ttl


@storefront.command(part_of="StockRecord")
class ReserveStock:
    stock_key = Identifier(required=True)
    order_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    ttl_seconds = Integer(min_value=1)
    expected_revision = Integer()


@storefront.command(part_of="StockRecord")
class ReleaseReservation:
    stock_key = Identifier(required=True)
    reservation_id = Identifier(required=True)
    reason = String(max_length=50, default="released")


@storefront.command(part_of="StockRecord")
class CommitReservation:
    stock_key = Identifier(required=True)
    reservation_id = Identifier(required=True)


@storefront.command(part_of="StockRecord")
class ExpireReservations:
    stock_key = Identifier(required=True)
    as_of = DateTime()


def check_revision(record, expected_revision):
    if expected_revision is not None and record.revision != expected_revision:
        raise ConcurrencyConflictError("StockRecord", record.id, expected_revision, record.revision)


@storefront.command_handler(part_of=StockRecord)
class ReservationHandler:
    @handle(ReserveStock)
    def reserve_stock(self, command):
        repo = current_domain.repository_for(StockRecord)
        record = repo.get_for_update(command.stock_key)
        check_revision(record, command.expected_revision)

        ttl = reservation_ttl()
        if command.ttl_seconds:
            ttl = timedelta(seconds=command.ttl_seconds)

        reservation_id = record.reserve(command.order_id, command.quantity, ttl)
        repo.add(record)
        return reservation_id

    @handle(ReleaseReservation)
    def release_reservation(self, command):
        repo = current_domain.repository_for(StockRecord)
        record = repo.get_for_update(command.stock_key)
        if record.release(command.reservation_id, reason=command.reason):
            repo.add(record)
            return True
        return False

    @handle(CommitReservation)
    def commit_reservation(self, command):
        repo = current_domain.repository_for(StockRecord)
        record = repo.get_for_update(command.stock_key)
        if record.commit(command.reservation_id):
            repo.add(record)
            return True
        return False

    @handle(ExpireReservations)
    def expire_reservations(self, command):
        repo = current_domain.repository_for(StockRecord)
        record = repo.get_for_update(command.stock_key)
        count = record.expire_reservations(command.as_of or datetime.now(UTC))
        if count:
            repo.add(record)
        return count
