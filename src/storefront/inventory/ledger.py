"""Inventory ledger — race-free reservation API over StockRecord commands.

The ledger is what checkout and maintenance code talk to. For every call it
takes the stock record's lock, reads the current revision, and processes the
command in its own unit of work, so the lock is released (and the write is
visible) before the caller goes on to any slow external call.
"""

from datetime import timedelta

import structlog
from protean.utils.globals import current_domain

from storefront.concurrency import retry_on_conflict, stock_locks
from storefront.inventory.initialization import InitializeStock, ReceiveStock
from storefront.inventory.reservation import (
    CommitReservation,
    ExpireReservations,
    ReleaseReservation,
    ReserveStock,
)
from storefront.inventory.stock import Reservation, StockRecord, stock_key
from storefront.notifications import notify_safely
from storefront.notifications.port import ADMIN_ROLE, NotificationType

logger = structlog.get_logger(__name__)


class InventoryLedger:
    def __init__(self, locks=stock_locks):
        self._locks = locks

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def record(self, product_id, variant_id=None) -> StockRecord:
        return current_domain.repository_for(StockRecord).get(stock_key(product_id, variant_id))

    def available(self, product_id, variant_id=None) -> int:
        return self.record(product_id, variant_id).available()

    def locate(self, reservation_id) -> str:
        """Stock key of the record holding ``reservation_id``."""
        reservation = current_domain.repository_for(Reservation)._dao.get(str(reservation_id))
        return str(reservation.stock_key)

    # -------------------------------------------------------------------
    # Stock levels
    # -------------------------------------------------------------------
    def initialize(self, product_id, variant_id=None, quantity=0, low_stock_threshold=None) -> str:
        return current_domain.process(
            InitializeStock(
                product_id=product_id,
                variant_id=variant_id,
                quantity=quantity,
                low_stock_threshold=low_stock_threshold,
            ),
            asynchronous=False,
        )

    def receive(self, product_id, variant_id=None, quantity=0, reference=None) -> int:
        key = stock_key(product_id, variant_id)
        with self._locks.holding(key):
            on_hand = current_domain.process(
                ReceiveStock(stock_key=key, quantity=quantity, reference=reference),
                asynchronous=False,
            )
        logger.info("Stock received", stock_key=key, quantity=quantity, on_hand=on_hand)
        return on_hand

    # -------------------------------------------------------------------
    # Reservations
    # -------------------------------------------------------------------
    def reserve(self, product_id, variant_id, quantity, order_id, ttl: timedelta | None = None) -> str:
        """Reserve stock, returning the reservation id.

        Raises ``InsufficientStockError`` without side effects when the
        record cannot cover ``quantity``.
        """
        key = stock_key(product_id, variant_id)

        def attempt():
            with self._locks.holding(key):
                record = current_domain.repository_for(StockRecord).get(key)
                return current_domain.process(
                    ReserveStock(
                        stock_key=key,
                        order_id=order_id,
                        quantity=quantity,
                        ttl_seconds=int(ttl.total_seconds()) if ttl else None,
                        expected_revision=record.revision,
                    ),
                    asynchronous=False,
                )

        reservation_id = retry_on_conflict(attempt)
        logger.info("Stock reserved", stock_key=key, order_id=str(order_id), quantity=quantity)
        return reservation_id

    def release(self, reservation_id, reason="released") -> bool:
        """Release a reservation. Releasing twice is a no-op."""
        key = self.locate(reservation_id)
        with self._locks.holding(key):
            released = current_domain.process(
                ReleaseReservation(stock_key=key, reservation_id=reservation_id, reason=reason),
                asynchronous=False,
            )
        if released:
            logger.info("Reservation released", stock_key=key, reservation_id=str(reservation_id), reason=reason)
        return released

    def commit(self, reservation_id) -> bool:
        """Permanently consume a reservation's stock.

        Raises ``ReservationExpiredError`` when the hold has lapsed.
        """
        key = self.locate(reservation_id)
        with self._locks.holding(key):
            committed = current_domain.process(
                CommitReservation(stock_key=key, reservation_id=reservation_id),
                asynchronous=False,
            )
            record = current_domain.repository_for(StockRecord).get(key)

        if committed:
            logger.info("Reservation committed", stock_key=key, reservation_id=str(reservation_id))
            alert_if_low(record)
        return committed

    def sweep_expired(self, as_of=None) -> int:
        """Release every lapsed reservation across all records."""
        repo = current_domain.repository_for(StockRecord)
        total = 0
        for key in repo.keys_with_unreleased_reservations():
            with self._locks.holding(key):
                total += current_domain.process(
                    ExpireReservations(stock_key=key, as_of=as_of),
                    asynchronous=False,
                )

        if total:
            logger.info("Expired reservations released", count=total)
        return total


def alert_if_low(record: StockRecord) -> None:
    if record.is_low_on_stock:
        notify_safely(
            ADMIN_ROLE,
            NotificationType.LOW_STOCK,
            {
                "product_id": str(record.product_id),
                "variant_id": str(record.variant_id) if record.variant_id else None,
                "on_hand": record.on_hand,
                "threshold": record.low_stock_threshold,
            },
        )


ledger = InventoryLedger()
