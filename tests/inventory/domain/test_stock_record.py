"""Tests for the StockRecord aggregate — availability, reservations and commits."""

from datetime import UTC, datetime, timedelta

import pytest
from protean import atomic_change
from protean.exceptions import ValidationError

from storefront.exceptions import InsufficientStockError, ReservationExpiredError
from storefront.inventory.events import LowStockDetected, ReservationCommitted, StockReserved
from storefront.inventory.stock import StockRecord, stock_key

TTL = timedelta(minutes=15)


def _record(quantity=5, threshold=0):
    return StockRecord.create(product_id="prod-001", quantity=quantity, low_stock_threshold=threshold)


class TestStockKey:
    def test_product_without_variant(self):
        assert stock_key("prod-001") == "prod-001:-"

    def test_product_with_variant(self):
        assert stock_key("prod-001", "var-002") == "prod-001:var-002"

    def test_record_identity_is_the_stock_key(self):
        assert _record().id == "prod-001:-"


class TestCreation:
    def test_negative_initial_quantity_rejected(self):
        with pytest.raises(ValidationError):
            StockRecord.create(product_id="prod-001", quantity=-1)

    def test_new_record_is_fully_available(self):
        record = _record(quantity=7)
        assert record.on_hand == 7
        assert record.reserved == 0
        assert record.available() == 7


class TestReserve:
    def test_reserve_reduces_availability(self):
        record = _record(quantity=5)
        record.reserve("order-1", 2, TTL)

        assert record.available() == 3
        assert record.reserved == 2
        assert record.on_hand == 5

    def test_reserve_exact_availability_succeeds(self):
        record = _record(quantity=2)
        record.reserve("order-1", 2, TTL)
        assert record.available() == 0

    def test_reserve_more_than_available_fails_without_side_effects(self):
        record = _record(quantity=2)
        record.reserve("order-1", 1, TTL)
        revision = record.revision

        with pytest.raises(InsufficientStockError) as exc:
            record.reserve("order-2", 2, TTL)

        assert exc.value.available == 1
        assert exc.value.requested == 2
        assert record.available() == 1
        assert record.revision == revision
        assert len(record.reservations) == 1

    def test_reserve_zero_quantity_rejected(self):
        with pytest.raises(ValidationError):
            _record().reserve("order-1", 0, TTL)

    def test_reservation_expiry_is_reserved_at_plus_ttl(self):
        record = _record()
        as_of = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        reservation_id = record.reserve("order-1", 1, TTL, as_of=as_of)

        reservation = record.reservation(reservation_id)
        assert reservation.expires_at == as_of + TTL

    def test_reserve_raises_stock_reserved(self):
        record = _record()
        record._events.clear()
        record.reserve("order-1", 1, TTL)
        assert isinstance(record._events[-1], StockReserved)

    def test_each_reservation_bumps_revision(self):
        record = _record()
        before = record.revision
        record.reserve("order-1", 1, TTL)
        assert record.revision == before + 1


class TestExpiry:
    def test_expired_reservation_does_not_count_against_availability(self):
        record = _record(quantity=3)
        past = datetime.now(UTC) - timedelta(hours=1)
        record.reserve("order-1", 3, TTL, as_of=past)

        assert record.available() == 3

    def test_expired_stock_can_be_reserved_again(self):
        record = _record(quantity=1)
        record.reserve("order-1", 1, TTL, as_of=datetime.now(UTC) - timedelta(hours=1))
        record.reserve("order-2", 1, TTL)
        assert record.available() == 0

    def test_expire_reservations_releases_lapsed_holds(self):
        record = _record(quantity=5)
        now = datetime.now(UTC)
        lapsed = record.reserve("order-1", 2, TTL, as_of=now - timedelta(hours=1))
        active = record.reserve("order-2", 1, TTL, as_of=now)

        assert record.expire_reservations(now) == 1
        assert record.reservation(lapsed).is_released
        assert record.reservation(lapsed).release_reason == "expired"
        assert not record.reservation(active).is_released
        assert record.reserved == 1

    def test_expire_reservations_is_idempotent(self):
        record = _record()
        now = datetime.now(UTC)
        record.reserve("order-1", 2, TTL, as_of=now - timedelta(hours=1))

        assert record.expire_reservations(now) == 1
        assert record.expire_reservations(now) == 0


class TestRelease:
    def test_release_restores_availability(self):
        record = _record(quantity=5)
        reservation_id = record.reserve("order-1", 2, TTL)

        assert record.release(reservation_id) is True
        assert record.available() == 5
        assert record.reserved == 0

    def test_release_twice_is_a_no_op(self):
        record = _record()
        reservation_id = record.reserve("order-1", 2, TTL)
        record.release(reservation_id)
        revision = record.revision

        assert record.release(reservation_id) is False
        assert record.revision == revision

    def test_release_unknown_reservation_fails(self):
        with pytest.raises(ValidationError):
            _record().release("missing")


class TestCommit:
    def test_commit_decrements_on_hand_and_releases(self):
        record = _record(quantity=5)
        reservation_id = record.reserve("order-1", 2, TTL)

        assert record.commit(reservation_id) is True

        reservation = record.reservation(reservation_id)
        assert record.on_hand == 3
        assert record.reserved == 0
        assert record.available() == 3
        assert reservation.is_released
        assert reservation.is_committed

    def test_commit_twice_is_a_no_op(self):
        record = _record(quantity=5)
        reservation_id = record.reserve("order-1", 2, TTL)
        record.commit(reservation_id)

        assert record.commit(reservation_id) is False
        assert record.on_hand == 3

    def test_commit_after_expiry_fails(self):
        record = _record(quantity=5)
        reservation_id = record.reserve("order-1", 2, TTL, as_of=datetime.now(UTC) - timedelta(hours=1))

        with pytest.raises(ReservationExpiredError):
            record.commit(reservation_id)
        assert record.on_hand == 5

    def test_commit_after_release_fails(self):
        record = _record(quantity=5)
        reservation_id = record.reserve("order-1", 2, TTL)
        record.release(reservation_id, reason="cancelled")

        with pytest.raises(ReservationExpiredError):
            record.commit(reservation_id)
        assert record.on_hand == 5

    def test_commit_raises_reservation_committed(self):
        record = _record(quantity=10, threshold=2)
        reservation_id = record.reserve("order-1", 1, TTL)
        record._events.clear()

        record.commit(reservation_id)

        assert isinstance(record._events[0], ReservationCommitted)
        assert record._events[0].new_on_hand == 9
        assert not any(isinstance(e, LowStockDetected) for e in record._events)

    def test_commit_to_threshold_raises_low_stock(self):
        record = _record(quantity=3, threshold=2)
        reservation_id = record.reserve("order-1", 1, TTL)
        record._events.clear()

        record.commit(reservation_id)

        assert record.is_low_on_stock
        assert isinstance(record._events[-1], LowStockDetected)


class TestReceive:
    def test_receive_adds_to_on_hand(self):
        record = _record(quantity=1)
        record.receive(4, reference="PO-17")
        assert record.on_hand == 5
        assert record.available() == 5

    def test_receive_requires_positive_quantity(self):
        with pytest.raises(ValidationError):
            _record().receive(0)


class TestInvariant:
    def test_active_reservations_cannot_exceed_on_hand(self):
        record = _record(quantity=2)
        record.reserve("order-1", 2, TTL)

        with pytest.raises(ValidationError):
            with atomic_change(record):
                record.on_hand = 1
