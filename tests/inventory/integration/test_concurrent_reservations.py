"""Concurrent reservations on one stock record never oversell."""

import threading

from storefront.domain import storefront
from storefront.exceptions import InsufficientStockError
from storefront.inventory.ledger import ledger


def _race(product_id, buyers, quantity=1):
    barrier = threading.Barrier(buyers)
    results = []
    guard = threading.Lock()

    def buy(order_id):
        with storefront.domain_context():
            barrier.wait()
            try:
                outcome = ledger.reserve(product_id, None, quantity, order_id)
            except InsufficientStockError as exc:
                outcome = exc
        with guard:
            results.append(outcome)

    threads = [threading.Thread(target=buy, args=(f"order-{i}",)) for i in range(buyers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)
    return results


class TestConcurrentReservations:
    def test_two_buyers_for_the_last_unit(self):
        ledger.initialize("prod-last", quantity=1)

        results = _race("prod-last", buyers=2)

        succeeded = [r for r in results if isinstance(r, str)]
        failed = [r for r in results if isinstance(r, InsufficientStockError)]
        assert len(succeeded) == 1
        assert len(failed) == 1
        assert ledger.available("prod-last") == 0

    def test_many_buyers_never_exceed_stock(self):
        ledger.initialize("prod-many", quantity=5)

        results = _race("prod-many", buyers=12)

        succeeded = [r for r in results if isinstance(r, str)]
        assert len(succeeded) == 5
        record = ledger.record("prod-many")
        assert record.available() == 0
        assert record.reserved == 5
