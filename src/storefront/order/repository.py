"""Repository for the Order aggregate."""

from storefront.domain import storefront
from storefront.order.order import Order
from storefront.utils.db import lock_row


@storefront.repository(part_of=Order)
class OrderRepository:
    def get_for_update(self, order_id) -> Order:
        lock_row(self._dao, order_id)
        return self.get(order_id)

    def find_by_number(self, order_number: str) -> Order | None:
        results = self._dao.query.filter(order_number=order_number).all().items
        return results[0] if results else None

    def find_by_payment_intent(self, payment_intent_id: str) -> Order | None:
        results = self._dao.query.filter(payment_intent_id=payment_intent_id).all().items
        return results[0] if results else None

    def for_user(self, user_id: str) -> list[Order]:
        """A user's orders, newest first."""
        orders = self._dao.query.filter(user_id=str(user_id)).all().items
        return sorted(orders, key=lambda o: o.order_date, reverse=True)
