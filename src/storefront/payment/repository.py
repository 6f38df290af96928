"""Repository for the Payment aggregate."""

from storefront.domain import storefront
from storefront.payment.payment import Payment, PaymentStatus


@storefront.repository(part_of=Payment)
class PaymentRepository:
    def find_by_intent(self, payment_intent_id: str) -> Payment | None:
        results = self._dao.query.filter(payment_intent_id=payment_intent_id).all().items
        return results[0] if results else None

    def for_order(self, order_id: str) -> list[Payment]:
        """Payments of an order, oldest first."""
        payments = self._dao.query.filter(order_id=str(order_id)).all().items
        return sorted(payments, key=lambda p: p.created_at)

    def authoritative_for(self, order_id: str) -> Payment | None:
        """The payment that decides the order's payment status.

        The most recent payment that did not fail, or the most recent one
        when every attempt failed.
        """
        payments = self.for_order(order_id)
        if not payments:
            return None
        live = [p for p in payments if p.status != PaymentStatus.FAILED.value]
        return (live or payments)[-1]
