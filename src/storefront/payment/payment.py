"""Payment aggregate — one attempt to collect money for an order.

An order may accumulate several payments (retries after a failure, a new
intent after an amount change). Refunds accumulate on the payment they
reverse; ``refunded_amount`` can never exceed ``amount``.
"""

from datetime import UTC, datetime
from enum import Enum

from protean import invariant
from protean.exceptions import ValidationError
from protean.fields import DateTime, Float, Identifier, String

from storefront.domain import storefront
from storefront.exceptions import OverRefundError
from storefront.payment.events import (
    PaymentCancelled,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefunded,
    PaymentSucceeded,
)

# Amounts are compared to the nearest cent
HALF_CENT = 0.005


class PaymentStatus(Enum):
    PENDING = "Pending"
    REQUIRES_ACTION = "RequiresAction"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    PARTIALLY_REFUNDED = "PartiallyRefunded"


class PaymentMethod(Enum):
    CARD = "Card"


_REFUNDABLE = {PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED}

# Money has moved; later gateway outcomes for the same intent cannot undo it
SETTLED_STATES = {PaymentStatus.SUCCEEDED, PaymentStatus.PARTIALLY_REFUNDED, PaymentStatus.REFUNDED}

# States a late failure report leaves alone
FAILURE_IMMUNE_STATES = SETTLED_STATES | {PaymentStatus.FAILED, PaymentStatus.CANCELLED}


@storefront.aggregate
class Payment:
    order_id = Identifier(required=True)
    payment_intent_id = String(required=True, max_length=255)
    payment_method_id = String(max_length=255)
    amount = Float(required=True, min_value=0.0)
    currency = String(max_length=3, default="USD")
    status = String(choices=PaymentStatus, default=PaymentStatus.PENDING.value)
    payment_method = String(choices=PaymentMethod, default=PaymentMethod.CARD.value)
    charge_id = String(max_length=255)
    failure_reason = String(max_length=500)
    processed_at = DateTime()
    refunded_amount = Float(default=0.0)
    created_at = DateTime()
    updated_at = DateTime()

    @invariant.post
    def refunds_cannot_exceed_amount(self):
        if (self.refunded_amount or 0.0) > (self.amount or 0.0) + HALF_CENT:
            raise ValidationError({"refunded_amount": ["Refunded amount cannot exceed the payment amount"]})

    @classmethod
    def create(cls, order_id, payment_intent_id, amount, currency):
        now = datetime.now(UTC)
        payment = cls(
            order_id=order_id,
            payment_intent_id=payment_intent_id,
            amount=round(amount, 2),
            currency=currency,
            status=PaymentStatus.PENDING.value,
            refunded_amount=0.0,
            created_at=now,
            updated_at=now,
        )
        payment.raise_(
            PaymentInitiated(
                payment_id=str(payment.id),
                order_id=str(order_id),
                payment_intent_id=payment_intent_id,
                amount=payment.amount,
                currency=currency,
                created_at=now,
            )
        )
        return payment

    @property
    def is_settled(self) -> bool:
        return PaymentStatus(self.status) in SETTLED_STATES

    @property
    def refundable_amount(self) -> float:
        return round(self.amount - (self.refunded_amount or 0.0), 2)

    def mark_succeeded(self, charge_id=None, payment_method_id=None) -> bool:
        """Record a captured charge. Returns False when the payment was already settled."""
        if self.is_settled:
            return False

        now = datetime.now(UTC)
        self.status = PaymentStatus.SUCCEEDED.value
        self.charge_id = charge_id
        self.payment_method_id = payment_method_id or self.payment_method_id
        self.failure_reason = None
        self.processed_at = now
        self.updated_at = now

        self.raise_(
            PaymentSucceeded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                payment_intent_id=self.payment_intent_id,
                charge_id=charge_id,
                amount=self.amount,
                processed_at=now,
            )
        )
        return True

    def mark_failed(self, reason) -> bool:
        """Record a failed attempt. Settled, cancelled or already failed payments are left as they are."""
        if PaymentStatus(self.status) in FAILURE_IMMUNE_STATES:
            return False

        now = datetime.now(UTC)
        self.status = PaymentStatus.FAILED.value
        self.failure_reason = reason
        self.updated_at = now

        self.raise_(
            PaymentFailed(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                payment_intent_id=self.payment_intent_id,
                reason=reason,
                failed_at=now,
            )
        )
        return True

    def cancel(self, reason):
        """Abandon a payment that has not been settled, e.g. when a new intent replaces it."""
        if PaymentStatus(self.status) not in {PaymentStatus.PENDING, PaymentStatus.REQUIRES_ACTION}:
            raise ValidationError({"status": [f"Cannot cancel a payment in {self.status} state"]})

        now = datetime.now(UTC)
        self.status = PaymentStatus.CANCELLED.value
        self.failure_reason = reason
        self.updated_at = now

        self.raise_(
            PaymentCancelled(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                payment_intent_id=self.payment_intent_id,
                reason=reason,
                cancelled_at=now,
            )
        )

    def refund(self, amount):
        """Record a refund of ``amount``; full refunds flip the status to Refunded."""
        if amount <= 0:
            raise ValidationError({"amount": ["Refund amount must be positive"]})
        if PaymentStatus(self.status) not in _REFUNDABLE:
            raise ValidationError({"status": [f"Cannot refund a payment in {self.status} state"]})
        if amount > self.refundable_amount + HALF_CENT:
            raise OverRefundError(amount, self.refundable_amount)

        now = datetime.now(UTC)
        self.refunded_amount = round((self.refunded_amount or 0.0) + amount, 2)
        if self.refunded_amount >= self.amount - HALF_CENT:
            self.status = PaymentStatus.REFUNDED.value
        else:
            self.status = PaymentStatus.PARTIALLY_REFUNDED.value
        self.updated_at = now

        self.raise_(
            PaymentRefunded(
                payment_id=str(self.id),
                order_id=str(self.order_id),
                payment_intent_id=self.payment_intent_id,
                amount=amount,
                refunded_amount=self.refunded_amount,
                status=self.status,
                refunded_at=now,
            )
        )
