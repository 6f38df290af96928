"""Payment gateway port (abstract interface).

Defines the narrow contract checkout and reconciliation depend on: create a
payment intent for an amount, and turn a signed webhook delivery into a
succeeded / failed / refunded event keyed by the intent reference.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class GatewayEventType(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"
    IGNORED = "ignored"


# Provider event names mapped to what reconciliation understands
WEBHOOK_EVENT_TYPES = {
    "payment_intent.succeeded": GatewayEventType.SUCCEEDED,
    "payment_intent.payment_failed": GatewayEventType.FAILED,
    "refund.created": GatewayEventType.REFUNDED,
}


@dataclass(frozen=True)
class IntentResult:
    """Result of a payment intent request."""

    success: bool
    payment_intent_id: str | None = None
    client_secret: str | None = None
    failure_reason: str | None = None


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook delivery."""

    type: GatewayEventType
    payment_intent_id: str | None = None
    charge_id: str | None = None
    amount: float | None = None
    failure_reason: str | None = None
    provider_event_type: str | None = None


class WebhookSignatureError(Exception):
    """The webhook payload was not signed by the gateway."""


def event_from_payload(event: dict) -> GatewayEvent:
    """Map a provider event body (amounts in cents) to a GatewayEvent."""
    provider_type = event.get("type", "")
    event_type = WEBHOOK_EVENT_TYPES.get(provider_type, GatewayEventType.IGNORED)
    obj = (event.get("data") or {}).get("object") or {}

    if event_type == GatewayEventType.REFUNDED:
        return GatewayEvent(
            type=event_type,
            payment_intent_id=obj.get("payment_intent"),
            charge_id=obj.get("charge"),
            amount=_from_cents(obj.get("amount")),
            provider_event_type=provider_type,
        )

    error = obj.get("last_payment_error") or {}
    return GatewayEvent(
        type=event_type,
        payment_intent_id=obj.get("id"),
        charge_id=obj.get("latest_charge"),
        amount=_from_cents(obj.get("amount_received", obj.get("amount"))),
        failure_reason=error.get("message"),
        provider_event_type=provider_type,
    )


def to_cents(amount: float) -> int:
    return int(round(amount * 100))


def _from_cents(value) -> float | None:
    return None if value is None else round(value / 100, 2)


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_intent(
        self,
        amount: float,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> IntentResult:
        """Create a payment intent for ``amount`` in ``currency``."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...

    @abstractmethod
    def parse_event(self, payload: str, signature: str) -> GatewayEvent:
        """Verify and decode a webhook delivery.

        Raises ``WebhookSignatureError`` when the signature does not match.
        """
        ...
