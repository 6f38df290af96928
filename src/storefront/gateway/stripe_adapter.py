"""Stripe payment gateway adapter.

Amounts cross the boundary in cents. Network calls carry the checkout's
idempotency key so a retried request never creates a second intent.
"""

import stripe
import structlog

from storefront.gateway.port import (
    GatewayEvent,
    IntentResult,
    PaymentGateway,
    WebhookSignatureError,
    event_from_payload,
    to_cents,
)

logger = structlog.get_logger(__name__)


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.client = stripe.StripeClient(api_key)

    def create_intent(
        self,
        amount: float,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> IntentResult:
        try:
            intent = self.client.payment_intents.create(
                params={
                    "amount": to_cents(amount),
                    "currency": currency.lower(),
                    "payment_method_types": ["card"],
                    "metadata": {k: str(v) for k, v in (metadata or {}).items()},
                },
                options={"idempotency_key": idempotency_key},
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe intent creation failed", error=str(exc), error_type=type(exc).__name__)
            return IntentResult(success=False, failure_reason=exc.user_message or "Payment provider error")

        return IntentResult(success=True, payment_intent_id=intent.id, client_secret=intent.client_secret)

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (stripe.SignatureVerificationError, ValueError):
            return False
        return True

    def parse_event(self, payload: str, signature: str) -> GatewayEvent:
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            raise WebhookSignatureError(str(exc)) from exc
        return event_from_payload(event.to_dict())
