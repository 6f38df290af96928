"""Configurable fake payment gateway for development and testing.

Simulates intent creation without external calls. It can be configured at
runtime to fail or to hang past the checkout timeout, and accepts webhooks
signed with ``test-signature``.
"""

import json
import time
from uuid import uuid4

from storefront.gateway.port import (
    GatewayEvent,
    IntentResult,
    PaymentGateway,
    WebhookSignatureError,
    event_from_payload,
    to_cents,
)

TEST_SIGNATURE = "test-signature"


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.delay_seconds: float = 0.0
        self.calls: list[dict] = []
        self._intents_by_key: dict[str, str] = {}

    def configure(
        self,
        should_succeed: bool,
        failure_reason: str = "Card declined",
        delay_seconds: float = 0.0,
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.delay_seconds = delay_seconds

    def create_intent(
        self,
        amount: float,
        currency: str,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> IntentResult:
        self.calls.append(
            {
                "method": "create_intent",
                "amount": amount,
                "amount_cents": to_cents(amount),
                "currency": currency.lower(),
                "idempotency_key": idempotency_key,
                "metadata": dict(metadata or {}),
            }
        )
        if self.delay_seconds:
            time.sleep(self.delay_seconds)

        if not self.should_succeed:
            return IntentResult(success=False, failure_reason=self.failure_reason)

        # Same key, same intent
        intent_id = self._intents_by_key.setdefault(idempotency_key, f"pi_fake_{uuid4().hex[:16]}")
        return IntentResult(
            success=True,
            payment_intent_id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
        )

    def verify_webhook_signature(self, payload: str, signature: str) -> bool:  # noqa: ARG002
        return signature == TEST_SIGNATURE

    def parse_event(self, payload: str, signature: str) -> GatewayEvent:
        if not self.verify_webhook_signature(payload, signature):
            raise WebhookSignatureError("Invalid webhook signature")
        return event_from_payload(json.loads(payload))
