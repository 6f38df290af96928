"""Fake notification sender — records notifications for testing."""

from storefront.notifications.port import NotificationDeliveryError, NotificationSender


class FakeNotificationSender(NotificationSender):
    """Sender that keeps messages in memory for test assertions."""

    def __init__(self):
        self.sent: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Notification delivery failed"):
        """Configure the fake sender behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def notify(self, recipient: str, event_type: str, payload: dict) -> None:
        if not self.should_succeed:
            raise NotificationDeliveryError(self.failure_reason)

        self.sent.append({"recipient": recipient, "event_type": event_type, "payload": dict(payload)})

    def of_type(self, event_type: str) -> list[dict]:
        return [n for n in self.sent if n["event_type"] == event_type]

    def reset(self):
        self.sent.clear()
        self.should_succeed = True
        self.failure_reason = "Notification delivery failed"
