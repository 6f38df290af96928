"""Notification sender registry.

Uses the fake sender by default; a real transport (email, push, websocket
hub) is installed with ``set_sender`` at application start-up.
"""

import structlog

from storefront.notifications.fake_sender import FakeNotificationSender
from storefront.notifications.port import NotificationSender

logger = structlog.get_logger(__name__)

_current_sender: NotificationSender | None = None


def get_sender() -> NotificationSender:
    """Return the active notification sender. Defaults to FakeNotificationSender."""
    global _current_sender
    if _current_sender is None:
        _current_sender = FakeNotificationSender()
    return _current_sender


def set_sender(sender: NotificationSender) -> None:
    global _current_sender
    _current_sender = sender


def reset_sender() -> None:
    global _current_sender
    _current_sender = None


def notify_safely(recipient: str | None, event_type, payload: dict) -> bool:
    """Send a notification without letting delivery problems propagate.

    Returns whether the sender accepted the message.
    """
    if not recipient:
        return False

    event_name = getattr(event_type, "value", event_type)
    try:
        get_sender().notify(recipient, event_name, payload)
    except Exception:
        logger.warning("Notification delivery failed", recipient=recipient, event_type=event_name, exc_info=True)
        return False
    return True
