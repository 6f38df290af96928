"""Notification sender port — abstract interface for customer and staff alerts."""

from abc import ABC, abstractmethod
from enum import Enum


class NotificationType(Enum):
    ORDER_STATUS_UPDATED = "OrderStatusUpdated"
    NEW_ORDER = "NewOrder"
    PAYMENT_FAILED = "PaymentFailed"
    DOWNLOADS_READY = "DownloadsReady"
    LOW_STOCK = "LowStock"
    INVENTORY_ALERT = "InventoryAlert"


# Role recipients are addressed as "role:<name>"
ADMIN_ROLE = "role:Admin"


class NotificationDeliveryError(Exception):
    """Raised by adapters when a message could not be handed off."""


class NotificationSender(ABC):
    @abstractmethod
    def notify(self, recipient: str, event_type: str, payload: dict) -> None:
        """Deliver a notification to a user id, email or ``role:<name>``."""
        ...
