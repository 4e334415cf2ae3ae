"""
Notification collaborator.

Responsibility:
    The narrow interface through which the ledger and the fulfillment
    engines announce stock alerts and document events.  Delivery (email,
    push, in-app feed) lives outside this package.

Invariants enforced:
    - Notification failures never fail the operation that triggered them:
      callers go through ``safe_send``, which logs and swallows delivery
      errors after the state change has been committed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from erp_kernel.logging_config import get_logger

logger = get_logger("services.notification")


class NotificationPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationType(str, Enum):
    LOW_STOCK_ALERT = "low_stock_alert"
    OUT_OF_STOCK_ALERT = "out_of_stock_alert"
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_STATUS_UPDATE = "order_status_update"
    PURCHASE_APPROVED = "purchase_approved"


@dataclass(frozen=True)
class Notification:
    type: NotificationType
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    priority: NotificationPriority = NotificationPriority.MEDIUM
    recipient_id: str | None = None
    recipient_email: str | None = None


class Notifier(ABC):
    """Delivery channel for notifications."""

    @abstractmethod
    def send(self, notification: Notification) -> None:
        ...


class LoggingNotifier(Notifier):
    """Default notifier: writes each notification to the structured log."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "notification_sent",
            extra={
                "notification_type": notification.type.value,
                "title": notification.title,
                "priority": notification.priority.value,
                "recipient_id": notification.recipient_id,
                "data": notification.data,
            },
        )


def safe_send(notifier: Notifier, notification: Notification) -> bool:
    """Send without propagating delivery errors.  Returns True on success."""
    try:
        notifier.send(notification)
    except Exception:
        logger.warning(
            "notification_delivery_failed",
            extra={"notification_type": notification.type.value},
            exc_info=True,
        )
        return False
    return True
