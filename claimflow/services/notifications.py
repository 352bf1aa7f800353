"""
Operator Notifications.

Fire-and-forget system notifications. Delivery failures are logged and never
abort the operation that raised the notification.
"""

import logging
from enum import Enum
from typing import Any, Optional, Protocol

from claimflow.core.enums import NotificationSeverity

logger = logging.getLogger(__name__)


class NotificationTopic(str, Enum):
    """Operator notification topics."""

    SUBMISSION_ERRORS = "claim-submission-errors"
    SUBMISSION_SUCCESS = "claim-submission-success"
    SUBMISSION_FAILURE = "claim-submission-failure"
    STATUS_UPDATES = "claim-status-updates"
    STATUS_REFRESH_ERRORS = "claim-status-refresh-errors"
    STATUS_REFRESH_FAILURE = "claim-status-refresh-failure"
    UNMAPPED_STATUS = "claim-status-unmapped"


class Notifier(Protocol):
    """Notification collaborator."""

    async def send_system_notification(
        self,
        topic: str,
        severity: NotificationSeverity,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None: ...


class LoggingNotifier:
    """Notifier that writes notifications to the log."""

    _levels = {
        NotificationSeverity.INFO: logging.INFO,
        NotificationSeverity.WARNING: logging.WARNING,
        NotificationSeverity.ERROR: logging.ERROR,
        NotificationSeverity.CRITICAL: logging.CRITICAL,
    }

    async def send_system_notification(
        self,
        topic: str,
        severity: NotificationSeverity,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        logger.log(
            self._levels.get(severity, logging.INFO),
            f"[{topic}] {message} {context or {}}",
        )


async def notify_safely(
    notifier: Optional[Notifier],
    topic: NotificationTopic,
    severity: NotificationSeverity,
    message: str,
    context: Optional[dict[str, Any]] = None,
) -> bool:
    """
    Send a notification, logging instead of raising on delivery failure.

    Returns:
        True if the notifier accepted the notification
    """
    if notifier is None:
        return False
    try:
        await notifier.send_system_notification(topic.value, severity, message, context or {})
        return True
    except Exception as e:
        logger.error(f"Failed to send {topic.value} notification: {e}")
        return False
