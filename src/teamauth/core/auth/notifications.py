"""Outbound token notification protocol.

Verification, invite and password reset messages all carry a one-time
token to an email address. Delivery is fire-and-forget: a failed send is
logged and never rolls back the directory write that preceded it.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

import structlog

logger = structlog.get_logger()


class NotificationType(str, Enum):
    """Kinds of token notification."""

    VERIFY = "verify"
    INVITE = "invite"
    RESET = "reset"


@dataclass(frozen=True)
class TokenNotification:
    """A one-time token to deliver to an email address."""

    type: NotificationType
    email: str
    token: str


@runtime_checkable
class Notifier(Protocol):
    """Protocol for delivering token notifications.

    Example implementations:
    - ConsoleNotifier: Prints the link for local development
    - A queue publisher handing messages to an email service
    """

    async def send(self, notification: TokenNotification) -> bool:
        """Deliver a notification.

        Args:
            notification: What to send and to whom.

        Returns:
            True if the notification was handed off successfully.
        """
        ...


async def dispatch(notifier: Notifier, notification: TokenNotification) -> bool:
    """Send a notification without letting delivery failures propagate."""
    try:
        sent = await notifier.send(notification)
    except Exception:
        logger.exception(
            "notification_failed",
            type=notification.type.value,
            email=notification.email,
        )
        return False

    if sent:
        logger.info("notification_sent", type=notification.type.value, email=notification.email)
    else:
        logger.error(
            "notification_not_sent",
            type=notification.type.value,
            email=notification.email,
        )
    return sent
