"""Notification sender capability.

Delivery channels (email, WhatsApp) live outside the engine. The engine only
needs something that accepts a template name and its data.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    """Protocol for outbound notification delivery."""

    def send(self, recipient: str, template: str, data: dict[str, Any]) -> None:
        """Deliver a notification. May raise; callers treat failures as non-fatal."""
        ...


class LoggingNotificationSender:
    """Sender that only logs. Used when no delivery channel is wired in."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []

    def send(self, recipient: str, template: str, data: dict[str, Any]) -> None:
        self.sent.append((recipient, template, data))
        logger.info("notification template=%s recipient=%s", template, recipient)


def notify_quietly(
    sender: NotificationSender | None,
    recipient: str | None,
    template: str,
    data: dict[str, Any],
) -> bool:
    """Send a notification, logging instead of raising on failure."""
    if sender is None or not recipient:
        return False
    try:
        sender.send(recipient, template, data)
    except Exception:
        logger.exception("notification failed template=%s recipient=%s", template, recipient)
        return False
    return True
