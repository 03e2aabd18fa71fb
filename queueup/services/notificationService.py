"""
Notification Service
====================

Bridge between domain events and the notification transport. The workflow
engine only decides *who* should hear about *what*; delivering the message
(push, email, SMS) belongs to a ``NotificationSender`` implementation.

The default sender writes each notification to the log, which is what local
development and the test suite run with.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from queueup.events.jobEvents import DomainEvent, EventBus

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSender(Protocol):
    """Delivers one notification ``{event_type, job_id, recipient_id, context}``."""

    async def send(self, notification: dict[str, Any]) -> None:
        ...


class LoggingNotificationSender:
    async def send(self, notification: dict[str, Any]) -> None:
        logger.info(
            "Notification: %s -> recipient=%s, job=%s",
            notification["event_type"],
            notification["recipient_id"],
            notification["job_id"],
        )


class NotificationDispatcher:
    """EventBus subscriber that forwards addressed events to a sender."""

    def __init__(self, sender: NotificationSender) -> None:
        self.sender = sender

    async def __call__(self, event: DomainEvent) -> None:
        if event.recipient_id is None:
            logger.debug("Event %s has no recipient; not notifying", event.event_type.value)
            return
        await self.sender.send(event.as_dict())


def register_notifications(bus: EventBus, sender: NotificationSender | None = None) -> NotificationDispatcher:
    """Subscribe a dispatcher for ``sender`` (default: log only) to ``bus``."""
    dispatcher = NotificationDispatcher(sender or LoggingNotificationSender())
    bus.subscribe(dispatcher)
    return dispatcher
