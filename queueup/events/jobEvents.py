"""
Job Domain Events
=================

Events emitted by the workflow orchestrator after a change has been
committed. Each event names the party that should hear about it, so
subscribers (notifications, analytics) never need to re-read the job.

Subscribers are registered on an ``EventBus``. A failing subscriber is
logged and skipped: delivery problems never undo or fail the operation that
produced the event.

Events emitted:
  - bid.placed / bid.accepted / bid.rejected / bid.withdrawn
  - schedule.proposed / schedule.confirmed / schedule.rejected
  - job.started / job.completed / job.cancelled
  - change_order.requested / change_order.resolved
  - change_order.cancelled / change_order.expired
  - payment.deposit_paid / payment.failed / payment.settled
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


class JobEventType(str, enum.Enum):
    BID_PLACED = "bid.placed"
    BID_ACCEPTED = "bid.accepted"
    BID_REJECTED = "bid.rejected"
    BID_WITHDRAWN = "bid.withdrawn"
    SCHEDULE_PROPOSED = "schedule.proposed"
    SCHEDULE_CONFIRMED = "schedule.confirmed"
    SCHEDULE_REJECTED = "schedule.rejected"
    JOB_STARTED = "job.started"
    JOB_COMPLETED = "job.completed"
    JOB_CANCELLED = "job.cancelled"
    CHANGE_ORDER_REQUESTED = "change_order.requested"
    CHANGE_ORDER_UPDATED = "change_order.updated"
    CHANGE_ORDER_RESOLVED = "change_order.resolved"
    CHANGE_ORDER_CANCELLED = "change_order.cancelled"
    CHANGE_ORDER_EXPIRED = "change_order.expired"
    DEPOSIT_PAID = "payment.deposit_paid"
    PAYMENT_FAILED = "payment.failed"
    JOB_SETTLED = "payment.settled"


@dataclass(frozen=True)
class DomainEvent:
    event_type: JobEventType
    job_id: uuid.UUID
    recipient_id: Optional[uuid.UUID]
    context: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "job_id": str(self.job_id),
            "recipient_id": str(self.recipient_id) if self.recipient_id else None,
            "context": self.context,
            "timestamp": self.occurred_at.isoformat(),
        }


def _stringify(value: Any) -> Any:
    if isinstance(value, (uuid.UUID,)):
        return str(value)
    if isinstance(value, enum.Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def build_event(
    event_type: JobEventType,
    job_id: uuid.UUID,
    recipient_id: Optional[uuid.UUID],
    **context: Any,
) -> DomainEvent:
    """Construct a standardised event with a JSON-safe context."""
    return DomainEvent(
        event_type=event_type,
        job_id=job_id,
        recipient_id=recipient_id,
        context={key: _stringify(value) for key, value in context.items()},
    )


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class EventBus:
    """In-process fan-out of domain events to async subscribers."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "Event subscriber failed for %s on job %s",
                    event.event_type.value,
                    event.job_id,
                )

    async def publish_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            logger.info(
                "Event emitted: %s for job %s", event.event_type.value, event.job_id
            )
            await self.publish(event)
