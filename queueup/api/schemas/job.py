"""
Pydantic v2 schemas for the Job API.

Job responses are a union tagged by ``status``: each variant only carries
the fields that are meaningful in its statuses (no scheduled date on an
open job, no mechanic before a bid is accepted, and so on). Use
``job_view(job)`` to render an ORM ``Job`` as the right variant.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from queueup.models import Job, JobStatus, PaymentStatus, ServiceType, Urgency


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class JobCreateRequest(BaseModel):
    """Request body for posting a new job."""

    category: str = Field(min_length=1, max_length=100)
    subcategory: Optional[str] = Field(default=None, max_length=100)
    description: str = Field(default="", max_length=5000)
    vehicle_info: Optional[str] = Field(default=None, max_length=255)
    urgency: Urgency = Urgency.MEDIUM
    service_type: ServiceType = ServiceType.SHOP
    location: str = Field(min_length=1, max_length=500)
    estimated_cost: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)


class TransitionRequest(BaseModel):
    """Request body for a raw status transition (admin tooling, retries)."""

    status: JobStatus
    reason: Optional[str] = Field(default=None, max_length=1000)
    completion_notes: Optional[str] = Field(default=None, max_length=5000)
    bid_id: Optional[uuid.UUID] = Field(default=None, description="Bid to accept for ``accepted``")
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[time] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class CompleteJobRequest(BaseModel):
    completion_notes: Optional[str] = Field(default=None, max_length=5000)


class CancelJobRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


# ---------------------------------------------------------------------------
# Job response variants
# ---------------------------------------------------------------------------

class _JobBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_id: uuid.UUID
    category: str
    subcategory: Optional[str] = None
    description: str
    vehicle_info: Optional[str] = None
    urgency: Urgency
    service_type: ServiceType
    location: str
    estimated_cost: Decimal
    version: int
    created_at: datetime
    updated_at: datetime

    @field_validator("status", mode="before", check_fields=False)
    @classmethod
    def _status_value(cls, value: Any) -> Any:
        return value.value if isinstance(value, JobStatus) else value


class OpenJobOut(_JobBase):
    """Posted or bidding: no mechanic yet."""

    status: Literal["posted", "bidding"]


class AssignedJobOut(_JobBase):
    """A bid was accepted; no agreed schedule yet."""

    status: Literal["accepted", "schedule_rejected"]
    mechanic_id: uuid.UUID
    accepted_bid_id: Optional[uuid.UUID] = None
    accepted_amount: Optional[Decimal] = None
    payment_status: PaymentStatus


class ScheduledJobOut(_JobBase):
    """A date/time is proposed (scheduled) or agreed (confirmed)."""

    status: Literal["scheduled", "confirmed"]
    mechanic_id: uuid.UUID
    accepted_bid_id: Optional[uuid.UUID] = None
    accepted_amount: Optional[Decimal] = None
    scheduled_date: date
    scheduled_time: time
    payment_status: PaymentStatus
    deposit_amount: Optional[Decimal] = None
    processing_fee: Optional[Decimal] = None


class ActiveJobOut(_JobBase):
    """Work started: change orders and settlement apply."""

    status: Literal["in_progress", "completed"]
    mechanic_id: uuid.UUID
    accepted_amount: Optional[Decimal] = None
    scheduled_date: date
    scheduled_time: time
    started_at: datetime
    completed_at: Optional[datetime] = None
    completion_notes: Optional[str] = None
    change_order_total: Decimal
    effective_total: Decimal
    payment_status: PaymentStatus
    settled_amount: Optional[Decimal] = None
    commission_amount: Optional[Decimal] = None
    mechanic_payout: Optional[Decimal] = None


class CancelledJobOut(_JobBase):
    status: Literal["cancelled"]
    mechanic_id: Optional[uuid.UUID] = None
    cancelled_at: datetime
    cancellation_reason: Optional[str] = None
    payment_status: PaymentStatus


JobOut = Annotated[
    Union[OpenJobOut, AssignedJobOut, ScheduledJobOut, ActiveJobOut, CancelledJobOut],
    Field(discriminator="status"),
]

_VARIANTS: dict[JobStatus, type[_JobBase]] = {
    JobStatus.POSTED: OpenJobOut,
    JobStatus.BIDDING: OpenJobOut,
    JobStatus.ACCEPTED: AssignedJobOut,
    JobStatus.SCHEDULE_REJECTED: AssignedJobOut,
    JobStatus.SCHEDULED: ScheduledJobOut,
    JobStatus.CONFIRMED: ScheduledJobOut,
    JobStatus.IN_PROGRESS: ActiveJobOut,
    JobStatus.COMPLETED: ActiveJobOut,
    JobStatus.CANCELLED: CancelledJobOut,
}


def job_view(job: Job) -> _JobBase:
    """Render a job as the response variant for its current status."""
    return _VARIANTS[job.status].model_validate(job)


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------

class TimelineEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    event_type: str
    message: str
    actor_id: Optional[uuid.UUID] = None
    actor_role: Optional[str] = None
    data: Optional[dict[str, Any]] = Field(
        default=None, validation_alias=AliasChoices("data_json", "data")
    )
    created_at: datetime
