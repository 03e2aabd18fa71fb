"""
SQLAlchemy models for jobs and the per-job progression timeline.

The ``version`` column is registered as the mapper's ``version_id_col`` so
every UPDATE of a job is a compare-and-swap on the version it was read at.
"""

import enum
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class JobStatus(str, enum.Enum):
    POSTED = "posted"
    BIDDING = "bidding"
    ACCEPTED = "accepted"                      # bid accepted, mechanic assigned
    SCHEDULED = "scheduled"                    # a date/time is proposed
    SCHEDULE_REJECTED = "schedule_rejected"    # awaiting a fresh proposal
    CONFIRMED = "confirmed"                    # counterpart accepted the schedule
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Urgency(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ServiceType(str, enum.Enum):
    MOBILE = "mobile"
    SHOP = "shop"


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    DEPOSIT_PAID = "deposit_paid"
    DEPOSIT_FAILED = "deposit_failed"
    SETTLED = "settled"
    SETTLEMENT_FAILED = "settlement_failed"


class Job(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "jobs"

    # Parties
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    mechanic_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True, index=True
    )

    # Request details
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    subcategory: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    vehicle_info: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    urgency: Mapped[Urgency] = mapped_column(
        Enum(Urgency, name="job_urgency"), nullable=False, default=Urgency.MEDIUM
    )
    service_type: Mapped[ServiceType] = mapped_column(
        Enum(ServiceType, name="job_service_type"),
        nullable=False,
        default=ServiceType.SHOP,
    )
    location: Mapped[str] = mapped_column(Text, nullable=False)
    estimated_cost: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )

    # Lifecycle
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status"),
        nullable=False,
        default=JobStatus.POSTED,
        index=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Bidding outcome
    accepted_bid_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    accepted_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )

    # Scheduling
    scheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    scheduled_time: Mapped[Optional[time]] = mapped_column(Time, nullable=True)

    # Additional work (sum of approved change orders)
    change_order_total: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )

    # Payment
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="job_payment_status"),
        nullable=False,
        default=PaymentStatus.UNPAID,
    )
    payment_method: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    deposit_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    processing_fee: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    deposit_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    settled_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    settlement_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )
    commission_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    mechanic_payout: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(10, 2), nullable=True
    )
    last_payment_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Declined charges so far; part of the gateway idempotency key
    payment_attempts: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default="0"
    )

    # Milestones
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completion_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_jobs_status_mechanic", "status", "mechanic_id"),
    )
    __mapper_args__ = {"version_id_col": version}

    @property
    def effective_total(self) -> Decimal:
        """Original estimate plus all approved change orders."""
        return self.estimated_cost + self.change_order_total

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, status={self.status.value}, customer={self.customer_id})>"


class JobTimelineEntry(UUIDPrimaryKeyMixin, Base):
    """Append-only record of everything that happened to a job."""

    __tablename__ = "job_timeline"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    actor_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data_json: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    # Insertion order within a job; timestamps can tie inside one transaction
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
