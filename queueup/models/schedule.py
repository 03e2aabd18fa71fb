"""
SQLAlchemy model for schedule proposals exchanged between customer and
mechanic. Only one proposal per job may be ``pending``; resolved rows are
kept as the negotiation history.
"""

import enum
import uuid
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import Date, DateTime, Enum, ForeignKey, String, Text, Time, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ProposalStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"
    WITHDRAWN = "withdrawn"


class ScheduleProposal(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "schedule_proposals"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    proposed_by: Mapped[str] = mapped_column(String(20), nullable=False)
    proposer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    proposed_date: Mapped[date] = mapped_column(Date, nullable=False)
    proposed_time: Mapped[time] = mapped_column(Time, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[ProposalStatus] = mapped_column(
        Enum(ProposalStatus, name="schedule_proposal_status"),
        nullable=False,
        default=ProposalStatus.PENDING,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<ScheduleProposal(id={self.id}, job={self.job_id}, by={self.proposed_by}, "
            f"at={self.proposed_date} {self.proposed_time}, status={self.status.value})>"
        )
