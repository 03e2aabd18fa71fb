"""
Pydantic v2 schemas for schedule negotiation.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from queueup.api.schemas.job import JobOut
from queueup.models import ProposalStatus


class ProposeScheduleRequest(BaseModel):
    proposed_date: date
    proposed_time: time
    notes: Optional[str] = Field(default=None, max_length=1000)


class RejectScheduleRequest(BaseModel):
    """Reject the pending proposal, optionally with a counter-proposal."""

    counter_proposal: Optional[ProposeScheduleRequest] = None


class ProposalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    proposed_by: str
    proposer_id: uuid.UUID
    proposed_date: date
    proposed_time: time
    notes: Optional[str] = None
    status: ProposalStatus
    created_at: datetime
    resolved_at: Optional[datetime] = None


class ScheduleStateOut(BaseModel):
    """Job state after a negotiation step, plus the proposal now pending."""

    job: JobOut
    pending_proposal: Optional[ProposalOut] = None
