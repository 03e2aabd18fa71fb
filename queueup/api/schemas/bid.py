"""
Pydantic v2 schemas for the Bid API.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from queueup.api.schemas.job import JobOut
from queueup.models import BidStatus


class PlaceBidRequest(BaseModel):
    """Request body for a mechanic's bid on an open job."""

    amount: Decimal = Field(description="Quoted price for the job")
    message: str = Field(default="", max_length=2000)
    estimated_duration_minutes: Optional[int] = Field(default=None, gt=0, le=7 * 24 * 60)


class WithdrawBidRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class BidOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    mechanic_id: uuid.UUID
    amount: Decimal
    message: str
    estimated_duration_minutes: Optional[int] = None
    status: BidStatus
    reason: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class BidAcceptanceOut(BaseModel):
    bid: BidOut
    job: JobOut
    rejected_bid_ids: list[uuid.UUID]


class RejectBidRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class BidStatsOut(BaseModel):
    """A mechanic's bid counts by status."""

    model_config = ConfigDict(from_attributes=True)

    total: int
    active: int
    accepted: int
    rejected: int
    withdrawn: int
    acceptance_rate: float
