"""
Bidding Engine
==============

Mechanics compete for posted jobs by placing bids; the customer picks one.

- A bid is only accepted while the job is ``posted`` or ``bidding`` and has
  no mechanic assigned.
- A mechanic holds at most one *active* bid per job.
- The first bid on a ``posted`` job moves it to ``bidding``.
- Accepting a bid rejects every other active bid on the job and moves the
  job to ``accepted`` with the winning mechanic assigned.
- The customer may also reject a single bid; the job stays open.

There is no automatic best-bid selection: choosing is always the customer's
decision.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from queueup.models import Bid, BidStatus, Job, JobStatus, utcnow
from queueup.services import jobStore
from queueup.services.jobStateManager import (
    BIDDABLE_STATUSES,
    SYSTEM_ACTOR,
    Actor,
    ActorType,
)
from queueup.services.pricingCalculator import Number, to_money
from queueup.services.workflowErrors import (
    BidNotActiveError,
    DuplicateBidError,
    InvalidAmountError,
    JobNotBiddableError,
    NotFoundError,
    NotOwnerError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result DTOs
# ---------------------------------------------------------------------------

@dataclass
class BidPlacement:
    bid: Bid
    job: Job
    opened_bidding: bool = False


@dataclass
class BidAcceptance:
    bid: Bid
    job: Job
    rejected_bids: list[Bid] = field(default_factory=list)
    changed: bool = True


@dataclass(frozen=True)
class BidStats:
    """Bid counts for one mechanic, by status."""
    total: int
    active: int
    accepted: int
    rejected: int
    withdrawn: int

    @property
    def acceptance_rate(self) -> float:
        resolved = self.accepted + self.rejected
        if resolved == 0:
            return 0.0
        return round(self.accepted / resolved, 4)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

async def get_bid(db: AsyncSession, bid_id: uuid.UUID) -> Bid:
    result = await db.execute(select(Bid).where(Bid.id == bid_id))
    bid = result.scalar_one_or_none()
    if bid is None:
        raise NotFoundError("Bid", bid_id)
    return bid


async def _active_bid_for(
    db: AsyncSession,
    job_id: uuid.UUID,
    mechanic_id: uuid.UUID,
) -> Optional[Bid]:
    result = await db.execute(
        select(Bid).where(
            Bid.job_id == job_id,
            Bid.mechanic_id == mechanic_id,
            Bid.status == BidStatus.ACTIVE,
        )
    )
    return result.scalars().first()


def is_available_for_bidding(job: Job) -> bool:
    """True when the job accepts new bids."""
    return job.status in BIDDABLE_STATUSES and job.mechanic_id is None


# ---------------------------------------------------------------------------
# Bid lifecycle
# ---------------------------------------------------------------------------

async def place_bid(
    db: AsyncSession,
    job_id: uuid.UUID,
    mechanic: Actor,
    amount: Number,
    message: str = "",
    *,
    estimated_duration_minutes: Optional[int] = None,
) -> BidPlacement:
    """Place a bid on an open job.

    Raises:
        NotOwnerError: If the actor is not a mechanic.
        InvalidAmountError: If the amount is not positive.
        NotFoundError: If the job does not exist.
        JobNotBiddableError: If the job no longer accepts bids.
        DuplicateBidError: If this mechanic already has an active bid.
    """
    if mechanic.role != ActorType.MECHANIC or mechanic.id is None:
        raise NotOwnerError("Only mechanics can place bids.")

    bid_amount = to_money(amount)
    if bid_amount <= 0:
        raise InvalidAmountError("Bid amount must be greater than zero.")

    job = await jobStore.get_job(db, job_id)
    if not is_available_for_bidding(job):
        raise JobNotBiddableError(
            f"Job {job_id} is not open for bidding (status: {job.status.value})."
        )

    if await _active_bid_for(db, job_id, mechanic.id) is not None:
        raise DuplicateBidError(
            f"Mechanic {mechanic.id} already has an active bid on job {job_id}."
        )

    bid = Bid(
        id=uuid.uuid4(),
        job_id=job_id,
        mechanic_id=mechanic.id,
        amount=bid_amount,
        message=message or "",
        estimated_duration_minutes=estimated_duration_minutes,
        status=BidStatus.ACTIVE,
    )
    db.add(bid)
    await db.flush()

    opened = False
    if job.status == JobStatus.POSTED:
        job = await jobStore.transition(db, job_id, JobStatus.BIDDING, SYSTEM_ACTOR)
        opened = True

    logger.info(
        "Bid placed: job=%s, bid=%s, mechanic=%s, amount=%s",
        job_id,
        bid.id,
        mechanic.id,
        bid_amount,
    )
    return BidPlacement(bid=bid, job=job, opened_bidding=opened)


async def withdraw_bid(
    db: AsyncSession,
    bid_id: uuid.UUID,
    mechanic: Actor,
    reason: Optional[str] = None,
) -> Bid:
    """Mechanic retracts their own active bid.

    Raises:
        NotFoundError: If the bid does not exist.
        NotOwnerError: If the bid belongs to another mechanic.
        BidNotActiveError: If the bid was already resolved.
    """
    bid = await get_bid(db, bid_id)
    if not mechanic.is_privileged and (
        mechanic.role != ActorType.MECHANIC or mechanic.id != bid.mechanic_id
    ):
        raise NotOwnerError(f"Bid {bid_id} belongs to another mechanic.")
    if bid.status != BidStatus.ACTIVE:
        raise BidNotActiveError(
            f"Bid {bid_id} is not active (status: {bid.status.value})."
        )

    bid.status = BidStatus.WITHDRAWN
    bid.reason = reason or "Withdrawn by mechanic"
    bid.resolved_at = utcnow()
    await db.flush()

    logger.info("Bid withdrawn: job=%s, bid=%s", bid.job_id, bid_id)
    return bid


async def reject_bid(
    db: AsyncSession,
    bid_id: uuid.UUID,
    customer: Actor,
    reason: Optional[str] = None,
) -> Bid:
    """Customer turns down one active bid; the job stays open for others.

    Raises:
        NotFoundError: If the bid does not exist.
        NotOwnerError: If the actor is not the job's customer.
        BidNotActiveError: If the bid was already resolved.
    """
    bid = await get_bid(db, bid_id)
    job = await jobStore.get_job(db, bid.job_id)
    if not customer.is_privileged and (
        customer.role != ActorType.CUSTOMER or customer.id != job.customer_id
    ):
        raise NotOwnerError(f"Only the customer who posted job {job.id} can reject its bids.")
    if bid.status != BidStatus.ACTIVE:
        raise BidNotActiveError(
            f"Bid {bid_id} is not active (status: {bid.status.value})."
        )

    bid.status = BidStatus.REJECTED
    bid.reason = reason or "Rejected by customer"
    bid.resolved_at = utcnow()
    await db.flush()

    logger.info("Bid rejected: job=%s, bid=%s, mechanic=%s", job.id, bid_id, bid.mechanic_id)
    return bid


async def accept_bid(
    db: AsyncSession,
    bid_id: uuid.UUID,
    customer: Actor,
) -> BidAcceptance:
    """Customer accepts a bid, assigning its mechanic to the job.

    Accepting the bid that was already accepted for this job returns the
    current state unchanged.

    Raises:
        NotFoundError: If the bid or its job does not exist.
        NotOwnerError: If the actor is not the job's customer.
        BidNotActiveError: If the bid was withdrawn, rejected, or lost.
    """
    bid = await get_bid(db, bid_id)
    job = await jobStore.get_job(db, bid.job_id)

    if not customer.is_privileged and (
        customer.role != ActorType.CUSTOMER or customer.id != job.customer_id
    ):
        raise NotOwnerError(f"Only the customer who posted job {job.id} can accept bids.")

    if bid.status == BidStatus.ACCEPTED and job.accepted_bid_id == bid.id:
        logger.debug("Bid acceptance retry ignored: bid=%s", bid_id)
        return BidAcceptance(bid=bid, job=job, changed=False)

    if bid.status != BidStatus.ACTIVE:
        raise BidNotActiveError(
            f"Bid {bid_id} is not active (status: {bid.status.value})."
        )

    now = utcnow()
    siblings = await db.execute(
        select(Bid).where(
            Bid.job_id == job.id,
            Bid.status == BidStatus.ACTIVE,
            Bid.id != bid.id,
        )
    )
    rejected: list[Bid] = []
    for sibling in siblings.scalars().all():
        sibling.status = BidStatus.REJECTED
        sibling.reason = "Another bid was accepted"
        sibling.resolved_at = now
        rejected.append(sibling)

    bid.status = BidStatus.ACCEPTED
    bid.resolved_at = now

    job = await jobStore.transition(
        db,
        job.id,
        JobStatus.ACCEPTED,
        customer,
        {"mechanic_id": bid.mechanic_id, "bid_id": bid.id, "amount": bid.amount},
    )

    logger.info(
        "Bid accepted: job=%s, bid=%s, mechanic=%s, rejected=%d",
        job.id,
        bid.id,
        bid.mechanic_id,
        len(rejected),
    )
    return BidAcceptance(bid=bid, job=job, rejected_bids=rejected)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def list_bids_for_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    active_only: bool = False,
) -> list[Bid]:
    stmt = select(Bid).where(Bid.job_id == job_id)
    if active_only:
        stmt = stmt.where(Bid.status == BidStatus.ACTIVE)
    result = await db.execute(stmt.order_by(Bid.created_at))
    return list(result.scalars().all())


async def list_bids_for_mechanic(
    db: AsyncSession,
    mechanic_id: uuid.UUID,
    *,
    status: Optional[BidStatus] = None,
) -> list[Bid]:
    stmt = select(Bid).where(Bid.mechanic_id == mechanic_id)
    if status is not None:
        stmt = stmt.where(Bid.status == status)
    result = await db.execute(stmt.order_by(Bid.created_at.desc()))
    return list(result.scalars().all())


async def get_mechanic_bid_stats(db: AsyncSession, mechanic_id: uuid.UUID) -> BidStats:
    result = await db.execute(
        select(Bid.status, func.count(Bid.id))
        .where(Bid.mechanic_id == mechanic_id)
        .group_by(Bid.status)
    )
    counts = {status: count for status, count in result.all()}
    return BidStats(
        total=sum(counts.values()),
        active=counts.get(BidStatus.ACTIVE, 0),
        accepted=counts.get(BidStatus.ACCEPTED, 0),
        rejected=counts.get(BidStatus.REJECTED, 0),
        withdrawn=counts.get(BidStatus.WITHDRAWN, 0),
    )
