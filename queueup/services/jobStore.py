"""
Job Store
=========

Owns Job entities: creation, validated status transitions and the read
projections used by the customer and mechanic job lists.

  - create_job        -- new job in ``posted``
  - transition        -- state machine transition with side effects
  - get_job           -- single job retrieval
  - get_by_customer / get_by_mechanic / get_available / get_by_status
  - record_timeline / get_timeline -- per-job progression history

Projections are answered from indexed columns (customer_id, mechanic_id and
the (status, mechanic_id) composite), so listing cost grows with the size of
the result rather than the size of the table.

Every write goes through the job's ``version`` column; a concurrent writer
surfaces as ``ConcurrentModificationError`` at flush time.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from queueup.core.config import Settings, settings as default_settings
from queueup.models import (
    Bid,
    BidStatus,
    ChangeOrder,
    ChangeOrderStatus,
    Job,
    JobStatus,
    JobTimelineEntry,
    PaymentStatus,
    ProposalStatus,
    ScheduleProposal,
    ServiceType,
    Urgency,
    utcnow,
)
from queueup.services.jobStateManager import (
    BIDDABLE_STATUSES,
    SCHEDULED_STATUSES,
    SYSTEM_ACTOR,
    Actor,
    ActorType,
    validate_transition,
)
from queueup.services.pricingCalculator import to_money
from queueup.services.workflowErrors import (
    ConcurrentModificationError,
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Transition outcome
# ---------------------------------------------------------------------------

@dataclass
class CascadeResult:
    """Sub-entities resolved as a side effect of a job transition."""
    rejected_bids: list[Bid] = field(default_factory=list)
    withdrawn_proposals: list[ScheduleProposal] = field(default_factory=list)
    rejected_change_orders: list[ChangeOrder] = field(default_factory=list)
    expired_change_orders: list[ChangeOrder] = field(default_factory=list)


@dataclass
class TransitionOutcome:
    job: Job
    previous_status: JobStatus
    changed: bool
    cascade: CascadeResult = field(default_factory=CascadeResult)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _check_party(job: Job, target: JobStatus, actor: Actor) -> None:
    """Verify the actor is *the* customer / mechanic this transition needs."""
    if actor.is_privileged:
        return

    if target in (JobStatus.ACCEPTED, JobStatus.CANCELLED):
        if actor.role != ActorType.CUSTOMER or actor.id != job.customer_id:
            raise NotOwnerError(
                f"Only the customer who posted job {job.id} can do this."
            )
        return

    if target in (JobStatus.IN_PROGRESS, JobStatus.COMPLETED):
        if actor.role != ActorType.MECHANIC or actor.id != job.mechanic_id:
            raise NotOwnerError(
                f"Only the mechanic assigned to job {job.id} can do this."
            )
        return

    is_customer = actor.role == ActorType.CUSTOMER and actor.id == job.customer_id
    is_mechanic = (
        actor.role == ActorType.MECHANIC
        and job.mechanic_id is not None
        and actor.id == job.mechanic_id
    )
    if not (is_customer or is_mechanic):
        raise NotOwnerError(f"Actor {actor.id} is not a party to job {job.id}.")


def check_invariants(job: Job) -> None:
    """Structural invariants that must hold after every write."""
    if job.status in BIDDABLE_STATUSES and job.mechanic_id is not None:
        raise InvalidTransitionError(
            f"Job {job.id} cannot have a mechanic while '{job.status.value}'."
        )
    if job.status in SCHEDULED_STATUSES and (
        job.scheduled_date is None or job.scheduled_time is None
    ):
        raise InvalidTransitionError(
            f"Job {job.id} needs a scheduled date and time to be '{job.status.value}'."
        )
    if job.estimated_cost is not None and job.estimated_cost < 0:
        raise InvalidAmountError("Estimated cost cannot be negative.")


async def _flush(db: AsyncSession, job_id: uuid.UUID) -> None:
    try:
        await db.flush()
    except StaleDataError as exc:
        logger.warning("Concurrent modification detected on job %s", job_id)
        raise ConcurrentModificationError(
            f"Job {job_id} was modified concurrently; reload and retry."
        ) from exc


async def _cascade_cancellation(
    db: AsyncSession,
    job: Job,
    reason: str,
) -> CascadeResult:
    """Resolve every still-open sub-entity of a cancelled job."""
    now = utcnow()
    result = CascadeResult()

    bids = await db.execute(
        select(Bid).where(Bid.job_id == job.id, Bid.status == BidStatus.ACTIVE)
    )
    for bid in bids.scalars().all():
        bid.status = BidStatus.REJECTED
        bid.reason = reason
        bid.resolved_at = now
        result.rejected_bids.append(bid)

    proposals = await db.execute(
        select(ScheduleProposal).where(
            ScheduleProposal.job_id == job.id,
            ScheduleProposal.status == ProposalStatus.PENDING,
        )
    )
    for proposal in proposals.scalars().all():
        proposal.status = ProposalStatus.WITHDRAWN
        proposal.resolved_at = now
        result.withdrawn_proposals.append(proposal)

    orders = await db.execute(
        select(ChangeOrder).where(
            ChangeOrder.job_id == job.id,
            ChangeOrder.status == ChangeOrderStatus.PENDING,
        )
    )
    for order in orders.scalars().all():
        order.status = ChangeOrderStatus.REJECTED
        order.reason = reason
        order.resolved_at = now
        result.rejected_change_orders.append(order)

    return result


async def _expire_pending_change_orders(db: AsyncSession, job: Job) -> list[ChangeOrder]:
    now = utcnow()
    orders = await db.execute(
        select(ChangeOrder).where(
            ChangeOrder.job_id == job.id,
            ChangeOrder.status == ChangeOrderStatus.PENDING,
        )
    )
    expired = []
    for order in orders.scalars().all():
        order.status = ChangeOrderStatus.EXPIRED
        order.reason = "Job completed - change order no longer applicable"
        order.resolved_at = now
        expired.append(order)
    return expired


# ---------------------------------------------------------------------------
# Job creation & retrieval
# ---------------------------------------------------------------------------

async def create_job(
    db: AsyncSession,
    *,
    customer_id: uuid.UUID,
    category: str,
    location: str,
    description: str = "",
    subcategory: Optional[str] = None,
    urgency: Urgency | str = Urgency.MEDIUM,
    service_type: ServiceType | str = ServiceType.SHOP,
    estimated_cost: Decimal | int | float | str = Decimal("0"),
    vehicle_info: Optional[str] = None,
) -> Job:
    """Create a new job in ``posted`` status.

    Raises:
        InvalidAmountError: If the estimated cost is negative.
    """
    cost = to_money(estimated_cost)
    if cost < 0:
        raise InvalidAmountError("Estimated cost cannot be negative.")

    job = Job(
        id=uuid.uuid4(),
        customer_id=customer_id,
        category=category,
        subcategory=subcategory,
        description=description,
        vehicle_info=vehicle_info,
        urgency=Urgency(urgency),
        service_type=ServiceType(service_type),
        location=location,
        estimated_cost=cost,
        status=JobStatus.POSTED,
        change_order_total=Decimal("0.00"),
        payment_status=PaymentStatus.UNPAID,
    )
    db.add(job)
    await db.flush()

    logger.info(
        "Job created: job=%s, customer=%s, category=%s, estimate=%s",
        job.id,
        customer_id,
        category,
        cost,
    )
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    """Load a job by id.

    Raises:
        NotFoundError: If no such job exists.
    """
    result = await db.execute(select(Job).where(Job.id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job", job_id)
    return job


# ---------------------------------------------------------------------------
# State machine transition
# ---------------------------------------------------------------------------

def ensure_transition_allowed(job: Job, target: JobStatus, actor: Actor) -> None:
    """Raise unless the state machine lets ``actor`` move ``job`` to ``target``."""
    result = validate_transition(job.status, target, actor.role)
    if not result.allowed:
        if result.forbidden:
            raise NotOwnerError(result.reason or "Actor may not perform this transition.")
        raise InvalidTransitionError(result.reason or "Transition not allowed.")


async def apply_transition(
    db: AsyncSession,
    job_id: uuid.UUID,
    target_status: JobStatus | str,
    actor: Actor = SYSTEM_ACTOR,
    payload: dict[str, Any] | None = None,
    *,
    config: Settings | None = None,
) -> TransitionOutcome:
    """Validate and apply a status transition, returning what changed.

    Payload keys by target status:
      - ``accepted``: ``mechanic_id`` (required), ``bid_id``, ``amount``
      - ``scheduled``: ``scheduled_date`` and ``scheduled_time`` (required)
      - ``confirmed``: optional ``scheduled_date`` / ``scheduled_time``
      - ``completed``: optional ``completion_notes``
      - ``cancelled``: optional ``reason``

    A transition to the status the job is already in is a no-op that
    returns the current state, so callers may retry after a timeout.

    ``accepted`` and the schedule statuses are applied here only by the
    bidding engine and the schedule negotiator, which own the handshake
    around them.
    """
    config = config or default_settings
    payload = payload or {}
    target = JobStatus(target_status)
    job = await get_job(db, job_id)
    previous = job.status

    _check_party(job, target, actor)

    if job.status == target:
        logger.debug(
            "Transition retry ignored: job=%s already '%s'", job_id, target.value
        )
        return TransitionOutcome(job=job, previous_status=previous, changed=False)

    ensure_transition_allowed(job, target, actor)

    now = utcnow()
    cascade = CascadeResult()

    if target == JobStatus.ACCEPTED:
        mechanic_id = payload.get("mechanic_id")
        if mechanic_id is None:
            raise InvalidTransitionError("Accepting a job requires a mechanic_id.")
        job.mechanic_id = mechanic_id
        job.accepted_bid_id = payload.get("bid_id")
        if payload.get("amount") is not None:
            job.accepted_amount = to_money(payload["amount"])

    elif target == JobStatus.SCHEDULED:
        scheduled_date: date | None = payload.get("scheduled_date")
        scheduled_time: time | None = payload.get("scheduled_time")
        if scheduled_date is None or scheduled_time is None:
            raise InvalidTransitionError(
                "Scheduling a job requires scheduled_date and scheduled_time."
            )
        job.scheduled_date = scheduled_date
        job.scheduled_time = scheduled_time

    elif target == JobStatus.SCHEDULE_REJECTED:
        job.scheduled_date = None
        job.scheduled_time = None

    elif target == JobStatus.CONFIRMED:
        if payload.get("scheduled_date") is not None:
            job.scheduled_date = payload["scheduled_date"]
        if payload.get("scheduled_time") is not None:
            job.scheduled_time = payload["scheduled_time"]

    elif target == JobStatus.IN_PROGRESS:
        if (
            config.require_deposit_to_start
            and job.payment_status != PaymentStatus.DEPOSIT_PAID
        ):
            raise InvalidTransitionError(
                f"Job {job.id} cannot start before the booking deposit is paid."
            )
        job.started_at = now

    elif target == JobStatus.COMPLETED:
        job.completed_at = now
        if payload.get("completion_notes"):
            job.completion_notes = payload["completion_notes"]
        cascade.expired_change_orders = await _expire_pending_change_orders(db, job)

    elif target == JobStatus.CANCELLED:
        reason = payload.get("reason") or "Job cancelled"
        job.cancelled_at = now
        job.cancellation_reason = reason
        cascade = await _cascade_cancellation(db, job, reason)

    job.status = target
    check_invariants(job)
    await _flush(db, job.id)

    logger.info(
        "Job transitioned: job=%s, %s -> %s, actor=%s:%s",
        job.id,
        previous.value,
        target.value,
        actor.role.value,
        actor.id,
    )
    return TransitionOutcome(
        job=job, previous_status=previous, changed=True, cascade=cascade
    )


async def transition(
    db: AsyncSession,
    job_id: uuid.UUID,
    target_status: JobStatus | str,
    actor: Actor = SYSTEM_ACTOR,
    payload: dict[str, Any] | None = None,
    *,
    config: Settings | None = None,
) -> Job:
    """Validate and apply a status transition, returning the updated job.

    Raises:
        NotFoundError: If the job does not exist.
        InvalidTransitionError: If the state machine forbids the change.
        NotOwnerError: If the actor has no authority over this transition.
        ConcurrentModificationError: If another writer got there first.
    """
    outcome = await apply_transition(
        db, job_id, target_status, actor, payload, config=config
    )
    return outcome.job


async def save(db: AsyncSession, job: Job) -> Job:
    """Flush field changes that are not status transitions (e.g. payments)."""
    check_invariants(job)
    await _flush(db, job.id)
    return job


# ---------------------------------------------------------------------------
# Read projections
# ---------------------------------------------------------------------------

async def get_by_customer(
    db: AsyncSession,
    customer_id: uuid.UUID,
    *,
    status: Optional[JobStatus] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[Job]:
    stmt = select(Job).where(Job.customer_id == customer_id)
    if status is not None:
        stmt = stmt.where(Job.status == status)
    stmt = stmt.order_by(Job.created_at.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_by_mechanic(
    db: AsyncSession,
    mechanic_id: uuid.UUID,
    *,
    status: Optional[JobStatus] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[Job]:
    stmt = select(Job).where(Job.mechanic_id == mechanic_id)
    if status is not None:
        stmt = stmt.where(Job.status == status)
    stmt = stmt.order_by(Job.created_at.desc()).offset(offset)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_available(
    db: AsyncSession,
    *,
    limit: Optional[int] = None,
    offset: int = 0,
) -> list[Job]:
    """Jobs open for bidding: posted/bidding with no mechanic assigned."""
    stmt = (
        select(Job)
        .where(
            Job.status.in_(list(BIDDABLE_STATUSES)),
            Job.mechanic_id.is_(None),
        )
        .order_by(Job.created_at.desc())
        .offset(offset)
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_by_status(db: AsyncSession, status: JobStatus) -> list[Job]:
    result = await db.execute(
        select(Job).where(Job.status == status).order_by(Job.created_at.desc())
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Progression timeline
# ---------------------------------------------------------------------------

async def record_timeline(
    db: AsyncSession,
    job_id: uuid.UUID,
    event_type: str,
    message: str,
    *,
    actor: Actor | None = None,
    data: dict[str, Any] | None = None,
) -> JobTimelineEntry:
    """Append an entry to the job's progression timeline."""
    last = await db.execute(
        select(func.max(JobTimelineEntry.sequence)).where(
            JobTimelineEntry.job_id == job_id
        )
    )
    sequence = (last.scalar() or 0) + 1
    entry = JobTimelineEntry(
        id=uuid.uuid4(),
        job_id=job_id,
        event_type=event_type,
        actor_id=actor.id if actor else None,
        actor_role=actor.role.value if actor else None,
        message=message,
        data_json=data,
        created_at=utcnow(),
        sequence=sequence,
    )
    db.add(entry)
    await db.flush()
    return entry


async def get_timeline(db: AsyncSession, job_id: uuid.UUID) -> Sequence[JobTimelineEntry]:
    result = await db.execute(
        select(JobTimelineEntry)
        .where(JobTimelineEntry.job_id == job_id)
        .order_by(JobTimelineEntry.sequence)
    )
    return list(result.scalars().all())
