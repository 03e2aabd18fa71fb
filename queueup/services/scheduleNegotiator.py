"""
Schedule Negotiator
===================

Customer and mechanic agree on a service date/time after a bid is accepted.

Negotiation loop::

    accepted --propose--> scheduled --accept--> confirmed
                              |
                           reject
                              v
                      schedule_rejected --propose--> scheduled

Only one proposal per job is ``pending`` at a time:

- A re-proposal by the same party supersedes the pending one and moves the
  job's date/time.
- A proposal by the counterpart while one is pending is a counter-proposal:
  the pending one is rejected and the job passes through
  ``schedule_rejected`` back to ``scheduled``.
- Only the counterpart of the last proposer may accept or reject.

Rejection with a counter-proposal and the two-step reject-then-propose
flow end in the same state.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, time
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from queueup.models import Job, JobStatus, ProposalStatus, ScheduleProposal, utcnow
from queueup.services import jobStore
from queueup.services.jobStateManager import Actor, ActorType
from queueup.services.workflowErrors import (
    JobNotInNegotiableStateError,
    NoPendingProposalError,
    NotOwnerError,
    WrongActorError,
)

logger = logging.getLogger(__name__)

NEGOTIABLE_STATUSES = frozenset({
    JobStatus.ACCEPTED,
    JobStatus.SCHEDULED,
    JobStatus.SCHEDULE_REJECTED,
})


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProposedSlot:
    """A date/time offered by one party, e.g. as a counter-proposal."""
    proposed_date: date
    proposed_time: time
    notes: Optional[str] = None


@dataclass
class ProposalOutcome:
    proposal: ScheduleProposal
    job: Job
    replaced: Optional[ScheduleProposal] = None
    is_counter: bool = False


@dataclass
class ScheduleAcceptance:
    job: Job
    proposal: Optional[ScheduleProposal]
    changed: bool = True


@dataclass
class ScheduleRejection:
    job: Job
    rejected: ScheduleProposal
    counter: Optional[ScheduleProposal] = None


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _party_role(job: Job, actor: Actor) -> str:
    """Return ``"customer"`` or ``"mechanic"`` for a party of the job."""
    if actor.role == ActorType.CUSTOMER and actor.id == job.customer_id:
        return ActorType.CUSTOMER.value
    if (
        actor.role == ActorType.MECHANIC
        and job.mechanic_id is not None
        and actor.id == job.mechanic_id
    ):
        return ActorType.MECHANIC.value
    raise NotOwnerError(f"Actor {actor.id} is not a party to job {job.id}.")


def _require_answerable(job: Job) -> None:
    if job.status in (JobStatus.ACCEPTED, JobStatus.SCHEDULE_REJECTED):
        raise NoPendingProposalError(f"Job {job.id} has no pending schedule proposal.")
    if job.status != JobStatus.SCHEDULED:
        raise JobNotInNegotiableStateError(
            f"Job {job.id} is not negotiating a schedule (status: {job.status.value})."
        )


async def _new_proposal(
    db: AsyncSession,
    job: Job,
    role: str,
    actor: Actor,
    slot: ProposedSlot,
) -> ScheduleProposal:
    proposal = ScheduleProposal(
        id=uuid.uuid4(),
        job_id=job.id,
        proposed_by=role,
        proposer_id=actor.id,
        proposed_date=slot.proposed_date,
        proposed_time=slot.proposed_time,
        notes=slot.notes,
        status=ProposalStatus.PENDING,
    )
    db.add(proposal)
    await db.flush()
    return proposal


def _slot_payload(slot: ProposedSlot) -> dict:
    return {"scheduled_date": slot.proposed_date, "scheduled_time": slot.proposed_time}


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_pending_proposal(
    db: AsyncSession,
    job_id: uuid.UUID,
) -> Optional[ScheduleProposal]:
    result = await db.execute(
        select(ScheduleProposal)
        .where(
            ScheduleProposal.job_id == job_id,
            ScheduleProposal.status == ProposalStatus.PENDING,
        )
        .order_by(ScheduleProposal.created_at.desc())
    )
    return result.scalars().first()


async def list_proposals(db: AsyncSession, job_id: uuid.UUID) -> list[ScheduleProposal]:
    """Full negotiation history of a job, oldest first."""
    result = await db.execute(
        select(ScheduleProposal)
        .where(ScheduleProposal.job_id == job_id)
        .order_by(ScheduleProposal.created_at)
    )
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------

async def propose(
    db: AsyncSession,
    job_id: uuid.UUID,
    actor: Actor,
    proposed_date: date,
    proposed_time: time,
    notes: Optional[str] = None,
) -> ProposalOutcome:
    """Offer a service date/time for the job.

    Raises:
        NotFoundError: If the job does not exist.
        NotOwnerError: If the actor is not the customer or assigned mechanic.
        JobNotInNegotiableStateError: If the job is not accepted, scheduled
            or schedule_rejected.
    """
    job = await jobStore.get_job(db, job_id)
    role = _party_role(job, actor)
    if job.status not in NEGOTIABLE_STATUSES:
        raise JobNotInNegotiableStateError(
            f"Job {job_id} cannot be scheduled in status '{job.status.value}'."
        )

    slot = ProposedSlot(proposed_date, proposed_time, notes)
    now = utcnow()
    pending = await get_pending_proposal(db, job_id)
    is_counter = pending is not None and pending.proposed_by != role

    if pending is not None:
        pending.status = ProposalStatus.REJECTED if is_counter else ProposalStatus.SUPERSEDED
        pending.resolved_at = now

    proposal = await _new_proposal(db, job, role, actor, slot)

    if job.status == JobStatus.SCHEDULED and is_counter:
        await jobStore.transition(db, job_id, JobStatus.SCHEDULE_REJECTED, actor)
        job = await jobStore.transition(
            db, job_id, JobStatus.SCHEDULED, actor, _slot_payload(slot)
        )
    elif job.status == JobStatus.SCHEDULED:
        job.scheduled_date = proposed_date
        job.scheduled_time = proposed_time
        await jobStore.save(db, job)
    else:
        job = await jobStore.transition(
            db, job_id, JobStatus.SCHEDULED, actor, _slot_payload(slot)
        )

    logger.info(
        "Schedule proposed: job=%s, proposal=%s, by=%s, at=%s %s, counter=%s",
        job_id,
        proposal.id,
        role,
        proposed_date,
        proposed_time,
        is_counter,
    )
    return ProposalOutcome(
        proposal=proposal, job=job, replaced=pending, is_counter=is_counter
    )


async def accept(db: AsyncSession, job_id: uuid.UUID, actor: Actor) -> ScheduleAcceptance:
    """Counterpart accepts the pending proposal; the job becomes ``confirmed``.

    Accepting on an already-confirmed job returns it unchanged.

    Raises:
        NotOwnerError: If the actor is not a party to the job.
        NoPendingProposalError: If nothing is awaiting an answer.
        WrongActorError: If the actor made the pending proposal.
        JobNotInNegotiableStateError: If the job is past negotiation.
    """
    job = await jobStore.get_job(db, job_id)
    role = _party_role(job, actor)

    if job.status == JobStatus.CONFIRMED:
        logger.debug("Schedule acceptance retry ignored: job=%s", job_id)
        result = await db.execute(
            select(ScheduleProposal)
            .where(
                ScheduleProposal.job_id == job_id,
                ScheduleProposal.status == ProposalStatus.ACCEPTED,
            )
            .order_by(ScheduleProposal.created_at.desc())
        )
        return ScheduleAcceptance(job=job, proposal=result.scalars().first(), changed=False)

    _require_answerable(job)
    pending = await get_pending_proposal(db, job_id)
    if pending is None:
        raise NoPendingProposalError(f"Job {job_id} has no pending schedule proposal.")
    if pending.proposed_by == role:
        raise WrongActorError("You cannot accept your own schedule proposal.")

    pending.status = ProposalStatus.ACCEPTED
    pending.resolved_at = utcnow()
    job = await jobStore.transition(
        db,
        job_id,
        JobStatus.CONFIRMED,
        actor,
        {"scheduled_date": pending.proposed_date, "scheduled_time": pending.proposed_time},
    )

    logger.info(
        "Schedule confirmed: job=%s, proposal=%s, at=%s %s",
        job_id,
        pending.id,
        pending.proposed_date,
        pending.proposed_time,
    )
    return ScheduleAcceptance(job=job, proposal=pending)


async def reject(
    db: AsyncSession,
    job_id: uuid.UUID,
    actor: Actor,
    counter_proposal: Optional[ProposedSlot] = None,
) -> ScheduleRejection:
    """Counterpart rejects the pending proposal, optionally countering.

    Without a counter-proposal the job rests in ``schedule_rejected`` until
    either party proposes again.
    """
    job = await jobStore.get_job(db, job_id)
    role = _party_role(job, actor)
    _require_answerable(job)

    pending = await get_pending_proposal(db, job_id)
    if pending is None:
        raise NoPendingProposalError(f"Job {job_id} has no pending schedule proposal.")
    if pending.proposed_by == role:
        raise WrongActorError("You cannot reject your own schedule proposal.")

    pending.status = ProposalStatus.REJECTED
    pending.resolved_at = utcnow()
    job = await jobStore.transition(db, job_id, JobStatus.SCHEDULE_REJECTED, actor)

    counter = None
    if counter_proposal is not None:
        counter = await _new_proposal(db, job, role, actor, counter_proposal)
        job = await jobStore.transition(
            db, job_id, JobStatus.SCHEDULED, actor, _slot_payload(counter_proposal)
        )

    logger.info(
        "Schedule rejected: job=%s, proposal=%s, by=%s, countered=%s",
        job_id,
        pending.id,
        role,
        counter is not None,
    )
    return ScheduleRejection(job=job, rejected=pending, counter=counter)
