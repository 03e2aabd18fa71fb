"""
Unit tests for the Schedule Negotiator.

Tests proposals, counter-proposals, re-proposals by the same party,
acceptance and rejection by the counterpart only, and the renegotiation
loop through ``schedule_rejected``.
"""

from __future__ import annotations

from datetime import date, time

import pytest

from queueup.models import JobStatus, ProposalStatus
from queueup.services import jobStore, scheduleNegotiator
from queueup.services.jobStateManager import SYSTEM_ACTOR
from queueup.services.scheduleNegotiator import ProposedSlot
from queueup.services.workflowErrors import (
    JobNotInNegotiableStateError,
    NoPendingProposalError,
    NotOwnerError,
    WrongActorError,
)
from tests.conftest import (
    CUSTOMER,
    CUSTOMER_ID,
    MECHANIC,
    MECHANIC_ID,
    OTHER_MECHANIC,
    SERVICE_DATE,
    SERVICE_TIME,
)

COUNTER_DATE = date(2024, 6, 2)
COUNTER_TIME = time(14, 0)


async def _accepted_job(db):
    job = await jobStore.create_job(
        db,
        customer_id=CUSTOMER_ID,
        category="Maintenance",
        subcategory="oil-change",
        location="9 Oak Ave",
        estimated_cost="60.00",
    )
    await jobStore.transition(db, job.id, JobStatus.BIDDING, SYSTEM_ACTOR)
    return await jobStore.transition(
        db, job.id, JobStatus.ACCEPTED, CUSTOMER, {"mechanic_id": MECHANIC_ID}
    )


# ---------------------------------------------------------------------------
# Proposing
# ---------------------------------------------------------------------------


class TestPropose:
    async def test_first_proposal_schedules_job(self, db):
        job = await _accepted_job(db)
        outcome = await scheduleNegotiator.propose(
            db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME, "Morning works best"
        )

        assert outcome.job.status == JobStatus.SCHEDULED
        assert outcome.job.scheduled_date == SERVICE_DATE
        assert outcome.job.scheduled_time == SERVICE_TIME
        assert outcome.proposal.proposed_by == "customer"
        assert outcome.proposal.status == ProposalStatus.PENDING
        assert outcome.proposal.notes == "Morning works best"
        assert outcome.replaced is None
        assert outcome.is_counter is False

    async def test_same_party_reproposal_supersedes(self, db):
        job = await _accepted_job(db)
        first = await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        second = await scheduleNegotiator.propose(db, job.id, CUSTOMER, COUNTER_DATE, COUNTER_TIME)

        assert first.proposal.status == ProposalStatus.SUPERSEDED
        assert second.replaced is first.proposal
        assert second.is_counter is False
        assert second.job.status == JobStatus.SCHEDULED
        assert second.job.scheduled_date == COUNTER_DATE

    async def test_counterpart_proposal_is_a_counter(self, db):
        job = await _accepted_job(db)
        first = await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        counter = await scheduleNegotiator.propose(db, job.id, MECHANIC, COUNTER_DATE, COUNTER_TIME)

        assert first.proposal.status == ProposalStatus.REJECTED
        assert counter.is_counter is True
        assert counter.proposal.proposed_by == "mechanic"
        assert counter.job.status == JobStatus.SCHEDULED
        assert counter.job.scheduled_time == COUNTER_TIME

    async def test_only_one_pending_proposal(self, db):
        job = await _accepted_job(db)
        await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        await scheduleNegotiator.propose(db, job.id, MECHANIC, COUNTER_DATE, COUNTER_TIME)
        await scheduleNegotiator.propose(db, job.id, MECHANIC, SERVICE_DATE, COUNTER_TIME)

        history = await scheduleNegotiator.list_proposals(db, job.id)
        assert len(history) == 3
        assert [p.status for p in history].count(ProposalStatus.PENDING) == 1

    async def test_stranger_cannot_propose(self, db):
        job = await _accepted_job(db)
        with pytest.raises(NotOwnerError):
            await scheduleNegotiator.propose(db, job.id, OTHER_MECHANIC, SERVICE_DATE, SERVICE_TIME)

    async def test_cannot_propose_before_acceptance(self, db):
        job = await jobStore.create_job(
            db, customer_id=CUSTOMER_ID, category="Repair", location="1 Pine Rd"
        )
        with pytest.raises(JobNotInNegotiableStateError):
            await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)


# ---------------------------------------------------------------------------
# Accepting
# ---------------------------------------------------------------------------


class TestAccept:
    async def test_counterpart_confirms(self, db):
        job = await _accepted_job(db)
        proposed = await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        result = await scheduleNegotiator.accept(db, job.id, MECHANIC)

        assert result.changed is True
        assert result.job.status == JobStatus.CONFIRMED
        assert result.job.scheduled_date == SERVICE_DATE
        assert result.proposal.id == proposed.proposal.id
        assert result.proposal.status == ProposalStatus.ACCEPTED

    async def test_proposer_cannot_accept_own_proposal(self, db):
        job = await _accepted_job(db)
        await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        with pytest.raises(WrongActorError) as exc_info:
            await scheduleNegotiator.accept(db, job.id, CUSTOMER)
        assert exc_info.value.code == "wrong_actor"

    async def test_nothing_to_accept(self, db):
        job = await _accepted_job(db)
        with pytest.raises(NoPendingProposalError):
            await scheduleNegotiator.accept(db, job.id, MECHANIC)

    async def test_repeat_confirm_is_noop(self, db):
        job = await _accepted_job(db)
        await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        first = await scheduleNegotiator.accept(db, job.id, MECHANIC)
        again = await scheduleNegotiator.accept(db, job.id, MECHANIC)

        assert again.changed is False
        assert again.job.status == JobStatus.CONFIRMED
        assert again.job.version == first.job.version
        assert again.proposal.id == first.proposal.id

    async def test_cannot_renegotiate_after_confirmation(self, db):
        job = await _accepted_job(db)
        await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        await scheduleNegotiator.accept(db, job.id, MECHANIC)
        with pytest.raises(JobNotInNegotiableStateError):
            await scheduleNegotiator.propose(db, job.id, MECHANIC, COUNTER_DATE, COUNTER_TIME)
        with pytest.raises(JobNotInNegotiableStateError):
            await scheduleNegotiator.reject(db, job.id, MECHANIC)


# ---------------------------------------------------------------------------
# Rejecting
# ---------------------------------------------------------------------------


class TestReject:
    async def test_reject_with_counter_proposal(self, db):
        """Customer proposes June 1 10:00; mechanic counters with June 2 14:00."""
        job = await _accepted_job(db)
        original = await scheduleNegotiator.propose(
            db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME
        )

        result = await scheduleNegotiator.reject(
            db, job.id, MECHANIC, ProposedSlot(COUNTER_DATE, COUNTER_TIME, "Afternoon only")
        )

        assert result.rejected.id == original.proposal.id
        assert result.rejected.status == ProposalStatus.REJECTED
        assert result.counter is not None
        assert result.counter.proposed_by == "mechanic"
        assert result.counter.status == ProposalStatus.PENDING
        assert result.job.status == JobStatus.SCHEDULED
        assert result.job.scheduled_date == COUNTER_DATE
        assert result.job.scheduled_time == COUNTER_TIME

        # now the customer answers the counter
        confirmed = await scheduleNegotiator.accept(db, job.id, CUSTOMER)
        assert confirmed.job.status == JobStatus.CONFIRMED
        assert confirmed.job.scheduled_date == COUNTER_DATE

    async def test_reject_without_counter_waits_for_new_proposal(self, db):
        job = await _accepted_job(db)
        await scheduleNegotiator.propose(db, job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
        result = await scheduleNegotiator.reject(db, job.id, MECHANIC)

        assert result.counter is None
        assert result.job.status == JobStatus.SCHEDULE_REJECTED
        assert result.job.scheduled_date is None
        assert await scheduleNegotiator.get_pending_proposal(db, job.id) is None

        with pytest.raises(NoPendingProposalError):
            await scheduleNegotiator.accept(db, job.id, CUSTOMER)

        again = await scheduleNegotiator.propose(db, job.id, MECHANIC, COUNTER_DATE, COUNTER_TIME)
        assert again.job.status == JobStatus.SCHEDULED

    async def test_proposer_cannot_reject_own_proposal(self, db):
        job = await _accepted_job(db)
        await scheduleNegotiator.propose(db, job.id, MECHANIC, SERVICE_DATE, SERVICE_TIME)
        with pytest.raises(WrongActorError):
            await scheduleNegotiator.reject(db, job.id, MECHANIC)

    async def test_nothing_to_reject(self, db):
        job = await _accepted_job(db)
        with pytest.raises(NoPendingProposalError):
            await scheduleNegotiator.reject(db, job.id, CUSTOMER)
