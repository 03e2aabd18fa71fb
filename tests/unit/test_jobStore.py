"""
Unit tests for the Job Store.

Tests job creation, validated transitions and their side effects, party
checks, idempotent retries, the cancellation cascade, the read projections
and the progression timeline.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from queueup.models import (
    Bid,
    BidStatus,
    ChangeOrder,
    ChangeOrderStatus,
    JobStatus,
    PaymentStatus,
    ProposalStatus,
    ScheduleProposal,
)
from queueup.services import jobStore
from queueup.services.jobStateManager import SYSTEM_ACTOR
from queueup.services.workflowErrors import (
    InvalidAmountError,
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
)
from tests.conftest import (
    ADMIN,
    CUSTOMER,
    CUSTOMER_ID,
    MECHANIC,
    MECHANIC_ID,
    OTHER_CUSTOMER,
    OTHER_MECHANIC,
    OTHER_MECHANIC_ID,
    SERVICE_DATE,
    SERVICE_TIME,
)


async def _new_job(db, **overrides):
    fields = {
        "customer_id": CUSTOMER_ID,
        "category": "Repair",
        "location": "123 Main St",
        "description": "Check engine light",
        "estimated_cost": "100.00",
    }
    fields.update(overrides)
    return await jobStore.create_job(db, **fields)


async def _accepted_job(db):
    job = await _new_job(db)
    await jobStore.transition(db, job.id, JobStatus.BIDDING, SYSTEM_ACTOR)
    return await jobStore.transition(
        db, job.id, JobStatus.ACCEPTED, CUSTOMER, {"mechanic_id": MECHANIC_ID}
    )


async def _confirmed_job(db, *, deposit_paid=True):
    job = await _accepted_job(db)
    await jobStore.transition(
        db,
        job.id,
        JobStatus.SCHEDULED,
        CUSTOMER,
        {"scheduled_date": SERVICE_DATE, "scheduled_time": SERVICE_TIME},
    )
    job = await jobStore.transition(db, job.id, JobStatus.CONFIRMED, MECHANIC)
    if deposit_paid:
        job.payment_status = PaymentStatus.DEPOSIT_PAID
        await jobStore.save(db, job)
    return job


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateJob:
    async def test_new_job_is_posted(self, db):
        job = await _new_job(db)
        assert job.status == JobStatus.POSTED
        assert job.mechanic_id is None
        assert job.estimated_cost == Decimal("100.00")
        assert job.change_order_total == Decimal("0.00")
        assert job.payment_status == PaymentStatus.UNPAID
        assert job.version == 1

    async def test_estimated_cost_rounded_to_cents(self, db):
        job = await _new_job(db, estimated_cost="99.995")
        assert job.estimated_cost == Decimal("100.00")

    async def test_negative_cost_rejected(self, db):
        with pytest.raises(InvalidAmountError):
            await _new_job(db, estimated_cost="-1")

    async def test_get_unknown_job(self, db):
        with pytest.raises(NotFoundError) as exc_info:
            await jobStore.get_job(db, uuid.uuid4())
        assert exc_info.value.code == "not_found"


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


class TestTransition:
    async def test_accept_assigns_mechanic(self, db):
        job = await _accepted_job(db)
        assert job.status == JobStatus.ACCEPTED
        assert job.mechanic_id == MECHANIC_ID

    async def test_accept_requires_mechanic(self, db):
        job = await _new_job(db)
        await jobStore.transition(db, job.id, JobStatus.BIDDING, SYSTEM_ACTOR)
        with pytest.raises(InvalidTransitionError):
            await jobStore.transition(db, job.id, JobStatus.ACCEPTED, CUSTOMER, {})

    async def test_schedule_requires_date_and_time(self, db):
        job = await _accepted_job(db)
        with pytest.raises(InvalidTransitionError):
            await jobStore.transition(
                db, job.id, JobStatus.SCHEDULED, CUSTOMER, {"scheduled_date": SERVICE_DATE}
            )

    async def test_schedule_rejected_clears_slot(self, db):
        job = await _accepted_job(db)
        await jobStore.transition(
            db,
            job.id,
            JobStatus.SCHEDULED,
            CUSTOMER,
            {"scheduled_date": SERVICE_DATE, "scheduled_time": SERVICE_TIME},
        )
        job = await jobStore.transition(db, job.id, JobStatus.SCHEDULE_REJECTED, MECHANIC)
        assert job.scheduled_date is None
        assert job.scheduled_time is None

    async def test_structurally_invalid_transition(self, db):
        job = await _new_job(db)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await jobStore.transition(db, job.id, JobStatus.COMPLETED, ADMIN)
        assert exc_info.value.code == "invalid_transition"

    async def test_start_requires_deposit(self, db):
        job = await _confirmed_job(db, deposit_paid=False)
        with pytest.raises(InvalidTransitionError) as exc_info:
            await jobStore.transition(db, job.id, JobStatus.IN_PROGRESS, MECHANIC)
        assert "deposit" in exc_info.value.message

    async def test_start_and_complete(self, db):
        job = await _confirmed_job(db)
        job = await jobStore.transition(db, job.id, JobStatus.IN_PROGRESS, MECHANIC)
        assert job.started_at is not None
        job = await jobStore.transition(
            db, job.id, JobStatus.COMPLETED, MECHANIC, {"completion_notes": "Done"}
        )
        assert job.status == JobStatus.COMPLETED
        assert job.completed_at is not None
        assert job.completion_notes == "Done"

    async def test_version_increments_on_every_write(self, db):
        job = await _accepted_job(db)
        assert job.version == 3

    async def test_retry_of_landed_transition_is_noop(self, db):
        job = await _accepted_job(db)
        outcome = await jobStore.apply_transition(
            db, job.id, JobStatus.ACCEPTED, CUSTOMER, {"mechanic_id": OTHER_MECHANIC_ID}
        )
        assert outcome.changed is False
        assert outcome.job.mechanic_id == MECHANIC_ID
        assert outcome.job.version == 3

    async def test_terminal_job_cannot_move(self, db):
        job = await _new_job(db)
        await jobStore.transition(db, job.id, JobStatus.CANCELLED, CUSTOMER)
        with pytest.raises(InvalidTransitionError):
            await jobStore.transition(db, job.id, JobStatus.BIDDING, SYSTEM_ACTOR)


class TestPartyChecks:
    """Guards that depend on which customer or mechanic is asking."""

    async def test_other_customer_cannot_cancel(self, db):
        job = await _new_job(db)
        with pytest.raises(NotOwnerError):
            await jobStore.transition(db, job.id, JobStatus.CANCELLED, OTHER_CUSTOMER)

    async def test_unassigned_mechanic_cannot_start(self, db):
        job = await _confirmed_job(db)
        with pytest.raises(NotOwnerError):
            await jobStore.transition(db, job.id, JobStatus.IN_PROGRESS, OTHER_MECHANIC)

    async def test_customer_cannot_start(self, db):
        job = await _confirmed_job(db)
        with pytest.raises(NotOwnerError):
            await jobStore.transition(db, job.id, JobStatus.IN_PROGRESS, CUSTOMER)

    async def test_assigned_mechanic_cannot_cancel(self, db):
        job = await _confirmed_job(db)
        with pytest.raises(NotOwnerError):
            await jobStore.transition(db, job.id, JobStatus.CANCELLED, MECHANIC)

    async def test_customer_cannot_open_bidding(self, db):
        job = await _new_job(db)
        with pytest.raises(NotOwnerError):
            await jobStore.transition(db, job.id, JobStatus.BIDDING, CUSTOMER)

    async def test_admin_bypasses_party_checks(self, db):
        job = await _confirmed_job(db)
        job = await jobStore.transition(db, job.id, JobStatus.CANCELLED, ADMIN)
        assert job.status == JobStatus.CANCELLED


# ---------------------------------------------------------------------------
# Cascades
# ---------------------------------------------------------------------------


class TestCancellationCascade:
    async def test_cancel_resolves_open_sub_entities(self, db):
        job = await _new_job(db)
        bid = Bid(job_id=job.id, mechanic_id=MECHANIC_ID, amount=Decimal("80"), status=BidStatus.ACTIVE)
        withdrawn = Bid(
            job_id=job.id, mechanic_id=OTHER_MECHANIC_ID, amount=Decimal("70"),
            status=BidStatus.WITHDRAWN,
        )
        db.add_all([bid, withdrawn])
        await db.flush()

        outcome = await jobStore.apply_transition(
            db, job.id, JobStatus.CANCELLED, CUSTOMER, {"reason": "Fixed it myself"}
        )

        assert outcome.job.cancellation_reason == "Fixed it myself"
        assert outcome.job.cancelled_at is not None
        assert [b.id for b in outcome.cascade.rejected_bids] == [bid.id]
        assert bid.status == BidStatus.REJECTED
        assert bid.reason == "Fixed it myself"
        assert withdrawn.status == BidStatus.WITHDRAWN

    async def test_cancel_withdraws_pending_proposal(self, db):
        job = await _accepted_job(db)
        proposal = ScheduleProposal(
            job_id=job.id,
            proposed_by="customer",
            proposer_id=CUSTOMER_ID,
            proposed_date=SERVICE_DATE,
            proposed_time=SERVICE_TIME,
            status=ProposalStatus.PENDING,
        )
        db.add(proposal)
        await db.flush()

        outcome = await jobStore.apply_transition(db, job.id, JobStatus.CANCELLED, CUSTOMER)

        assert proposal.status == ProposalStatus.WITHDRAWN
        assert outcome.cascade.withdrawn_proposals == [proposal]
        assert outcome.job.cancellation_reason == "Job cancelled"

    async def test_cancel_in_progress_rejects_pending_change_orders(self, db):
        job = await _confirmed_job(db)
        await jobStore.transition(db, job.id, JobStatus.IN_PROGRESS, MECHANIC)
        order = ChangeOrder(
            job_id=job.id,
            mechanic_id=MECHANIC_ID,
            customer_id=CUSTOMER_ID,
            description="Rotors worn",
            amount=Decimal("60"),
            status=ChangeOrderStatus.PENDING,
        )
        db.add(order)
        await db.flush()

        outcome = await jobStore.apply_transition(db, job.id, JobStatus.CANCELLED, CUSTOMER)

        assert order.status == ChangeOrderStatus.REJECTED
        assert outcome.cascade.rejected_change_orders == [order]

    async def test_complete_expires_pending_change_orders(self, db):
        job = await _confirmed_job(db)
        await jobStore.transition(db, job.id, JobStatus.IN_PROGRESS, MECHANIC)
        order = ChangeOrder(
            job_id=job.id,
            mechanic_id=MECHANIC_ID,
            customer_id=CUSTOMER_ID,
            description="Wiper blades",
            amount=Decimal("25"),
            status=ChangeOrderStatus.PENDING,
        )
        db.add(order)
        await db.flush()

        outcome = await jobStore.apply_transition(db, job.id, JobStatus.COMPLETED, MECHANIC)

        assert order.status == ChangeOrderStatus.EXPIRED
        assert outcome.cascade.expired_change_orders == [order]
        assert outcome.job.change_order_total == Decimal("0.00")


# ---------------------------------------------------------------------------
# Projections
# ---------------------------------------------------------------------------


class TestProjections:
    async def test_by_customer_and_status(self, db):
        posted = await _new_job(db)
        accepted = await _accepted_job(db)
        await _new_job(db, customer_id=OTHER_CUSTOMER.id)

        mine = await jobStore.get_by_customer(db, CUSTOMER_ID)
        assert {j.id for j in mine} == {posted.id, accepted.id}

        only_accepted = await jobStore.get_by_customer(db, CUSTOMER_ID, status=JobStatus.ACCEPTED)
        assert [j.id for j in only_accepted] == [accepted.id]

    async def test_by_mechanic(self, db):
        await _new_job(db)
        accepted = await _accepted_job(db)
        assigned = await jobStore.get_by_mechanic(db, MECHANIC_ID)
        assert [j.id for j in assigned] == [accepted.id]
        assert await jobStore.get_by_mechanic(db, OTHER_MECHANIC_ID) == []

    async def test_available_excludes_assigned_and_terminal(self, db):
        posted = await _new_job(db)
        bidding = await _new_job(db)
        await jobStore.transition(db, bidding.id, JobStatus.BIDDING, SYSTEM_ACTOR)
        await _accepted_job(db)
        cancelled = await _new_job(db)
        await jobStore.transition(db, cancelled.id, JobStatus.CANCELLED, CUSTOMER)

        available = await jobStore.get_available(db)
        assert {j.id for j in available} == {posted.id, bidding.id}

    async def test_limit_and_offset(self, db):
        for _ in range(3):
            await _new_job(db)
        page = await jobStore.get_by_customer(db, CUSTOMER_ID, limit=2)
        rest = await jobStore.get_by_customer(db, CUSTOMER_ID, limit=2, offset=2)
        assert len(page) == 2
        assert len(rest) == 1

    async def test_by_status(self, db):
        job = await _new_job(db)
        assert [j.id for j in await jobStore.get_by_status(db, JobStatus.POSTED)] == [job.id]


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


class TestTimeline:
    async def test_entries_are_sequenced(self, db):
        job = await _new_job(db)
        await jobStore.record_timeline(db, job.id, "job_created", "Job posted", actor=CUSTOMER)
        await jobStore.record_timeline(
            db, job.id, "bid_placed", "Bid placed", actor=MECHANIC, data={"amount": "90.00"}
        )

        entries = await jobStore.get_timeline(db, job.id)
        assert [e.sequence for e in entries] == [1, 2]
        assert [e.event_type for e in entries] == ["job_created", "bid_placed"]
        assert entries[0].actor_role == "customer"
        assert entries[1].data_json == {"amount": "90.00"}

    async def test_sequences_are_per_job(self, db):
        first = await _new_job(db)
        second = await _new_job(db)
        await jobStore.record_timeline(db, first.id, "job_created", "Job posted")
        entry = await jobStore.record_timeline(db, second.id, "job_created", "Job posted")
        assert entry.sequence == 1
        assert entry.actor_id is None
