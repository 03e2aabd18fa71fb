"""
Workflow Orchestrator
=====================

Single entry point through which clients drive a job through its
lifecycle. Every mutating operation runs as one unit of work:

  1. acquire the per-job lock (bounded wait)
  2. open a session transaction and re-read the job
  3. re-validate preconditions on that fresh state and apply the change
  4. append timeline entries in the same transaction
  5. commit and release the lock
  6. publish domain events (subscriber failures are logged, never raised)

The orchestrator holds no global state; the application builds one instance
with its collaborators and keeps it on ``app.state``.
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from queueup.core.config import Settings, settings as default_settings
from queueup.events.jobEvents import DomainEvent, EventBus, JobEventType, build_event
from queueup.integrations.stripe.paymentService import ChargeResult, PaymentGateway
from queueup.models import (
    Bid,
    BidStatus,
    ChangeOrder,
    ChangeOrderStatus,
    Job,
    JobStatus,
    JobTimelineEntry,
    PaymentStatus,
    ScheduleProposal,
    ServiceType,
    Urgency,
)
from queueup.services import (
    biddingEngine,
    changeOrderService,
    jobStore,
    pricingCalculator,
    scheduleNegotiator,
)
from queueup.services.biddingEngine import BidAcceptance, BidStats
from queueup.services.changeOrderService import (
    ChangeOrderResolution,
    ChangeOrderStats,
    LineItemInput,
)
from queueup.services.jobLocks import JobLockRegistry
from queueup.services.jobStateManager import SYSTEM_ACTOR, Actor, ActorType
from queueup.services.pricingCalculator import PaymentComputation, SettlementBreakdown
from queueup.services.scheduleNegotiator import (
    ProposalOutcome,
    ProposedSlot,
    ScheduleAcceptance,
    ScheduleRejection,
)
from queueup.services.workflowErrors import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotOwnerError,
    PaymentFailedError,
)

logger = logging.getLogger(__name__)

# Events announced by a plain status transition
_TRANSITION_EVENTS: dict[JobStatus, JobEventType] = {
    JobStatus.IN_PROGRESS: JobEventType.JOB_STARTED,
    JobStatus.COMPLETED: JobEventType.JOB_COMPLETED,
    JobStatus.CANCELLED: JobEventType.JOB_CANCELLED,
}

DEPOSIT_STATUSES = frozenset({
    JobStatus.ACCEPTED,
    JobStatus.SCHEDULED,
    JobStatus.SCHEDULE_REJECTED,
    JobStatus.CONFIRMED,
})

# Reached only through bid acceptance or the schedule handshake
NEGOTIATED_STATUSES = DEPOSIT_STATUSES


# ---------------------------------------------------------------------------
# Result DTOs
# ---------------------------------------------------------------------------

@dataclass
class DepositResult:
    job: Job
    computation: PaymentComputation
    transaction_id: Optional[str]
    changed: bool = True


@dataclass
class SettlementResult:
    job: Job
    breakdown: SettlementBreakdown
    transaction_id: Optional[str]
    changed: bool = True


@dataclass
class _UnitOfWork:
    db: AsyncSession
    events: list[DomainEvent] = field(default_factory=list)

    def emit(
        self,
        event_type: JobEventType,
        job_id: uuid.UUID,
        recipient_id: Optional[uuid.UUID],
        **context: Any,
    ) -> None:
        self.events.append(build_event(event_type, job_id, recipient_id, **context))

    async def note(
        self,
        job_id: uuid.UUID,
        event_type: str,
        message: str,
        actor: Actor | None = None,
        **data: Any,
    ) -> None:
        clean = {k: (str(v) if v is not None else None) for k, v in data.items()}
        await jobStore.record_timeline(
            self.db, job_id, event_type, message, actor=actor, data=clean or None
        )


def _counterpart(job: Job, actor: Actor) -> Optional[uuid.UUID]:
    return job.mechanic_id if actor.role == ActorType.CUSTOMER else job.customer_id


def _idempotency_key(stage: str, job: Job) -> str:
    """Gateway key for the next charge of ``stage`` on ``job``.

    Stable until a decline is recorded, so a retry after a failed commit
    replays the charge the gateway already made instead of charging twice.
    """
    return f"{stage}-{job.id}-{job.payment_attempts}"


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class WorkflowOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        event_bus: EventBus | None = None,
        payment_gateway: PaymentGateway | None = None,
        lock_registry: JobLockRegistry | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.event_bus = event_bus or EventBus()
        self.payment_gateway = payment_gateway
        self.locks = lock_registry or JobLockRegistry(
            timeout=self.settings.job_lock_timeout_seconds
        )

    # -- Units of work -------------------------------------------------------

    @asynccontextmanager
    async def _unit(self, job_id: Optional[uuid.UUID]) -> AsyncIterator[_UnitOfWork]:
        """Lock the job (when known), run one transaction, then publish."""
        unit: _UnitOfWork | None = None
        try:
            if job_id is None:
                async with self.session_factory() as db, db.begin():
                    unit = _UnitOfWork(db)
                    yield unit
            else:
                async with self.locks.hold(job_id):
                    async with self.session_factory() as db, db.begin():
                        unit = _UnitOfWork(db)
                        yield unit
        except StaleDataError as exc:
            logger.warning("Commit rejected by version check on job %s", job_id)
            raise ConcurrentModificationError(
                f"Job {job_id} was modified concurrently; reload and retry."
            ) from exc
        await self.event_bus.publish_all(unit.events)

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as db:
            yield db

    async def _transition(
        self,
        job_id: uuid.UUID,
        target: JobStatus,
        actor: Actor,
        payload: dict[str, Any] | None = None,
    ) -> Job:
        async with self._unit(job_id) as unit:
            outcome = await jobStore.apply_transition(
                unit.db, job_id, target, actor, payload, config=self.settings
            )
            job = outcome.job
            if not outcome.changed:
                return job

            await unit.note(
                job.id,
                "status_changed",
                f"Job moved from {outcome.previous_status.value} to {target.value}",
                actor,
                previous=outcome.previous_status.value,
                current=target.value,
            )

            event_type = _TRANSITION_EVENTS.get(target)
            if event_type == JobEventType.JOB_CANCELLED:
                unit.emit(
                    event_type,
                    job.id,
                    job.mechanic_id,
                    reason=job.cancellation_reason,
                    cancelled_by=actor.role,
                )
                if actor.role != ActorType.CUSTOMER:
                    unit.emit(event_type, job.id, job.customer_id, reason=job.cancellation_reason)
            elif event_type is not None:
                unit.emit(event_type, job.id, job.customer_id, mechanic_id=job.mechanic_id)

            for bid in outcome.cascade.rejected_bids:
                unit.emit(JobEventType.BID_REJECTED, job.id, bid.mechanic_id, bid_id=bid.id, reason=bid.reason)
            for order in outcome.cascade.expired_change_orders:
                unit.emit(
                    JobEventType.CHANGE_ORDER_EXPIRED,
                    job.id,
                    order.mechanic_id,
                    change_order_id=order.id,
                    amount=order.amount,
                )
        return job

    # -- Jobs ----------------------------------------------------------------

    async def create_job(
        self,
        customer: Actor,
        *,
        category: str,
        location: str,
        description: str = "",
        subcategory: Optional[str] = None,
        urgency: Urgency | str = Urgency.MEDIUM,
        service_type: ServiceType | str = ServiceType.SHOP,
        estimated_cost: Decimal | int | float | str = Decimal("0"),
        vehicle_info: Optional[str] = None,
    ) -> Job:
        if customer.role != ActorType.CUSTOMER or customer.id is None:
            raise NotOwnerError("Only customers can post jobs.")

        async with self._unit(None) as unit:
            job = await jobStore.create_job(
                unit.db,
                customer_id=customer.id,
                category=category,
                subcategory=subcategory,
                description=description,
                location=location,
                urgency=urgency,
                service_type=service_type,
                estimated_cost=estimated_cost,
                vehicle_info=vehicle_info,
            )
            await unit.note(job.id, "job_created", "Job posted", customer, category=category)
        return job

    async def transition(
        self,
        job_id: uuid.UUID,
        target: JobStatus | str,
        actor: Actor = SYSTEM_ACTOR,
        payload: dict[str, Any] | None = None,
    ) -> Job:
        """Validated transition by target status.

        Statuses that belong to a handshake are routed through it:
        ``accepted`` goes through bid acceptance (payload ``bid_id``) so the
        sibling bids are rejected, ``scheduled`` becomes a proposal (payload
        ``scheduled_date`` / ``scheduled_time``), and ``confirmed`` or
        ``schedule_rejected`` answer the pending proposal, so only the party
        that did not propose can apply them. Retrying a transition that
        already landed is a no-op.
        """
        target = JobStatus(target)
        if target in NEGOTIATED_STATUSES:
            return await self._negotiated_transition(job_id, target, actor, payload or {})
        return await self._transition(job_id, target, actor, payload)

    async def _negotiated_transition(
        self,
        job_id: uuid.UUID,
        target: JobStatus,
        actor: Actor,
        payload: dict[str, Any],
    ) -> Job:
        async with self._reader() as db:
            job = await jobStore.get_job(db, job_id)
            if job.status == target:
                logger.debug("Transition retry ignored: job=%s already '%s'", job_id, target.value)
                return job
            jobStore.ensure_transition_allowed(job, target, actor)

            if target == JobStatus.ACCEPTED:
                bid_id = payload.get("bid_id")
                if bid_id is None:
                    raise InvalidTransitionError("Accepting a job requires the bid_id being accepted.")
                bid = await biddingEngine.get_bid(db, uuid.UUID(str(bid_id)))
                if bid.job_id != job_id:
                    raise InvalidTransitionError(f"Bid {bid.id} was not placed on job {job_id}.")

        if target == JobStatus.ACCEPTED:
            return (await self.accept_bid(bid.id, actor)).job
        if target == JobStatus.SCHEDULED:
            proposed_date = payload.get("scheduled_date")
            proposed_time = payload.get("scheduled_time")
            if proposed_date is None or proposed_time is None:
                raise InvalidTransitionError(
                    "Scheduling a job requires scheduled_date and scheduled_time."
                )
            outcome = await self.propose_schedule(
                job_id, actor, proposed_date, proposed_time, payload.get("notes")
            )
            return outcome.job
        if target == JobStatus.SCHEDULE_REJECTED:
            return (await self.reject_schedule(job_id, actor)).job
        return (await self.accept_schedule(job_id, actor)).job

    async def start_job(self, job_id: uuid.UUID, mechanic: Actor) -> Job:
        return await self._transition(job_id, JobStatus.IN_PROGRESS, mechanic)

    async def complete_job(
        self,
        job_id: uuid.UUID,
        mechanic: Actor,
        completion_notes: Optional[str] = None,
    ) -> Job:
        return await self._transition(
            job_id,
            JobStatus.COMPLETED,
            mechanic,
            {"completion_notes": completion_notes},
        )

    async def cancel_job(
        self,
        job_id: uuid.UUID,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> Job:
        return await self._transition(job_id, JobStatus.CANCELLED, actor, {"reason": reason})

    # -- Bidding -------------------------------------------------------------

    async def place_bid(
        self,
        job_id: uuid.UUID,
        mechanic: Actor,
        amount: Decimal | int | float | str,
        message: str = "",
        *,
        estimated_duration_minutes: Optional[int] = None,
    ) -> Bid:
        async with self._unit(job_id) as unit:
            placement = await biddingEngine.place_bid(
                unit.db,
                job_id,
                mechanic,
                amount,
                message,
                estimated_duration_minutes=estimated_duration_minutes,
            )
            bid, job = placement.bid, placement.job
            await unit.note(
                job.id, "bid_placed", f"Bid of {bid.amount} placed", mechanic,
                bid_id=bid.id, amount=bid.amount,
            )
            if placement.opened_bidding:
                await unit.note(job.id, "status_changed", "Job moved from posted to bidding")
            unit.emit(
                JobEventType.BID_PLACED,
                job.id,
                job.customer_id,
                bid_id=bid.id,
                mechanic_id=bid.mechanic_id,
                amount=bid.amount,
            )
        return bid

    async def withdraw_bid(
        self,
        bid_id: uuid.UUID,
        mechanic: Actor,
        reason: Optional[str] = None,
    ) -> Bid:
        job_id = await self._job_id_for_bid(bid_id)
        async with self._unit(job_id) as unit:
            bid = await biddingEngine.withdraw_bid(unit.db, bid_id, mechanic, reason)
            job = await jobStore.get_job(unit.db, bid.job_id)
            await unit.note(job.id, "bid_withdrawn", "Bid withdrawn", mechanic, bid_id=bid.id)
            unit.emit(JobEventType.BID_WITHDRAWN, job.id, job.customer_id, bid_id=bid.id)
        return bid

    async def reject_bid(
        self,
        bid_id: uuid.UUID,
        customer: Actor,
        reason: Optional[str] = None,
    ) -> Bid:
        job_id = await self._job_id_for_bid(bid_id)
        async with self._unit(job_id) as unit:
            bid = await biddingEngine.reject_bid(unit.db, bid_id, customer, reason)
            await unit.note(job_id, "bid_rejected", "Bid rejected", customer, bid_id=bid.id)
            unit.emit(JobEventType.BID_REJECTED, job_id, bid.mechanic_id, bid_id=bid.id, reason=bid.reason)
        return bid

    async def accept_bid(self, bid_id: uuid.UUID, customer: Actor) -> BidAcceptance:
        job_id = await self._job_id_for_bid(bid_id)
        async with self._unit(job_id) as unit:
            result = await biddingEngine.accept_bid(unit.db, bid_id, customer)
            if not result.changed:
                return result
            job = result.job
            await unit.note(
                job.id, "bid_accepted", f"Bid of {result.bid.amount} accepted", customer,
                bid_id=result.bid.id, mechanic_id=job.mechanic_id,
            )
            unit.emit(
                JobEventType.BID_ACCEPTED,
                job.id,
                result.bid.mechanic_id,
                bid_id=result.bid.id,
                amount=result.bid.amount,
            )
            for rejected in result.rejected_bids:
                unit.emit(
                    JobEventType.BID_REJECTED,
                    job.id,
                    rejected.mechanic_id,
                    bid_id=rejected.id,
                    reason=rejected.reason,
                )
        return result

    async def list_bids(self, job_id: uuid.UUID, *, active_only: bool = False) -> list[Bid]:
        async with self._reader() as db:
            return await biddingEngine.list_bids_for_job(db, job_id, active_only=active_only)

    async def list_bids_for_mechanic(
        self,
        mechanic_id: uuid.UUID,
        *,
        status: BidStatus | str | None = None,
    ) -> list[Bid]:
        async with self._reader() as db:
            return await biddingEngine.list_bids_for_mechanic(
                db, mechanic_id, status=BidStatus(status) if status is not None else None
            )

    async def get_mechanic_bid_stats(self, mechanic_id: uuid.UUID) -> BidStats:
        async with self._reader() as db:
            return await biddingEngine.get_mechanic_bid_stats(db, mechanic_id)

    async def _job_id_for_bid(self, bid_id: uuid.UUID) -> uuid.UUID:
        async with self._reader() as db:
            return (await biddingEngine.get_bid(db, bid_id)).job_id

    # -- Scheduling ----------------------------------------------------------

    async def propose_schedule(
        self,
        job_id: uuid.UUID,
        actor: Actor,
        proposed_date: date,
        proposed_time: time,
        notes: Optional[str] = None,
    ) -> ProposalOutcome:
        async with self._unit(job_id) as unit:
            outcome = await scheduleNegotiator.propose(
                unit.db, job_id, actor, proposed_date, proposed_time, notes
            )
            job = outcome.job
            await unit.note(
                job.id,
                "schedule_proposed",
                f"{outcome.proposal.proposed_by.capitalize()} proposed {proposed_date} {proposed_time}",
                actor,
                proposal_id=outcome.proposal.id,
                counter=outcome.is_counter,
            )
            unit.emit(
                JobEventType.SCHEDULE_PROPOSED,
                job.id,
                _counterpart(job, actor),
                proposal_id=outcome.proposal.id,
                proposed_date=proposed_date.isoformat(),
                proposed_time=proposed_time.isoformat(),
                is_counter=outcome.is_counter,
            )
        return outcome

    async def accept_schedule(self, job_id: uuid.UUID, actor: Actor) -> ScheduleAcceptance:
        async with self._unit(job_id) as unit:
            result = await scheduleNegotiator.accept(unit.db, job_id, actor)
            if not result.changed:
                return result
            job = result.job
            await unit.note(
                job.id, "schedule_confirmed",
                f"Schedule confirmed for {job.scheduled_date} {job.scheduled_time}", actor,
                proposal_id=result.proposal.id if result.proposal else None,
            )
            unit.emit(
                JobEventType.SCHEDULE_CONFIRMED,
                job.id,
                _counterpart(job, actor),
                scheduled_date=job.scheduled_date.isoformat(),
                scheduled_time=job.scheduled_time.isoformat(),
            )
        return result

    async def reject_schedule(
        self,
        job_id: uuid.UUID,
        actor: Actor,
        counter_proposal: Optional[ProposedSlot] = None,
    ) -> ScheduleRejection:
        async with self._unit(job_id) as unit:
            result = await scheduleNegotiator.reject(unit.db, job_id, actor, counter_proposal)
            job = result.job
            recipient = _counterpart(job, actor)
            await unit.note(
                job.id, "schedule_rejected", "Proposed schedule rejected", actor,
                proposal_id=result.rejected.id,
            )
            unit.emit(JobEventType.SCHEDULE_REJECTED, job.id, recipient, proposal_id=result.rejected.id)
            if result.counter is not None:
                await unit.note(
                    job.id, "schedule_proposed",
                    f"Counter-proposal {result.counter.proposed_date} {result.counter.proposed_time}",
                    actor, proposal_id=result.counter.id, counter=True,
                )
                unit.emit(
                    JobEventType.SCHEDULE_PROPOSED,
                    job.id,
                    recipient,
                    proposal_id=result.counter.id,
                    proposed_date=result.counter.proposed_date.isoformat(),
                    proposed_time=result.counter.proposed_time.isoformat(),
                    is_counter=True,
                )
        return result

    async def list_proposals(self, job_id: uuid.UUID) -> list[ScheduleProposal]:
        async with self._reader() as db:
            return await scheduleNegotiator.list_proposals(db, job_id)

    # -- Change orders -------------------------------------------------------

    async def request_change_order(
        self,
        job_id: uuid.UUID,
        mechanic: Actor,
        description: str,
        amount: Decimal | int | float | str | None = None,
        *,
        title: Optional[str] = None,
        line_items: Optional[Sequence[LineItemInput]] = None,
    ) -> ChangeOrder:
        async with self._unit(job_id) as unit:
            order = await changeOrderService.request_change_order(
                unit.db, job_id, mechanic, description, amount,
                title=title, line_items=line_items, config=self.settings,
            )
            await unit.note(
                job_id, "change_order_requested", f"Additional work requested: {order.amount}",
                mechanic, change_order_id=order.id, amount=order.amount,
            )
            unit.emit(
                JobEventType.CHANGE_ORDER_REQUESTED,
                job_id,
                order.customer_id,
                change_order_id=order.id,
                amount=order.amount,
                description=order.description,
                line_items=len(order.line_items),
            )
        return order

    async def add_change_order_line_items(
        self,
        change_order_id: uuid.UUID,
        mechanic: Actor,
        line_items: Sequence[LineItemInput],
    ) -> ChangeOrder:
        job_id = await self._job_id_for_change_order(change_order_id)
        async with self._unit(job_id) as unit:
            order = await changeOrderService.add_line_items(
                unit.db, change_order_id, mechanic, line_items
            )
            await unit.note(
                job_id, "change_order_updated", f"Change order repriced at {order.amount}",
                mechanic, change_order_id=order.id, amount=order.amount,
            )
            unit.emit(
                JobEventType.CHANGE_ORDER_UPDATED,
                job_id,
                order.customer_id,
                change_order_id=order.id,
                amount=order.amount,
                line_items=len(order.line_items),
            )
        return order

    async def resolve_change_order(
        self,
        change_order_id: uuid.UUID,
        customer: Actor,
        decision: ChangeOrderStatus | str,
        reason: Optional[str] = None,
    ) -> ChangeOrderResolution:
        job_id = await self._job_id_for_change_order(change_order_id)
        async with self._unit(job_id) as unit:
            result = await changeOrderService.resolve_change_order(
                unit.db, change_order_id, customer, decision, reason
            )
            order, job = result.change_order, result.job
            await unit.note(
                job.id, f"change_order_{order.status.value}",
                f"Change order {order.status.value}", customer,
                change_order_id=order.id, effective_total=job.effective_total,
            )
            unit.emit(
                JobEventType.CHANGE_ORDER_RESOLVED,
                job.id,
                order.mechanic_id,
                change_order_id=order.id,
                decision=order.status,
                amount=order.amount,
                effective_total=job.effective_total,
            )
        return result

    async def cancel_change_order(
        self,
        change_order_id: uuid.UUID,
        mechanic: Actor,
        reason: Optional[str] = None,
    ) -> ChangeOrder:
        job_id = await self._job_id_for_change_order(change_order_id)
        async with self._unit(job_id) as unit:
            order = await changeOrderService.cancel_change_order(
                unit.db, change_order_id, mechanic, reason
            )
            await unit.note(
                order.job_id, "change_order_cancelled", "Change order withdrawn", mechanic,
                change_order_id=order.id,
            )
            unit.emit(
                JobEventType.CHANGE_ORDER_CANCELLED,
                order.job_id,
                order.customer_id,
                change_order_id=order.id,
            )
        return order

    async def expire_stale_change_orders(
        self,
        now: Optional[datetime] = None,
    ) -> list[ChangeOrder]:
        """Sweep lapsed change orders, one job (and one lock) at a time."""
        async with self._reader() as db:
            stale = await changeOrderService.find_stale_change_orders(db, now=now)
        by_job: dict[uuid.UUID, int] = defaultdict(int)
        for order in stale:
            by_job[order.job_id] += 1

        expired: list[ChangeOrder] = []
        for job_id in by_job:
            async with self._unit(job_id) as unit:
                orders = await changeOrderService.expire_stale_change_orders(
                    unit.db, job_id=job_id, now=now
                )
                for order in orders:
                    await unit.note(
                        job_id, "change_order_expired", "Change order expired",
                        change_order_id=order.id,
                    )
                    unit.emit(
                        JobEventType.CHANGE_ORDER_EXPIRED,
                        job_id,
                        order.mechanic_id,
                        change_order_id=order.id,
                        amount=order.amount,
                    )
                expired.extend(orders)
        return expired

    async def list_change_orders(
        self,
        job_id: uuid.UUID,
        *,
        pending_only: bool = False,
    ) -> list[ChangeOrder]:
        async with self._reader() as db:
            return await changeOrderService.list_change_orders(
                db, job_id, pending_only=pending_only
            )

    async def get_change_order_stats(self, job_id: uuid.UUID) -> ChangeOrderStats:
        async with self._reader() as db:
            await jobStore.get_job(db, job_id)
            return await changeOrderService.get_change_order_stats(db, job_id)

    async def _job_id_for_change_order(self, change_order_id: uuid.UUID) -> uuid.UUID:
        async with self._reader() as db:
            return (await changeOrderService.get_change_order(db, change_order_id)).job_id

    # -- Payments ------------------------------------------------------------

    async def quote_deposit(self, job_id: uuid.UUID, payment_method: str) -> PaymentComputation:
        async with self._reader() as db:
            job = await jobStore.get_job(db, job_id)
        return pricingCalculator.compute_payment(job, payment_method, self.settings)

    async def _charge(
        self,
        amount: Decimal,
        payment_token: str,
        job_id: uuid.UUID,
        description: str,
        idempotency_key: str,
    ) -> ChargeResult:
        if self.payment_gateway is None:
            raise PaymentFailedError("No payment gateway is configured.", job_id=job_id)
        return await self.payment_gateway.charge(
            amount,
            payment_token,
            job_id=job_id,
            description=description,
            idempotency_key=idempotency_key,
        )

    async def pay_deposit(
        self,
        job_id: uuid.UUID,
        customer: Actor,
        payment_method: str,
        payment_token: str,
    ) -> DepositResult:
        """Charge the booking deposit plus processing fee.

        A declined charge is recorded on the job (``deposit_failed``) and
        committed before ``PaymentFailedError`` is raised; the job status is
        never advanced by a payment.

        The gateway call carries an idempotency key that only changes after a
        recorded decline. If the commit that follows a successful charge
        fails, retrying replays that charge rather than making a new one.
        """
        failure: ChargeResult | None = None
        async with self._unit(job_id) as unit:
            job = await jobStore.get_job(unit.db, job_id)
            if not customer.is_privileged and (
                customer.role != ActorType.CUSTOMER or customer.id != job.customer_id
            ):
                raise NotOwnerError(f"Only the customer who posted job {job_id} can pay for it.")

            computation = pricingCalculator.compute_payment(job, payment_method, self.settings)
            if job.payment_status in (PaymentStatus.DEPOSIT_PAID, PaymentStatus.SETTLED):
                logger.debug("Deposit retry ignored: job=%s", job_id)
                return DepositResult(
                    job=job,
                    computation=computation,
                    transaction_id=job.deposit_transaction_id,
                    changed=False,
                )
            if job.status not in DEPOSIT_STATUSES:
                raise InvalidTransitionError(
                    f"A deposit cannot be paid while the job is '{job.status.value}'."
                )

            charge = await self._charge(
                computation.total_due_now,
                payment_token,
                job_id,
                f"Booking deposit for job {job_id}",
                _idempotency_key("deposit", job),
            )
            job.payment_method = payment_method
            if charge.success:
                job.payment_status = PaymentStatus.DEPOSIT_PAID
                job.deposit_amount = computation.deposit
                job.processing_fee = computation.processing_fee
                job.deposit_transaction_id = charge.transaction_id
                job.last_payment_error = None
                await jobStore.save(unit.db, job)
                await unit.note(
                    job.id, "deposit_paid", f"Deposit of {computation.total_due_now} paid",
                    customer, transaction_id=charge.transaction_id, method=payment_method,
                )
                unit.emit(
                    JobEventType.DEPOSIT_PAID,
                    job.id,
                    job.mechanic_id,
                    amount=computation.total_due_now,
                )
            else:
                failure = charge
                job.payment_status = PaymentStatus.DEPOSIT_FAILED
                job.last_payment_error = charge.error
                job.payment_attempts += 1
                await jobStore.save(unit.db, job)
                await unit.note(
                    job.id, "payment_failed", "Deposit payment failed", customer,
                    error=charge.error, method=payment_method,
                )
                unit.emit(
                    JobEventType.PAYMENT_FAILED,
                    job.id,
                    job.customer_id,
                    stage="deposit",
                    error=charge.error,
                )

        if failure is not None:
            logger.warning("Deposit payment failed: job=%s, error=%s", job_id, failure.error)
            raise PaymentFailedError(failure.error or "Payment declined.", job_id=job_id)

        logger.info(
            "Deposit paid: job=%s, total=%s, transaction=%s",
            job_id,
            computation.total_due_now,
            charge.transaction_id,
        )
        return DepositResult(
            job=job, computation=computation, transaction_id=charge.transaction_id
        )

    async def settle_job(
        self,
        job_id: uuid.UUID,
        actor: Actor,
        payment_token: str,
    ) -> SettlementResult:
        """Charge the effective total of a completed job and split the payout."""
        failure: ChargeResult | None = None
        transaction_id: Optional[str] = None
        async with self._unit(job_id) as unit:
            job = await jobStore.get_job(unit.db, job_id)
            if not actor.is_privileged and (
                actor.role != ActorType.CUSTOMER or actor.id != job.customer_id
            ):
                raise NotOwnerError(f"Only the customer who posted job {job_id} can settle it.")

            breakdown = pricingCalculator.compute_settlement(job, self.settings)
            if job.payment_status == PaymentStatus.SETTLED:
                logger.debug("Settlement retry ignored: job=%s", job_id)
                return SettlementResult(
                    job=job,
                    breakdown=breakdown,
                    transaction_id=job.settlement_transaction_id,
                    changed=False,
                )
            if job.status != JobStatus.COMPLETED:
                raise InvalidTransitionError(
                    f"Job {job_id} can only be settled once completed (status: {job.status.value})."
                )

            if breakdown.effective_total > 0:
                charge = await self._charge(
                    breakdown.effective_total,
                    payment_token,
                    job_id,
                    f"Service payment for job {job_id}",
                    _idempotency_key("settle", job),
                )
            else:
                charge = ChargeResult(success=True)

            if charge.success:
                transaction_id = charge.transaction_id
                job.payment_status = PaymentStatus.SETTLED
                job.settled_amount = breakdown.effective_total
                job.commission_amount = breakdown.commission
                job.mechanic_payout = breakdown.mechanic_payout
                job.settlement_transaction_id = transaction_id
                job.last_payment_error = None
                await jobStore.save(unit.db, job)
                await unit.note(
                    job.id, "job_settled", f"Job settled for {breakdown.effective_total}",
                    actor, commission=breakdown.commission, payout=breakdown.mechanic_payout,
                )
                unit.emit(
                    JobEventType.JOB_SETTLED,
                    job.id,
                    job.mechanic_id,
                    amount=breakdown.effective_total,
                    payout=breakdown.mechanic_payout,
                )
            else:
                failure = charge
                job.payment_status = PaymentStatus.SETTLEMENT_FAILED
                job.last_payment_error = charge.error
                job.payment_attempts += 1
                await jobStore.save(unit.db, job)
                await unit.note(
                    job.id, "payment_failed", "Settlement payment failed", actor,
                    error=charge.error,
                )
                unit.emit(
                    JobEventType.PAYMENT_FAILED,
                    job.id,
                    job.customer_id,
                    stage="settlement",
                    error=charge.error,
                )

        if failure is not None:
            logger.warning("Settlement failed: job=%s, error=%s", job_id, failure.error)
            raise PaymentFailedError(failure.error or "Payment declined.", job_id=job_id)

        logger.info(
            "Job settled: job=%s, total=%s, commission=%s, payout=%s",
            job_id,
            breakdown.effective_total,
            breakdown.commission,
            breakdown.mechanic_payout,
        )
        return SettlementResult(job=job, breakdown=breakdown, transaction_id=transaction_id)

    # -- Read projections ----------------------------------------------------

    async def get_job(self, job_id: uuid.UUID) -> Job:
        async with self._reader() as db:
            return await jobStore.get_job(db, job_id)

    async def get_by_customer(
        self,
        customer_id: uuid.UUID,
        *,
        status: Optional[JobStatus] = None,
    ) -> list[Job]:
        async with self._reader() as db:
            return await jobStore.get_by_customer(db, customer_id, status=status)

    async def get_by_mechanic(
        self,
        mechanic_id: uuid.UUID,
        *,
        status: Optional[JobStatus] = None,
    ) -> list[Job]:
        async with self._reader() as db:
            return await jobStore.get_by_mechanic(db, mechanic_id, status=status)

    async def get_available(self) -> list[Job]:
        async with self._reader() as db:
            return await jobStore.get_available(db)

    async def get_by_status(self, status: JobStatus | str) -> list[Job]:
        async with self._reader() as db:
            return await jobStore.get_by_status(db, JobStatus(status))

    async def get_timeline(self, job_id: uuid.UUID) -> Sequence[JobTimelineEntry]:
        async with self._reader() as db:
            await jobStore.get_job(db, job_id)
            return await jobStore.get_timeline(db, job_id)
