"""
Shared pytest fixtures for the QueueUp workflow tests.

Provides:
- A file-backed async SQLite database per test (schema created from the ORM
  metadata), so concurrent sessions behave like separate connections
- A session for exercising service modules directly
- Recording fakes for the notification sender and payment gateway
- A fully wired ``WorkflowOrchestrator``
- ``advance_job`` to drive a job to any status through the public API
"""

from __future__ import annotations

import uuid
from datetime import date, time
from decimal import Decimal
from typing import Any, AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from queueup.core.config import Settings
from queueup.events.jobEvents import EventBus
from queueup.integrations.stripe import ChargeResult
from queueup.models import Base, Job, JobStatus
from queueup.services.jobLocks import JobLockRegistry
from queueup.services.jobStateManager import Actor, ActorType
from queueup.services.notificationService import register_notifications
from queueup.services.workflowOrchestrator import WorkflowOrchestrator

# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

CUSTOMER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
MECHANIC_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
OTHER_MECHANIC_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
OTHER_CUSTOMER_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")
ADMIN_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")

CUSTOMER = Actor.customer(CUSTOMER_ID)
MECHANIC = Actor.mechanic(MECHANIC_ID)
OTHER_MECHANIC = Actor.mechanic(OTHER_MECHANIC_ID)
OTHER_CUSTOMER = Actor.customer(OTHER_CUSTOMER_ID)
ADMIN = Actor(role=ActorType.ADMIN, id=ADMIN_ID)

SERVICE_DATE = date(2024, 6, 1)
SERVICE_TIME = time(10, 0)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

class RecordingNotifier:
    """NotificationSender that keeps everything it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []

    async def send(self, notification: dict[str, Any]) -> None:
        self.sent.append(notification)

    def event_types(self) -> list[str]:
        return [n["event_type"] for n in self.sent]

    def for_recipient(self, recipient_id: uuid.UUID) -> list[dict[str, Any]]:
        return [n for n in self.sent if n["recipient_id"] == str(recipient_id)]


class FakePaymentGateway:
    """PaymentGateway that approves every charge unless told to decline.

    A repeated ``idempotency_key`` replays the first result without a new
    charge, the way Stripe does.
    """

    def __init__(self) -> None:
        self.charges: list[dict[str, Any]] = []
        self.decline_with: str | None = None
        self.replayed: list[str] = []
        self._results: dict[str, ChargeResult] = {}

    async def charge(
        self,
        amount: Decimal,
        payment_token: str,
        *,
        job_id: uuid.UUID,
        description: str,
        idempotency_key: str | None = None,
    ) -> ChargeResult:
        if idempotency_key is not None and idempotency_key in self._results:
            self.replayed.append(idempotency_key)
            return self._results[idempotency_key]

        self.charges.append(
            {
                "amount": amount,
                "payment_token": payment_token,
                "job_id": job_id,
                "description": description,
                "idempotency_key": idempotency_key,
            }
        )
        if self.decline_with is not None:
            result = ChargeResult(success=False, error=self.decline_with)
        else:
            result = ChargeResult(success=True, transaction_id=f"pi_test_{len(self.charges)}")
        if idempotency_key is not None:
            self._results[idempotency_key] = result
        return result


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queueup.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for calling service functions directly."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

@pytest.fixture
def test_settings() -> Settings:
    return Settings(_env_file=None, job_lock_timeout_seconds=2.0)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def event_bus(notifier) -> EventBus:
    bus = EventBus()
    register_notifications(bus, notifier)
    return bus


@pytest.fixture
def orchestrator(
    session_factory,
    event_bus,
    payment_gateway,
    test_settings,
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        session_factory,
        event_bus=event_bus,
        payment_gateway=payment_gateway,
        lock_registry=JobLockRegistry(timeout=test_settings.job_lock_timeout_seconds),
        settings=test_settings,
    )


# ---------------------------------------------------------------------------
# Job lifecycle helpers
# ---------------------------------------------------------------------------

async def advance_job(
    orchestrator: WorkflowOrchestrator,
    target: JobStatus,
    *,
    estimated_cost: str = "100.00",
    category: str = "Repair",
    subcategory: str | None = None,
) -> Job:
    """Create a job and drive it to ``target`` the way real clients would."""
    job = await orchestrator.create_job(
        CUSTOMER,
        category=category,
        subcategory=subcategory,
        description="Brakes squeal when stopping",
        location="123 Main St, Springfield",
        estimated_cost=estimated_cost,
    )
    if target == JobStatus.POSTED:
        return job
    if target == JobStatus.CANCELLED:
        return await orchestrator.cancel_job(job.id, CUSTOMER, "Changed my mind")

    bid = await orchestrator.place_bid(job.id, MECHANIC, "90.00", "Can do it tomorrow")
    if target == JobStatus.BIDDING:
        return await orchestrator.get_job(job.id)

    await orchestrator.accept_bid(bid.id, CUSTOMER)
    if target == JobStatus.ACCEPTED:
        return await orchestrator.get_job(job.id)

    await orchestrator.propose_schedule(job.id, CUSTOMER, SERVICE_DATE, SERVICE_TIME)
    if target == JobStatus.SCHEDULED:
        return await orchestrator.get_job(job.id)
    if target == JobStatus.SCHEDULE_REJECTED:
        result = await orchestrator.reject_schedule(job.id, MECHANIC)
        return result.job

    await orchestrator.accept_schedule(job.id, MECHANIC)
    await orchestrator.pay_deposit(job.id, CUSTOMER, "card", "pm_card_visa")
    if target == JobStatus.CONFIRMED:
        return await orchestrator.get_job(job.id)

    await orchestrator.start_job(job.id, MECHANIC)
    if target == JobStatus.IN_PROGRESS:
        return await orchestrator.get_job(job.id)

    return await orchestrator.complete_job(job.id, MECHANIC, "Replaced front pads")
