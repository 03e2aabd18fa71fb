"""
Change Order Service
====================

Additional work discovered while a job is in progress:

- The assigned mechanic requests a change order (description plus a flat
  amount, or priced line items whose sum becomes the amount). Line items
  may be added while the order is pending.
- The customer approves or rejects it. Approval adds the amount to the
  job's ``change_order_total``; any other outcome leaves the total alone.
- The mechanic may withdraw a pending order.
- Pending orders lapse after ``change_order_ttl_hours`` and are swept to
  ``expired``; any still pending when the job completes are expired by the
  job store.

Resolved change orders are immutable.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from queueup.core.config import Settings, settings as default_settings
from queueup.models import (
    ChangeOrder,
    ChangeOrderLineItem,
    ChangeOrderStatus,
    Job,
    JobStatus,
    LineItemCategory,
    utcnow,
)
from queueup.services import jobStore
from queueup.services.jobStateManager import Actor, ActorType
from queueup.services.pricingCalculator import Number, to_money
from queueup.services.workflowErrors import (
    AlreadyResolvedError,
    InvalidAmountError,
    JobNotInProgressError,
    NotFoundError,
    NotOwnerError,
)

logger = logging.getLogger(__name__)

DECISIONS = (ChangeOrderStatus.APPROVED, ChangeOrderStatus.REJECTED)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass
class ChangeOrderResolution:
    change_order: ChangeOrder
    job: Job


@dataclass(frozen=True)
class LineItemInput:
    description: str
    quantity: int
    unit_price: Number
    category: LineItemCategory | str = LineItemCategory.LABOR


@dataclass(frozen=True)
class ChangeOrderStats:
    total: int
    pending: int
    approved: int
    rejected: int
    cancelled: int
    expired: int
    approved_amount: Decimal


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _as_aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(order: ChangeOrder, now: Optional[datetime] = None) -> bool:
    if order.expires_at is None:
        return False
    return _as_aware(order.expires_at) <= (now or utcnow())


async def get_change_order(db: AsyncSession, change_order_id: uuid.UUID) -> ChangeOrder:
    result = await db.execute(select(ChangeOrder).where(ChangeOrder.id == change_order_id))
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError("ChangeOrder", change_order_id)
    return order


def _require_pending(order: ChangeOrder) -> None:
    if order.status != ChangeOrderStatus.PENDING:
        raise AlreadyResolvedError(
            f"Change order {order.id} is already {order.status.value}."
        )
    if is_expired(order):
        raise AlreadyResolvedError(f"Change order {order.id} has expired.")


def effective_total(job: Job) -> Decimal:
    """Estimated cost plus every approved change order."""
    return to_money(job.effective_total)


def _build_line_items(
    items: Sequence[LineItemInput],
    *,
    start: int = 0,
) -> list[ChangeOrderLineItem]:
    built: list[ChangeOrderLineItem] = []
    for offset, item in enumerate(items):
        quantity = item.quantity
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidAmountError("Line item quantity must be a positive whole number.")
        unit_price = to_money(item.unit_price)
        if unit_price <= 0:
            raise InvalidAmountError("Line item unit price must be greater than zero.")
        built.append(
            ChangeOrderLineItem(
                id=uuid.uuid4(),
                position=start + offset,
                category=LineItemCategory(item.category),
                description=item.description,
                quantity=quantity,
                unit_price=unit_price,
                total=to_money(unit_price * quantity),
            )
        )
    return built


def line_items_total(items: Sequence[ChangeOrderLineItem]) -> Decimal:
    return to_money(sum((item.total for item in items), Decimal("0")))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def request_change_order(
    db: AsyncSession,
    job_id: uuid.UUID,
    mechanic: Actor,
    description: str,
    amount: Optional[Number] = None,
    *,
    title: Optional[str] = None,
    line_items: Optional[Sequence[LineItemInput]] = None,
    config: Settings | None = None,
) -> ChangeOrder:
    """Assigned mechanic asks the customer to approve extra work.

    The order is priced either by a flat ``amount`` or by ``line_items``, in
    which case the amount is their sum (a flat amount passed alongside must
    match it).

    Raises:
        NotFoundError: If the job does not exist.
        JobNotInProgressError: If the job is not ``in_progress``.
        NotOwnerError: If the actor is not the job's assigned mechanic.
        InvalidAmountError: If the amount is not positive, a line item is
            malformed, or the amount disagrees with the line items.
    """
    config = config or default_settings
    job = await jobStore.get_job(db, job_id)

    if job.status != JobStatus.IN_PROGRESS:
        raise JobNotInProgressError(
            f"Change orders require the job to be in progress (status: {job.status.value})."
        )
    if mechanic.role != ActorType.MECHANIC or mechanic.id != job.mechanic_id:
        raise NotOwnerError(f"Only the mechanic assigned to job {job_id} can request changes.")

    items = _build_line_items(line_items or [])
    if items:
        order_amount = line_items_total(items)
        if amount is not None and to_money(amount) != order_amount:
            raise InvalidAmountError(
                f"Amount {to_money(amount)} does not match the line items total {order_amount}."
            )
    elif amount is None:
        raise InvalidAmountError("A change order needs an amount or line items.")
    else:
        order_amount = to_money(amount)
    if order_amount <= 0:
        raise InvalidAmountError("Change order amount must be greater than zero.")

    order = ChangeOrder(
        id=uuid.uuid4(),
        job_id=job.id,
        mechanic_id=mechanic.id,
        customer_id=job.customer_id,
        title=title,
        description=description,
        amount=order_amount,
        status=ChangeOrderStatus.PENDING,
        expires_at=utcnow() + timedelta(hours=config.change_order_ttl_hours),
        line_items=items,
    )
    db.add(order)
    await db.flush()

    logger.info(
        "Change order requested: job=%s, change_order=%s, amount=%s, line_items=%d",
        job_id,
        order.id,
        order_amount,
        len(items),
    )
    return order


async def add_line_items(
    db: AsyncSession,
    change_order_id: uuid.UUID,
    mechanic: Actor,
    line_items: Sequence[LineItemInput],
) -> ChangeOrder:
    """Append line items to a pending order and reprice it.

    Once an order has line items its amount is their sum, so a flat amount
    given at request time is replaced.
    """
    order = await get_change_order(db, change_order_id)
    if not mechanic.is_privileged and (
        mechanic.role != ActorType.MECHANIC or mechanic.id != order.mechanic_id
    ):
        raise NotOwnerError(f"Only the requesting mechanic can itemise change order {change_order_id}.")
    _require_pending(order)

    added = _build_line_items(line_items, start=len(order.line_items))
    if not added:
        raise InvalidAmountError("At least one line item is required.")
    order.line_items.extend(added)
    order.amount = line_items_total(order.line_items)
    await db.flush()

    logger.info(
        "Change order itemised: job=%s, change_order=%s, added=%d, amount=%s",
        order.job_id,
        order.id,
        len(added),
        order.amount,
    )
    return order


async def resolve_change_order(
    db: AsyncSession,
    change_order_id: uuid.UUID,
    customer: Actor,
    decision: ChangeOrderStatus | str,
    reason: Optional[str] = None,
) -> ChangeOrderResolution:
    """Customer approves or rejects a pending change order.

    Raises:
        ValueError: If ``decision`` is neither approved nor rejected.
        NotOwnerError: If the actor is not the job's customer.
        AlreadyResolvedError: If the order is no longer pending.
    """
    outcome = ChangeOrderStatus(decision)
    if outcome not in DECISIONS:
        raise ValueError(f"Decision must be 'approved' or 'rejected', got '{outcome.value}'")

    order = await get_change_order(db, change_order_id)
    if not customer.is_privileged and (
        customer.role != ActorType.CUSTOMER or customer.id != order.customer_id
    ):
        raise NotOwnerError(f"Only the customer can resolve change order {change_order_id}.")
    _require_pending(order)

    job = await jobStore.get_job(db, order.job_id)
    order.status = outcome
    order.resolved_at = utcnow()

    if outcome == ChangeOrderStatus.APPROVED:
        order.expires_at = None
        job.change_order_total = to_money(job.change_order_total + order.amount)
        await jobStore.save(db, job)
    else:
        order.reason = reason
        await db.flush()

    logger.info(
        "Change order %s: job=%s, change_order=%s, amount=%s, effective_total=%s",
        outcome.value,
        job.id,
        order.id,
        order.amount,
        effective_total(job),
    )
    return ChangeOrderResolution(change_order=order, job=job)


async def cancel_change_order(
    db: AsyncSession,
    change_order_id: uuid.UUID,
    mechanic: Actor,
    reason: Optional[str] = None,
) -> ChangeOrder:
    """Mechanic withdraws a change order the customer has not answered."""
    order = await get_change_order(db, change_order_id)
    if not mechanic.is_privileged and (
        mechanic.role != ActorType.MECHANIC or mechanic.id != order.mechanic_id
    ):
        raise NotOwnerError(f"Only the requesting mechanic can cancel change order {change_order_id}.")
    _require_pending(order)

    order.status = ChangeOrderStatus.CANCELLED
    order.reason = reason or "Cancelled by mechanic"
    order.resolved_at = utcnow()
    await db.flush()

    logger.info("Change order cancelled: job=%s, change_order=%s", order.job_id, order.id)
    return order


async def find_stale_change_orders(
    db: AsyncSession,
    *,
    now: Optional[datetime] = None,
) -> list[ChangeOrder]:
    """Pending change orders whose ``expires_at`` has passed."""
    now = now or utcnow()
    result = await db.execute(
        select(ChangeOrder).where(
            ChangeOrder.status == ChangeOrderStatus.PENDING,
            ChangeOrder.expires_at.is_not(None),
            ChangeOrder.expires_at <= now,
        )
    )
    return list(result.scalars().all())


async def expire_stale_change_orders(
    db: AsyncSession,
    *,
    job_id: Optional[uuid.UUID] = None,
    now: Optional[datetime] = None,
) -> list[ChangeOrder]:
    """Mark lapsed pending change orders as ``expired``.

    Restricted to one job when ``job_id`` is given, so the caller can hold
    that job's lock while sweeping.
    """
    now = now or utcnow()
    stale = await find_stale_change_orders(db, now=now)
    if job_id is not None:
        stale = [o for o in stale if o.job_id == job_id]

    for order in stale:
        order.status = ChangeOrderStatus.EXPIRED
        order.reason = "No response before expiry"
        order.resolved_at = now
    if stale:
        await db.flush()
        logger.info("Expired %d stale change order(s)", len(stale))
    return stale


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def list_change_orders(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    pending_only: bool = False,
) -> list[ChangeOrder]:
    stmt = select(ChangeOrder).where(ChangeOrder.job_id == job_id)
    if pending_only:
        stmt = stmt.where(ChangeOrder.status == ChangeOrderStatus.PENDING)
    result = await db.execute(stmt.order_by(ChangeOrder.created_at))
    return list(result.scalars().all())


async def get_change_order_stats(db: AsyncSession, job_id: uuid.UUID) -> ChangeOrderStats:
    result = await db.execute(
        select(
            ChangeOrder.status,
            func.count(ChangeOrder.id),
            func.coalesce(func.sum(ChangeOrder.amount), 0),
        )
        .where(ChangeOrder.job_id == job_id)
        .group_by(ChangeOrder.status)
    )
    counts: dict[ChangeOrderStatus, int] = {}
    approved_amount = Decimal("0")
    for status, count, amount in result.all():
        counts[status] = count
        if status == ChangeOrderStatus.APPROVED:
            approved_amount = to_money(amount)
    return ChangeOrderStats(
        total=sum(counts.values()),
        pending=counts.get(ChangeOrderStatus.PENDING, 0),
        approved=counts.get(ChangeOrderStatus.APPROVED, 0),
        rejected=counts.get(ChangeOrderStatus.REJECTED, 0),
        cancelled=counts.get(ChangeOrderStatus.CANCELLED, 0),
        expired=counts.get(ChangeOrderStatus.EXPIRED, 0),
        approved_amount=to_money(approved_amount),
    )
