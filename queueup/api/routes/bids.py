"""
Bid API Routes
==============

  POST /api/v1/jobs/{job_id}/bids        -- Mechanic places a bid
  GET  /api/v1/jobs/{job_id}/bids        -- Bids on a job
  GET  /api/v1/bids/mine                 -- Caller's bids (mechanic)
  GET  /api/v1/bids/mine/stats           -- Caller's bid counts and acceptance rate
  POST /api/v1/bids/{bid_id}/withdraw    -- Mechanic withdraws their bid
  POST /api/v1/bids/{bid_id}/reject      -- Customer turns down one bid
  POST /api/v1/bids/{bid_id}/accept      -- Customer accepts a bid
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Query, status

from queueup.api.deps import CurrentActor, Orchestrator
from queueup.api.errors import workflow_http_error
from queueup.api.schemas.bid import (
    BidAcceptanceOut,
    BidOut,
    BidStatsOut,
    PlaceBidRequest,
    RejectBidRequest,
    WithdrawBidRequest,
)
from queueup.api.schemas.job import job_view
from queueup.models import BidStatus
from queueup.services.workflowErrors import WorkflowError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Bids"])


@router.post(
    "/jobs/{job_id}/bids",
    response_model=BidOut,
    status_code=status.HTTP_201_CREATED,
    summary="Place a bid on a job",
    description=(
        "Only jobs that are posted or bidding with no mechanic assigned accept "
        "bids. A mechanic may hold one active bid per job. The first bid on a "
        "posted job opens bidding."
    ),
)
async def place_bid(
    job_id: uuid.UUID,
    body: PlaceBidRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> BidOut:
    try:
        bid = await orchestrator.place_bid(
            job_id,
            actor,
            body.amount,
            body.message,
            estimated_duration_minutes=body.estimated_duration_minutes,
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return BidOut.model_validate(bid)


@router.get("/jobs/{job_id}/bids", response_model=list[BidOut], summary="List bids on a job")
async def list_bids(
    job_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
    active_only: bool = Query(default=False),
) -> list[BidOut]:
    bids = await orchestrator.list_bids(job_id, active_only=active_only)
    return [BidOut.model_validate(bid) for bid in bids]


@router.get(
    "/bids/mine",
    response_model=list[BidOut],
    summary="List the caller's bids",
    description="Newest first, across every job the mechanic has bid on.",
)
async def list_my_bids(
    orchestrator: Orchestrator,
    actor: CurrentActor,
    bid_status: Optional[BidStatus] = Query(default=None, alias="status"),
) -> list[BidOut]:
    bids = await orchestrator.list_bids_for_mechanic(actor.id, status=bid_status)
    return [BidOut.model_validate(bid) for bid in bids]


@router.get("/bids/mine/stats", response_model=BidStatsOut, summary="The caller's bid statistics")
async def my_bid_stats(orchestrator: Orchestrator, actor: CurrentActor) -> BidStatsOut:
    stats = await orchestrator.get_mechanic_bid_stats(actor.id)
    return BidStatsOut.model_validate(stats)


@router.post("/bids/{bid_id}/withdraw", response_model=BidOut, summary="Withdraw a bid")
async def withdraw_bid(
    bid_id: uuid.UUID,
    body: WithdrawBidRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> BidOut:
    try:
        bid = await orchestrator.withdraw_bid(bid_id, actor, body.reason)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return BidOut.model_validate(bid)


@router.post(
    "/bids/{bid_id}/reject",
    response_model=BidOut,
    summary="Reject a bid",
    description="Turns down one active bid. The job stays open for the others.",
)
async def reject_bid(
    bid_id: uuid.UUID,
    body: RejectBidRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> BidOut:
    try:
        bid = await orchestrator.reject_bid(bid_id, actor, body.reason)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return BidOut.model_validate(bid)


@router.post(
    "/bids/{bid_id}/accept",
    response_model=BidAcceptanceOut,
    summary="Accept a bid",
    description=(
        "Assigns the bid's mechanic to the job and rejects every other active "
        "bid on it."
    ),
)
async def accept_bid(
    bid_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> BidAcceptanceOut:
    try:
        result = await orchestrator.accept_bid(bid_id, actor)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return BidAcceptanceOut(
        bid=BidOut.model_validate(result.bid),
        job=job_view(result.job),
        rejected_bid_ids=[b.id for b in result.rejected_bids],
    )
