"""
Change Order API Routes
=======================

  POST /api/v1/jobs/{job_id}/change-orders             -- Mechanic requests extra work
  GET  /api/v1/jobs/{job_id}/change-orders             -- Change orders on a job
  GET  /api/v1/jobs/{job_id}/change-orders/stats       -- Counts by status, approved amount
  POST /api/v1/change-orders/{change_order_id}/line-items -- Mechanic itemises a pending order
  POST /api/v1/change-orders/{change_order_id}/resolve -- Customer approves / rejects
  POST /api/v1/change-orders/{change_order_id}/cancel  -- Mechanic withdraws
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Query, status

from queueup.api.deps import CurrentActor, Orchestrator
from queueup.api.errors import workflow_http_error
from queueup.api.schemas.change_order import (
    AddLineItemsRequest,
    CancelChangeOrderRequest,
    ChangeOrderCreateRequest,
    ChangeOrderOut,
    ChangeOrderResolutionOut,
    ChangeOrderStatsOut,
    ResolveChangeOrderRequest,
)
from queueup.services.workflowErrors import WorkflowError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Change Orders"])


@router.post(
    "/jobs/{job_id}/change-orders",
    response_model=ChangeOrderOut,
    status_code=status.HTTP_201_CREATED,
    summary="Request a change order",
    description=(
        "Only the assigned mechanic, and only while the job is in progress. "
        "Give a flat ``amount`` or ``line_items``, whose sum becomes the amount."
    ),
)
async def request_change_order(
    job_id: uuid.UUID,
    body: ChangeOrderCreateRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ChangeOrderOut:
    try:
        order = await orchestrator.request_change_order(
            job_id,
            actor,
            body.description,
            body.amount,
            title=body.title,
            line_items=[item.to_input() for item in body.line_items],
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ChangeOrderOut.model_validate(order)


@router.get(
    "/jobs/{job_id}/change-orders",
    response_model=list[ChangeOrderOut],
    summary="List change orders on a job",
)
async def list_change_orders(
    job_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
    pending_only: bool = Query(default=False),
) -> list[ChangeOrderOut]:
    orders = await orchestrator.list_change_orders(job_id, pending_only=pending_only)
    return [ChangeOrderOut.model_validate(o) for o in orders]


@router.get(
    "/jobs/{job_id}/change-orders/stats",
    response_model=ChangeOrderStatsOut,
    summary="Change order counts for a job",
)
async def change_order_stats(
    job_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ChangeOrderStatsOut:
    try:
        stats = await orchestrator.get_change_order_stats(job_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ChangeOrderStatsOut.model_validate(stats)


@router.post(
    "/change-orders/{change_order_id}/line-items",
    response_model=ChangeOrderOut,
    summary="Add line items to a pending change order",
    description="The order's amount becomes the sum of all its line items.",
)
async def add_line_items(
    change_order_id: uuid.UUID,
    body: AddLineItemsRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ChangeOrderOut:
    try:
        order = await orchestrator.add_change_order_line_items(
            change_order_id, actor, [item.to_input() for item in body.line_items]
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ChangeOrderOut.model_validate(order)


@router.post(
    "/change-orders/{change_order_id}/resolve",
    response_model=ChangeOrderResolutionOut,
    summary="Approve or reject a change order",
)
async def resolve_change_order(
    change_order_id: uuid.UUID,
    body: ResolveChangeOrderRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ChangeOrderResolutionOut:
    try:
        result = await orchestrator.resolve_change_order(
            change_order_id, actor, body.decision, body.reason
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ChangeOrderResolutionOut(
        change_order=ChangeOrderOut.model_validate(result.change_order),
        effective_total=result.job.effective_total,
    )


@router.post(
    "/change-orders/{change_order_id}/cancel",
    response_model=ChangeOrderOut,
    summary="Withdraw a pending change order",
)
async def cancel_change_order(
    change_order_id: uuid.UUID,
    body: CancelChangeOrderRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ChangeOrderOut:
    try:
        order = await orchestrator.cancel_change_order(change_order_id, actor, body.reason)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ChangeOrderOut.model_validate(order)
