"""
Schedule Negotiation API Routes
===============================

  POST /api/v1/jobs/{job_id}/schedule/proposals  -- Propose a date/time
  GET  /api/v1/jobs/{job_id}/schedule/proposals  -- Negotiation history
  POST /api/v1/jobs/{job_id}/schedule/accept     -- Accept the pending proposal
  POST /api/v1/jobs/{job_id}/schedule/reject     -- Reject, optionally countering
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, status

from queueup.api.deps import CurrentActor, Orchestrator
from queueup.api.errors import workflow_http_error
from queueup.api.schemas.job import job_view
from queueup.api.schemas.schedule import (
    ProposalOut,
    ProposeScheduleRequest,
    RejectScheduleRequest,
    ScheduleStateOut,
)
from queueup.models import ScheduleProposal
from queueup.services.scheduleNegotiator import ProposedSlot
from queueup.services.workflowErrors import WorkflowError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs/{job_id}/schedule", tags=["Schedule"])


def _proposal_out(proposal: Optional[ScheduleProposal]) -> Optional[ProposalOut]:
    return ProposalOut.model_validate(proposal) if proposal is not None else None


@router.post(
    "/proposals",
    response_model=ScheduleStateOut,
    status_code=status.HTTP_201_CREATED,
    summary="Propose a service date and time",
    description=(
        "Either party may propose once a bid is accepted. A proposal replaces "
        "any pending one; from the other party it counts as a counter-proposal."
    ),
)
async def propose_schedule(
    job_id: uuid.UUID,
    body: ProposeScheduleRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ScheduleStateOut:
    try:
        outcome = await orchestrator.propose_schedule(
            job_id, actor, body.proposed_date, body.proposed_time, body.notes
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ScheduleStateOut(
        job=job_view(outcome.job), pending_proposal=_proposal_out(outcome.proposal)
    )


@router.get(
    "/proposals",
    response_model=list[ProposalOut],
    summary="List schedule proposals for a job",
)
async def list_proposals(
    job_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> list[ProposalOut]:
    proposals = await orchestrator.list_proposals(job_id)
    return [ProposalOut.model_validate(p) for p in proposals]


@router.post("/accept", response_model=ScheduleStateOut, summary="Accept the pending proposal")
async def accept_schedule(
    job_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ScheduleStateOut:
    try:
        result = await orchestrator.accept_schedule(job_id, actor)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ScheduleStateOut(job=job_view(result.job))


@router.post("/reject", response_model=ScheduleStateOut, summary="Reject the pending proposal")
async def reject_schedule(
    job_id: uuid.UUID,
    body: RejectScheduleRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> ScheduleStateOut:
    counter = None
    if body.counter_proposal is not None:
        counter = ProposedSlot(
            proposed_date=body.counter_proposal.proposed_date,
            proposed_time=body.counter_proposal.proposed_time,
            notes=body.counter_proposal.notes,
        )
    try:
        result = await orchestrator.reject_schedule(job_id, actor, counter)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return ScheduleStateOut(
        job=job_view(result.job), pending_proposal=_proposal_out(result.counter)
    )
