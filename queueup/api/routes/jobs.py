"""
Job API Routes
==============

  POST /api/v1/jobs                          -- Post a new job (customer)
  GET  /api/v1/jobs/available                -- Jobs open for bidding
  GET  /api/v1/jobs/mine                     -- Caller's jobs (customer or mechanic, admin by status)
  GET  /api/v1/jobs/{job_id}                 -- Job detail
  POST /api/v1/jobs/{job_id}/start           -- Mechanic starts work
  POST /api/v1/jobs/{job_id}/complete        -- Mechanic completes work
  POST /api/v1/jobs/{job_id}/cancel          -- Customer cancels
  POST /api/v1/jobs/{job_id}/transition      -- Raw validated transition
  GET  /api/v1/jobs/{job_id}/timeline        -- Progression history
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from queueup.api.deps import CurrentActor, Orchestrator
from queueup.api.errors import workflow_http_error
from queueup.api.schemas.job import (
    CancelJobRequest,
    CompleteJobRequest,
    JobCreateRequest,
    JobOut,
    TimelineEntryOut,
    TransitionRequest,
    job_view,
)
from queueup.models import JobStatus
from queueup.services.jobStateManager import ActorType
from queueup.services.workflowErrors import WorkflowError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["Jobs"])


# ---------------------------------------------------------------------------
# POST /jobs
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=JobOut,
    status_code=status.HTTP_201_CREATED,
    summary="Post a new job",
)
async def create_job(
    body: JobCreateRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
):
    try:
        job = await orchestrator.create_job(actor, **body.model_dump())
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return job_view(job)


# ---------------------------------------------------------------------------
# GET /jobs/available, /jobs/mine
# ---------------------------------------------------------------------------

@router.get(
    "/available",
    response_model=list[JobOut],
    summary="List jobs open for bidding",
)
async def list_available_jobs(orchestrator: Orchestrator, actor: CurrentActor):
    jobs = await orchestrator.get_available()
    return [job_view(job) for job in jobs]


@router.get(
    "/mine",
    response_model=list[JobOut],
    summary="List the caller's jobs",
    description=(
        "Customers see the jobs they posted; mechanics see the jobs assigned "
        "to them. Optionally filtered by status. Admins list every job in the "
        "given ``status``, which they must pass."
    ),
)
async def list_my_jobs(
    orchestrator: Orchestrator,
    actor: CurrentActor,
    job_status: Optional[JobStatus] = Query(default=None, alias="status"),
):
    if actor.role == ActorType.ADMIN:
        if job_status is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail={"code": "status_required", "message": "Admins must filter by status."},
            )
        jobs = await orchestrator.get_by_status(job_status)
    elif actor.role == ActorType.MECHANIC:
        jobs = await orchestrator.get_by_mechanic(actor.id, status=job_status)
    else:
        jobs = await orchestrator.get_by_customer(actor.id, status=job_status)
    return [job_view(job) for job in jobs]


# ---------------------------------------------------------------------------
# GET /jobs/{job_id}
# ---------------------------------------------------------------------------

@router.get("/{job_id}", response_model=JobOut, summary="Get a job")
async def get_job(job_id: uuid.UUID, orchestrator: Orchestrator, actor: CurrentActor):
    try:
        job = await orchestrator.get_job(job_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return job_view(job)


# ---------------------------------------------------------------------------
# Lifecycle actions
# ---------------------------------------------------------------------------

@router.post("/{job_id}/start", response_model=JobOut, summary="Start work on a job")
async def start_job(job_id: uuid.UUID, orchestrator: Orchestrator, actor: CurrentActor):
    try:
        job = await orchestrator.start_job(job_id, actor)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return job_view(job)


@router.post("/{job_id}/complete", response_model=JobOut, summary="Complete a job")
async def complete_job(
    job_id: uuid.UUID,
    body: CompleteJobRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
):
    try:
        job = await orchestrator.complete_job(job_id, actor, body.completion_notes)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return job_view(job)


@router.post(
    "/{job_id}/cancel",
    response_model=JobOut,
    summary="Cancel a job",
    description=(
        "Cancels the job from any non-terminal status. Active bids are "
        "rejected, pending schedule proposals withdrawn and pending change "
        "orders rejected."
    ),
)
async def cancel_job(
    job_id: uuid.UUID,
    body: CancelJobRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
):
    try:
        job = await orchestrator.cancel_job(job_id, actor, body.reason)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return job_view(job)


@router.post(
    "/{job_id}/transition",
    response_model=JobOut,
    summary="Apply a validated status transition",
    description=(
        "Moves the job to ``status`` if the state machine and actor guards "
        "allow it. ``accepted`` needs ``bid_id`` and runs bid acceptance; "
        "``scheduled`` needs a date and time and files a proposal; "
        "``confirmed`` and ``schedule_rejected`` answer the pending proposal. "
        "Repeating a transition that already happened returns the job unchanged."
    ),
)
async def transition_job(
    job_id: uuid.UUID,
    body: TransitionRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
):
    payload = body.model_dump(exclude={"status"}, exclude_none=True)
    try:
        job = await orchestrator.transition(job_id, body.status, actor, payload)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return job_view(job)


# ---------------------------------------------------------------------------
# GET /jobs/{job_id}/timeline
# ---------------------------------------------------------------------------

@router.get(
    "/{job_id}/timeline",
    response_model=list[TimelineEntryOut],
    summary="Job progression timeline",
)
async def get_timeline(job_id: uuid.UUID, orchestrator: Orchestrator, actor: CurrentActor):
    try:
        entries = await orchestrator.get_timeline(job_id)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return [TimelineEntryOut.model_validate(entry) for entry in entries]
