"""
Payment API Routes
==================

  GET  /api/v1/jobs/{job_id}/payments/quote    -- Deposit + processing fee for a method
  POST /api/v1/jobs/{job_id}/payments/deposit  -- Pay the booking deposit
  POST /api/v1/jobs/{job_id}/payments/settle   -- Pay the effective total of a completed job
"""

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Query

from queueup.api.deps import CurrentActor, Orchestrator
from queueup.api.errors import workflow_http_error
from queueup.api.schemas.job import job_view
from queueup.api.schemas.payment import (
    DepositOut,
    PayDepositRequest,
    PaymentQuoteOut,
    SettleJobRequest,
    SettlementOut,
)
from queueup.services.workflowErrors import WorkflowError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs/{job_id}/payments", tags=["Payments"])


@router.get("/quote", response_model=PaymentQuoteOut, summary="Quote the booking deposit")
async def quote_deposit(
    job_id: uuid.UUID,
    orchestrator: Orchestrator,
    actor: CurrentActor,
    payment_method: str = Query(default="card"),
) -> PaymentQuoteOut:
    try:
        quote = await orchestrator.quote_deposit(job_id, payment_method)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return PaymentQuoteOut.model_validate(quote)


@router.post(
    "/deposit",
    response_model=DepositOut,
    summary="Pay the booking deposit",
    description=(
        "Charges the flat booking deposit plus the payment method's processing "
        "fee. A declined payment answers 402 and is recorded on the job; it "
        "can be retried."
    ),
)
async def pay_deposit(
    job_id: uuid.UUID,
    body: PayDepositRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> DepositOut:
    try:
        result = await orchestrator.pay_deposit(
            job_id, actor, body.payment_method, body.payment_token
        )
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    return DepositOut(
        job=job_view(result.job),
        quote=PaymentQuoteOut.model_validate(result.computation),
        transaction_id=result.transaction_id,
    )


@router.post("/settle", response_model=SettlementOut, summary="Settle a completed job")
async def settle_job(
    job_id: uuid.UUID,
    body: SettleJobRequest,
    orchestrator: Orchestrator,
    actor: CurrentActor,
) -> SettlementOut:
    try:
        result = await orchestrator.settle_job(job_id, actor, body.payment_token)
    except WorkflowError as exc:
        raise workflow_http_error(exc) from exc
    breakdown = result.breakdown
    return SettlementOut(
        job=job_view(result.job),
        effective_total=breakdown.effective_total,
        commission_rate=breakdown.commission_rate,
        commission=breakdown.commission,
        mechanic_payout=breakdown.mechanic_payout,
        transaction_id=result.transaction_id,
    )
