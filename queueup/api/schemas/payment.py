"""
Pydantic v2 schemas for deposits and settlement.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from queueup.api.schemas.job import JobOut


class PaymentQuoteOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: Optional[uuid.UUID] = None
    payment_method: str
    deposit: Decimal
    processing_fee: Decimal
    total_due_now: Decimal


class PayDepositRequest(BaseModel):
    payment_method: str = Field(min_length=1, max_length=30, examples=["card"])
    payment_token: str = Field(min_length=1, description="Client-side payment method token")


class SettleJobRequest(BaseModel):
    payment_token: str = Field(min_length=1)


class DepositOut(BaseModel):
    job: JobOut
    quote: PaymentQuoteOut
    transaction_id: Optional[str] = None


class SettlementOut(BaseModel):
    job: JobOut
    effective_total: Decimal
    commission_rate: Decimal
    commission: Decimal
    mechanic_payout: Decimal
    transaction_id: Optional[str] = None
