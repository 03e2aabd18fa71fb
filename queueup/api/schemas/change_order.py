"""
Pydantic v2 schemas for the Change Order API.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from queueup.models import ChangeOrderStatus, LineItemCategory
from queueup.services.changeOrderService import LineItemInput


class LineItemIn(BaseModel):
    description: str = Field(min_length=1, max_length=1000)
    quantity: int = Field(gt=0, le=10_000)
    unit_price: Decimal = Field(gt=0)
    category: LineItemCategory = LineItemCategory.LABOR

    def to_input(self) -> LineItemInput:
        return LineItemInput(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            category=self.category,
        )


class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    category: LineItemCategory
    description: str
    quantity: int
    unit_price: Decimal
    total: Decimal


class ChangeOrderCreateRequest(BaseModel):
    """Priced by a flat ``amount``, by ``line_items``, or both when they agree."""

    title: Optional[str] = Field(default=None, max_length=200)
    description: str = Field(min_length=1, max_length=5000)
    amount: Optional[Decimal] = Field(
        default=None, description="Additional cost of the requested work"
    )
    line_items: list[LineItemIn] = Field(default_factory=list, max_length=100)


class AddLineItemsRequest(BaseModel):
    line_items: list[LineItemIn] = Field(min_length=1, max_length=100)


class ResolveChangeOrderRequest(BaseModel):
    decision: Literal["approved", "rejected"]
    reason: Optional[str] = Field(default=None, max_length=1000)


class CancelChangeOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=1000)


class ChangeOrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    job_id: uuid.UUID
    mechanic_id: uuid.UUID
    customer_id: uuid.UUID
    title: Optional[str] = None
    description: str
    amount: Decimal
    status: ChangeOrderStatus
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None
    line_items: list[LineItemOut] = []


class ChangeOrderResolutionOut(BaseModel):
    change_order: ChangeOrderOut
    effective_total: Decimal


class ChangeOrderStatsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    pending: int
    approved: int
    rejected: int
    cancelled: int
    expired: int
    approved_amount: Decimal
