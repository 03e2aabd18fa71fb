"""
SQLAlchemy models for change orders: additional work a mechanic requests
while a job is in progress and the customer approves or rejects, optionally
broken down into priced line items.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class ChangeOrderStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"   # withdrawn by the mechanic
    EXPIRED = "expired"       # lapsed, or still pending when the job completed


class LineItemCategory(str, enum.Enum):
    LABOR = "labor"
    PARTS = "parts"
    MATERIALS = "materials"
    OTHER = "other"


class ChangeOrder(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "change_orders"

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    mechanic_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), nullable=False, index=True
    )
    title: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[ChangeOrderStatus] = mapped_column(
        Enum(ChangeOrderStatus, name="change_order_status"),
        nullable=False,
        default=ChangeOrderStatus.PENDING,
        index=True,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Relationships
    line_items: Mapped[list["ChangeOrderLineItem"]] = relationship(
        "ChangeOrderLineItem",
        back_populates="change_order",
        cascade="all, delete-orphan",
        order_by="ChangeOrderLineItem.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ChangeOrder(id={self.id}, job={self.job_id}, amount={self.amount}, "
            f"status={self.status.value})>"
        )


class ChangeOrderLineItem(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One priced line of a change order (``total = quantity * unit_price``)."""

    __tablename__ = "change_order_line_items"

    change_order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("change_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category: Mapped[LineItemCategory] = mapped_column(
        Enum(LineItemCategory, name="line_item_category"),
        nullable=False,
        default=LineItemCategory.LABOR,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)

    # Relationships
    change_order: Mapped["ChangeOrder"] = relationship(
        "ChangeOrder", back_populates="line_items"
    )

    def __repr__(self) -> str:
        return (
            f"<ChangeOrderLineItem(id={self.id}, change_order={self.change_order_id}, "
            f"quantity={self.quantity}, unit_price={self.unit_price})>"
        )
