"""
QueueUp SQLAlchemy Models
=========================

Central import point for all ORM models. Import ``Base`` from here for the
``create_all`` convenience in tests and local bootstrapping.

Usage::

    from queueup.models import Base, Job, Bid, ChangeOrder, ChangeOrderLineItem
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

# -- Jobs --
from .job import Job, JobStatus, JobTimelineEntry, PaymentStatus, ServiceType, Urgency

# -- Bids --
from .bid import Bid, BidStatus

# -- Scheduling --
from .schedule import ProposalStatus, ScheduleProposal

# -- Change orders --
from .change_order import ChangeOrder, ChangeOrderLineItem, ChangeOrderStatus, LineItemCategory

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "utcnow",
    "Job",
    "JobStatus",
    "JobTimelineEntry",
    "PaymentStatus",
    "ServiceType",
    "Urgency",
    "Bid",
    "BidStatus",
    "ProposalStatus",
    "ScheduleProposal",
    "ChangeOrder",
    "ChangeOrderLineItem",
    "ChangeOrderStatus",
    "LineItemCategory",
]
