"""
Workflow error taxonomy.

Every failure raised by the workflow engine derives from ``WorkflowError``
and carries a stable ``code`` that the API layer maps onto an HTTP status.
Structural and validation errors are deterministic: callers surface them,
they are never retried.
"""

from __future__ import annotations

import uuid


class WorkflowError(Exception):
    """Base exception for all workflow engine errors."""

    code: str = "workflow_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(WorkflowError):
    """Raised when a referenced job, bid, proposal or change order does not exist."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: uuid.UUID) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} with id '{entity_id}' not found.")


class InvalidTransitionError(WorkflowError):
    """Raised when a job status transition is not allowed."""

    code = "invalid_transition"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class NotOwnerError(WorkflowError):
    """Raised when the actor lacks authority over the entity."""

    code = "not_owner"


class DuplicateBidError(WorkflowError):
    """Raised when a mechanic already has an active bid on the job."""

    code = "duplicate_bid"


class JobNotBiddableError(WorkflowError):
    """Raised when a bid is placed on a job that is no longer open for bids."""

    code = "job_not_biddable"


class BidNotActiveError(WorkflowError):
    """Raised when acting on a bid that has already been resolved."""

    code = "bid_not_active"


class JobNotInProgressError(WorkflowError):
    """Raised when a change order is requested outside of ``in_progress``."""

    code = "job_not_in_progress"


class NoPendingProposalError(WorkflowError):
    """Raised when accepting or rejecting a schedule with nothing pending."""

    code = "no_pending_proposal"


class WrongActorError(WorkflowError):
    """Raised when the proposer tries to answer their own schedule proposal."""

    code = "wrong_actor"


class JobNotInNegotiableStateError(WorkflowError):
    """Raised when schedule negotiation is attempted in the wrong job status."""

    code = "job_not_in_negotiable_state"


class InvalidAmountError(WorkflowError):
    """Raised for non-positive bid or change order amounts."""

    code = "invalid_amount"


class AlreadyResolvedError(WorkflowError):
    """Raised when resolving a change order that is no longer pending."""

    code = "already_resolved"


class UnknownPaymentMethodError(WorkflowError):
    """Raised when no processing-fee rate is configured for a payment method."""

    code = "unknown_payment_method"

    def __init__(self, payment_method: str) -> None:
        self.payment_method = payment_method
        super().__init__(f"Unsupported payment method '{payment_method}'.")


class PaymentFailedError(WorkflowError):
    """Raised when the payment collaborator declines or errors on a charge."""

    code = "payment_failed"

    def __init__(self, message: str, job_id: uuid.UUID | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)


class ConcurrentModificationError(WorkflowError):
    """Raised when another writer updated the job between read and write."""

    code = "concurrent_modification"


class JobLockTimeoutError(WorkflowError):
    """Raised when the per-job lock could not be acquired in time."""

    code = "job_lock_timeout"

    def __init__(self, job_id: uuid.UUID, timeout: float) -> None:
        self.job_id = job_id
        super().__init__(
            f"Job {job_id} is busy; lock not acquired within {timeout:.1f}s."
        )
