"""
Job State Manager
=================

Finite state machine governing all valid job status transitions. Every
status change MUST go through ``validate_transition`` before being persisted.

State machine overview::

    posted --> bidding --> accepted --> scheduled --> confirmed
        --> in_progress --> completed

    scheduled --> schedule_rejected --> scheduled   (renegotiation loop)

    (any non-terminal state) --> cancelled

Guards enforce that only the correct actor type can trigger certain
transitions. Ownership (is this *the* customer / *the* assigned mechanic of
the job) is checked by the job store, which knows the job's parties.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Optional

from queueup.models.job import JobStatus


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------

class ActorType(str, enum.Enum):
    CUSTOMER = "customer"
    MECHANIC = "mechanic"
    SYSTEM = "system"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    """Who is asking for a change. ``id`` is None for the system actor."""
    role: ActorType
    id: Optional[uuid.UUID] = None

    @classmethod
    def customer(cls, customer_id: uuid.UUID) -> "Actor":
        return cls(role=ActorType.CUSTOMER, id=customer_id)

    @classmethod
    def mechanic(cls, mechanic_id: uuid.UUID) -> "Actor":
        return cls(role=ActorType.MECHANIC, id=mechanic_id)

    @classmethod
    def system(cls) -> "Actor":
        return cls(role=ActorType.SYSTEM)

    @property
    def is_privileged(self) -> bool:
        return self.role in (ActorType.SYSTEM, ActorType.ADMIN)


SYSTEM_ACTOR = Actor.system()


# ---------------------------------------------------------------------------
# Transition guard result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransitionResult:
    """Result of a transition validation attempt.

    ``forbidden`` distinguishes a guard failure (the transition exists but
    this actor may not trigger it) from a structurally invalid transition.
    """
    allowed: bool
    reason: str | None = None
    forbidden: bool = False


# ---------------------------------------------------------------------------
# Transition definitions
# ---------------------------------------------------------------------------

VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.POSTED: {
        JobStatus.BIDDING,
        JobStatus.CANCELLED,
    },
    JobStatus.BIDDING: {
        JobStatus.ACCEPTED,
        JobStatus.CANCELLED,
    },
    JobStatus.ACCEPTED: {
        JobStatus.SCHEDULED,
        JobStatus.CANCELLED,
    },
    JobStatus.SCHEDULED: {
        JobStatus.CONFIRMED,
        JobStatus.SCHEDULE_REJECTED,
        JobStatus.CANCELLED,
    },
    JobStatus.SCHEDULE_REJECTED: {
        JobStatus.SCHEDULED,
        JobStatus.CANCELLED,
    },
    JobStatus.CONFIRMED: {
        JobStatus.IN_PROGRESS,
        JobStatus.CANCELLED,
    },
    JobStatus.IN_PROGRESS: {
        JobStatus.COMPLETED,
        JobStatus.CANCELLED,
    },
    # Terminal states
    JobStatus.COMPLETED: set(),
    JobStatus.CANCELLED: set(),
}

TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.CANCELLED,
})

BIDDABLE_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.POSTED,
    JobStatus.BIDDING,
})

# Statuses in which the job must carry a scheduled date and time
SCHEDULED_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.SCHEDULED,
    JobStatus.CONFIRMED,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
})


# ---------------------------------------------------------------------------
# Guard functions
# ---------------------------------------------------------------------------

def _guard_bidding(actor_type: ActorType) -> TransitionResult:
    """Bidding opens as a side effect of the first bid, never by request."""
    if actor_type not in (ActorType.SYSTEM, ActorType.ADMIN):
        return TransitionResult(
            allowed=False,
            forbidden=True,
            reason="A job moves to bidding only when the first bid is placed.",
        )
    return TransitionResult(allowed=True)


def _guard_customer_only(
    new_status: JobStatus,
    actor_type: ActorType,
) -> TransitionResult:
    if actor_type not in (ActorType.CUSTOMER, ActorType.SYSTEM, ActorType.ADMIN):
        return TransitionResult(
            allowed=False,
            forbidden=True,
            reason=f"Only the customer can move a job to '{new_status.value}'.",
        )
    return TransitionResult(allowed=True)


def _guard_mechanic_only(
    new_status: JobStatus,
    actor_type: ActorType,
) -> TransitionResult:
    if actor_type not in (ActorType.MECHANIC, ActorType.SYSTEM, ActorType.ADMIN):
        return TransitionResult(
            allowed=False,
            forbidden=True,
            reason=f"Only the assigned mechanic can move a job to '{new_status.value}'.",
        )
    return TransitionResult(allowed=True)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def validate_transition(
    current_status: JobStatus,
    new_status: JobStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> TransitionResult:
    """Validate whether a job status transition is allowed.

    Checks two layers:
    1. Is the transition structurally valid per the state machine?
    2. Does the actor type have permission for this specific transition?

    Returns a ``TransitionResult`` with ``allowed=True`` if the transition
    is permitted, or ``allowed=False`` with a human-readable ``reason``.
    """
    # 1. Structural check
    allowed_targets = VALID_TRANSITIONS.get(current_status, set())
    if new_status not in allowed_targets:
        return TransitionResult(
            allowed=False,
            reason=(
                f"Invalid transition: '{current_status.value}' -> '{new_status.value}'. "
                f"Allowed transitions from '{current_status.value}': "
                f"{', '.join(s.value for s in sorted(allowed_targets, key=lambda s: s.value)) or 'none'}."
            ),
        )

    # 2. Guard checks for specific transitions
    if new_status == JobStatus.BIDDING:
        return _guard_bidding(actor_type)

    if new_status in (JobStatus.ACCEPTED, JobStatus.CANCELLED):
        return _guard_customer_only(new_status, actor_type)

    if new_status in (JobStatus.IN_PROGRESS, JobStatus.COMPLETED):
        return _guard_mechanic_only(new_status, actor_type)

    return TransitionResult(allowed=True)


def get_valid_transitions(
    current_status: JobStatus,
    actor_type: ActorType = ActorType.SYSTEM,
) -> list[JobStatus]:
    """Return the statuses that the given actor can transition to from the
    current status.

    Useful for UI hints (e.g. showing available actions to the user).
    """
    candidates = VALID_TRANSITIONS.get(current_status, set())
    valid: list[JobStatus] = []
    for target in candidates:
        result = validate_transition(current_status, target, actor_type)
        if result.allowed:
            valid.append(target)
    return sorted(valid, key=lambda s: s.value)


def is_terminal(status: JobStatus) -> bool:
    return status in TERMINAL_STATUSES
