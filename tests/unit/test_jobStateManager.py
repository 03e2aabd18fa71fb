"""
Unit tests for the Job State Manager.

Tests the finite state machine governing job status transitions, the actor
guards, terminal states and the available-action helper.
"""

import pytest

from queueup.models.job import JobStatus
from queueup.services.jobStateManager import (
    TERMINAL_STATUSES,
    VALID_TRANSITIONS,
    Actor,
    ActorType,
    get_valid_transitions,
    is_terminal,
    validate_transition,
)


# ---------------------------------------------------------------------------
# Valid state transitions (happy path)
# ---------------------------------------------------------------------------


class TestValidTransitions:
    """Tests that all documented valid transitions are allowed."""

    def test_posted_to_bidding_by_system(self):
        result = validate_transition(JobStatus.POSTED, JobStatus.BIDDING)
        assert result.allowed is True

    def test_bidding_to_accepted_by_customer(self):
        result = validate_transition(JobStatus.BIDDING, JobStatus.ACCEPTED, ActorType.CUSTOMER)
        assert result.allowed is True

    @pytest.mark.parametrize("actor", [ActorType.CUSTOMER, ActorType.MECHANIC])
    def test_accepted_to_scheduled_by_either_party(self, actor):
        assert validate_transition(JobStatus.ACCEPTED, JobStatus.SCHEDULED, actor).allowed

    @pytest.mark.parametrize("actor", [ActorType.CUSTOMER, ActorType.MECHANIC])
    def test_scheduled_to_confirmed_by_either_party(self, actor):
        assert validate_transition(JobStatus.SCHEDULED, JobStatus.CONFIRMED, actor).allowed

    def test_renegotiation_loop(self):
        assert validate_transition(
            JobStatus.SCHEDULED, JobStatus.SCHEDULE_REJECTED, ActorType.MECHANIC
        ).allowed
        assert validate_transition(
            JobStatus.SCHEDULE_REJECTED, JobStatus.SCHEDULED, ActorType.CUSTOMER
        ).allowed

    def test_confirmed_to_in_progress_by_mechanic(self):
        result = validate_transition(JobStatus.CONFIRMED, JobStatus.IN_PROGRESS, ActorType.MECHANIC)
        assert result.allowed is True

    def test_in_progress_to_completed_by_mechanic(self):
        result = validate_transition(JobStatus.IN_PROGRESS, JobStatus.COMPLETED, ActorType.MECHANIC)
        assert result.allowed is True

    @pytest.mark.parametrize(
        "status",
        [s for s in JobStatus if s not in TERMINAL_STATUSES],
    )
    def test_every_non_terminal_status_can_be_cancelled(self, status):
        assert validate_transition(status, JobStatus.CANCELLED, ActorType.CUSTOMER).allowed


# ---------------------------------------------------------------------------
# Invalid transitions
# ---------------------------------------------------------------------------


class TestInvalidTransitions:
    def test_cannot_skip_bidding(self):
        result = validate_transition(JobStatus.POSTED, JobStatus.ACCEPTED, ActorType.CUSTOMER)
        assert result.allowed is False
        assert result.forbidden is False
        assert "posted" in result.reason

    def test_cannot_start_unconfirmed_job(self):
        result = validate_transition(JobStatus.SCHEDULED, JobStatus.IN_PROGRESS, ActorType.MECHANIC)
        assert result.allowed is False

    def test_confirmed_cannot_go_back_to_scheduled(self):
        assert validate_transition(JobStatus.CONFIRMED, JobStatus.SCHEDULED).allowed is False

    @pytest.mark.parametrize("terminal", [JobStatus.COMPLETED, JobStatus.CANCELLED])
    def test_terminal_states_have_no_exits(self, terminal):
        for target in JobStatus:
            assert validate_transition(terminal, target).allowed is False

    def test_reason_lists_allowed_targets(self):
        result = validate_transition(JobStatus.ACCEPTED, JobStatus.COMPLETED)
        assert "cancelled, scheduled" in result.reason


# ---------------------------------------------------------------------------
# Guards
# ---------------------------------------------------------------------------


class TestGuards:
    """Structurally valid transitions triggered by the wrong actor type."""

    @pytest.mark.parametrize("actor", [ActorType.CUSTOMER, ActorType.MECHANIC])
    def test_bidding_is_system_driven(self, actor):
        result = validate_transition(JobStatus.POSTED, JobStatus.BIDDING, actor)
        assert result.allowed is False
        assert result.forbidden is True

    def test_mechanic_cannot_accept_a_bid(self):
        result = validate_transition(JobStatus.BIDDING, JobStatus.ACCEPTED, ActorType.MECHANIC)
        assert result.forbidden is True

    def test_mechanic_cannot_cancel(self):
        result = validate_transition(JobStatus.CONFIRMED, JobStatus.CANCELLED, ActorType.MECHANIC)
        assert result.forbidden is True

    def test_customer_cannot_start_work(self):
        result = validate_transition(JobStatus.CONFIRMED, JobStatus.IN_PROGRESS, ActorType.CUSTOMER)
        assert result.forbidden is True

    def test_customer_cannot_complete_work(self):
        result = validate_transition(JobStatus.IN_PROGRESS, JobStatus.COMPLETED, ActorType.CUSTOMER)
        assert result.forbidden is True

    @pytest.mark.parametrize("actor", [ActorType.SYSTEM, ActorType.ADMIN])
    def test_privileged_actors_pass_every_guard(self, actor):
        for current, targets in VALID_TRANSITIONS.items():
            for target in targets:
                assert validate_transition(current, target, actor).allowed


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    def test_customer_actions_while_bidding(self):
        assert get_valid_transitions(JobStatus.BIDDING, ActorType.CUSTOMER) == [
            JobStatus.ACCEPTED,
            JobStatus.CANCELLED,
        ]

    def test_mechanic_actions_while_in_progress(self):
        assert get_valid_transitions(JobStatus.IN_PROGRESS, ActorType.MECHANIC) == [
            JobStatus.COMPLETED,
        ]

    def test_terminal(self):
        assert is_terminal(JobStatus.COMPLETED)
        assert is_terminal(JobStatus.CANCELLED)
        assert not is_terminal(JobStatus.IN_PROGRESS)

    def test_actor_constructors(self):
        assert Actor.system().is_privileged
        assert not Actor.customer(None).is_privileged
        assert Actor(role=ActorType.ADMIN).is_privileged
