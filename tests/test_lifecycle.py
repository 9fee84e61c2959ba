# tests/test_lifecycle.py
"""
Test suite for task lifecycle rules and the dispatch circuit breaker

Tests:
1. Only the documented task transitions are allowed
2. Terminal states are final
3. transition_task stamps start/end times
4. Circuit opens after consecutive failures and recovers through half-open
"""

from datetime import datetime, timedelta

import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from delayqueue.lifecycle import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    InvalidTransitionError,
    TaskState,
    TERMINAL_STATES,
    can_transition,
    is_terminal,
    transition_task,
)
from delayqueue.models import DelayTask


def make_task(state=TaskState.READY, **kwargs) -> DelayTask:
    return DelayTask(task_id="t-1", task_service="echo", run_at=datetime.utcnow(),
                     state=state.value, **kwargs)


# =============================================================================
# Test: State Machine
# =============================================================================

class TestTaskStateMachine:
    """Tests for task state transitions"""

    @pytest.mark.parametrize("target", [TaskState.RUNNING, TaskState.CANCELLED])
    def test_ready_transitions(self, target):
        """A ready task can start or be cancelled"""
        assert can_transition(TaskState.READY, target)

    @pytest.mark.parametrize("target", [TaskState.COMPLETED, TaskState.TIMEDOUT, TaskState.FAILED])
    def test_running_transitions(self, target):
        """A running task ends in exactly one of three outcomes"""
        assert can_transition(TaskState.RUNNING, target)
        assert not can_transition(TaskState.READY, target)

    def test_running_cannot_be_cancelled(self):
        """Cancellation only applies before a dispatcher claims the task"""
        assert not can_transition(TaskState.RUNNING, TaskState.CANCELLED)

    @pytest.mark.parametrize("terminal", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_states_are_final(self, terminal):
        """No transition leaves a terminal state"""
        assert is_terminal(terminal)
        assert not any(can_transition(terminal, target) for target in TaskState)

    def test_string_values_accepted(self):
        assert can_transition("ready", "running")
        assert is_terminal("completed")
        assert not is_terminal("ready")

    def test_transition_stamps_times(self):
        """Starting stamps start_time, finishing stamps end_time"""
        task = make_task()

        transition_task(task, TaskState.RUNNING)
        assert task.state == "running"
        assert task.start_time is not None
        assert task.end_time is None

        record = transition_task(task, TaskState.FAILED, reason="boom")
        assert task.state == "failed"
        assert task.end_time >= task.start_time
        assert record.to_dict()["from_state"] == "running"
        assert record.to_dict()["reason"] == "boom"

    def test_transition_keeps_existing_start_time(self):
        started = datetime.utcnow() - timedelta(minutes=5)
        task = make_task(start_time=started)

        transition_task(task, TaskState.RUNNING)

        assert task.start_time == started

    def test_invalid_transition_raises(self):
        """Completing a task that never started is rejected without side effects"""
        task = make_task()

        with pytest.raises(InvalidTransitionError) as exc_info:
            transition_task(task, TaskState.COMPLETED)

        assert exc_info.value.from_state == TaskState.READY
        assert task.state == "ready"
        assert task.end_time is None


# =============================================================================
# Test: Circuit Breaker
# =============================================================================

class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    """Create a fresh circuit breaker for testing"""
    return CircuitBreaker("test", CircuitBreakerConfig(failure_threshold=3, recovery_timeout=5), clock=clock)


def trip(breaker):
    for _ in range(breaker.config.failure_threshold):
        breaker.record_failure()


class TestCircuitBreakerStates:
    """Tests for circuit breaker state management"""

    def test_initial_state_is_closed(self, breaker):
        """Circuit breaker starts in CLOSED state"""
        assert breaker.is_closed
        assert breaker.can_execute()

    def test_opens_after_threshold(self, breaker, clock):
        """Circuit opens after consecutive failures reach the threshold"""
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.is_closed

        breaker.record_failure()

        assert breaker.is_open
        assert not breaker.can_execute()
        clock.now += 2
        assert breaker.remaining_open_seconds() == 3

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert breaker.is_closed
        assert breaker.failure_count == 1

    def test_single_trial_after_recovery_timeout(self, breaker, clock):
        """After the recovery timeout exactly one trial poll is admitted"""
        trip(breaker)
        clock.now += 5

        assert breaker.can_execute()
        assert breaker.is_half_open
        assert not breaker.can_execute()

    def test_trial_success_closes(self, breaker, clock):
        trip(breaker)
        clock.now += 5
        breaker.can_execute()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0
        assert breaker.can_execute()

    def test_trial_failure_reopens(self, breaker, clock):
        trip(breaker)
        clock.now += 5
        breaker.can_execute()

        breaker.record_failure()

        assert breaker.is_open
        assert breaker.remaining_open_seconds() == 5
        assert not breaker.can_execute()

    def test_closed_has_no_remaining_wait(self, breaker):
        assert breaker.remaining_open_seconds() == 0.0

    def test_force_open_and_close(self, breaker):
        breaker.force_open()
        assert not breaker.can_execute()

        breaker.force_close()
        assert breaker.is_closed
        assert breaker.can_execute()

    def test_status(self, breaker, clock):
        """Status is JSON-friendly for the health endpoint"""
        trip(breaker)
        clock.now += 1
        status = breaker.get_status()

        assert status["name"] == "test"
        assert status["state"] == "open"
        assert status["failure_count"] == 3
        assert status["remaining_open_seconds"] == 4
        assert status["config"]["failure_threshold"] == 3
        assert isinstance(status["last_state_change"], str)
