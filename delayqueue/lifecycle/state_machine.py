# delayqueue/lifecycle/state_machine.py
"""
Task State Machine - Lifecycle state transitions
READY → RUNNING → {COMPLETED | TIMEDOUT | FAILED}, or READY → CANCELLED

The store enforces the same rules with conditional updates; this module is the
in-process check applied before any state is written.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Set
from dataclasses import dataclass, field

logger = logging.getLogger("delayqueue.lifecycle.state_machine")


class TaskState(str, Enum):
    """Task lifecycle states"""
    READY = "ready"            # Persisted and waiting in the claim queue
    RUNNING = "running"        # Claimed and started by exactly one dispatcher
    COMPLETED = "completed"    # Taskable returned a value
    TIMEDOUT = "timedout"      # Taskable exceeded the task timeout
    FAILED = "failed"          # Taskable raised
    CANCELLED = "cancelled"    # Cancelled before any dispatcher claimed it


TERMINAL_STATES: Set[TaskState] = {
    TaskState.COMPLETED,
    TaskState.TIMEDOUT,
    TaskState.FAILED,
    TaskState.CANCELLED,
}

# Valid state transitions
VALID_TRANSITIONS: Dict[TaskState, Set[TaskState]] = {
    TaskState.READY: {TaskState.RUNNING, TaskState.CANCELLED},
    TaskState.RUNNING: {TaskState.COMPLETED, TaskState.TIMEDOUT, TaskState.FAILED},
    TaskState.COMPLETED: set(),
    TaskState.TIMEDOUT: set(),
    TaskState.FAILED: set(),
    TaskState.CANCELLED: set(),
}


class InvalidTransitionError(Exception):
    """Raised when an invalid state transition is attempted"""
    def __init__(self, task_id: str, from_state: TaskState, to_state: TaskState):
        self.task_id = task_id
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid transition for {task_id}: {from_state.value} → {to_state.value}"
        )


@dataclass
class StateTransition:
    """Record of a state transition"""
    task_id: str
    from_state: TaskState
    to_state: TaskState
    timestamp: datetime = field(default_factory=datetime.utcnow)
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


def is_terminal(state) -> bool:
    return TaskState(state) in TERMINAL_STATES


def can_transition(from_state, to_state) -> bool:
    """Check if a transition between two states is valid"""
    return TaskState(to_state) in VALID_TRANSITIONS.get(TaskState(from_state), set())


def transition_task(task, new_state: TaskState, reason: Optional[str] = None) -> StateTransition:
    """
    Move a task record to a new state and stamp its lifecycle timestamps.

    start_time is kept when the caller already stamped it; end_time is set on
    every terminal transition.

    Raises:
        InvalidTransitionError: If transition is not valid
    """
    current = TaskState(task.state)
    new_state = TaskState(new_state)
    if not can_transition(current, new_state):
        raise InvalidTransitionError(task.task_id, current, new_state)

    transition = StateTransition(
        task_id=task.task_id,
        from_state=current,
        to_state=new_state,
        reason=reason
    )

    task.state = new_state.value
    if new_state == TaskState.RUNNING and task.start_time is None:
        task.start_time = transition.timestamp
    if new_state in TERMINAL_STATES:
        task.end_time = transition.timestamp

    logger.debug(f"Task {task.task_id}: {current.value} → {new_state.value}"
                 + (f" ({reason})" if reason else ""))

    return transition
