# delayqueue/lifecycle/__init__.py
"""
Lifecycle Module - Task state machine and the dispatch loop circuit breaker
"""

from .circuit_breaker import CircuitBreaker, CircuitState, CircuitBreakerConfig
from .state_machine import (
    TaskState,
    StateTransition,
    InvalidTransitionError,
    VALID_TRANSITIONS,
    TERMINAL_STATES,
    can_transition,
    is_terminal,
    transition_task,
)

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # State Machine
    "TaskState",
    "StateTransition",
    "InvalidTransitionError",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "can_transition",
    "is_terminal",
    "transition_task",
]
