# delayqueue/lifecycle/circuit_breaker.py
"""
Circuit breaker for the dispatch loop.

After repeated task store or claim queue failures the dispatchers of a worker
stop polling for recovery_timeout seconds, then let a single trial poll through.
A successful trial resumes polling; a failed one pauses again.
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("delayqueue.lifecycle.circuit_breaker")


class CircuitState(str, Enum):
    """Circuit breaker states"""
    CLOSED = "closed"        # Polling proceeds
    OPEN = "open"            # Polling paused until the recovery timeout passes
    HALF_OPEN = "half_open"  # One trial poll in flight


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5       # Consecutive failed polls before pausing
    recovery_timeout: float = 30.0   # Seconds paused before a trial poll
    success_threshold: int = 1       # Successful trials needed to resume


class CircuitBreaker:
    """
    Shared by every dispatcher thread of one worker process.
    clock is a monotonic seconds source, replaceable in tests.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.trial_successes = 0
        self.opened_at: Optional[float] = None
        self.last_state_change = datetime.utcnow()
        self._trial_in_flight = False

        logger.info(f"Circuit breaker {name} ready | threshold={self.config.failure_threshold} | "
                    f"recovery={self.config.recovery_timeout}s")

    @property
    def is_closed(self) -> bool:
        return self.state == CircuitState.CLOSED

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    @property
    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN

    def can_execute(self) -> bool:
        """True if the caller may poll now; in half-open only one caller gets through"""
        with self._lock:
            if self.state == CircuitState.CLOSED:
                return True

            if self.state == CircuitState.OPEN:
                if self._clock() - self.opened_at < self.config.recovery_timeout:
                    return False
                self._move_to(CircuitState.HALF_OPEN)

            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def remaining_open_seconds(self) -> float:
        with self._lock:
            if self.state != CircuitState.OPEN:
                return 0.0
            return max(0.0, self.config.recovery_timeout - (self._clock() - self.opened_at))

    def record_success(self):
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self.trial_successes += 1
                if self.trial_successes >= self.config.success_threshold:
                    self._move_to(CircuitState.CLOSED)
            else:
                self.failure_count = 0

    def record_failure(self):
        with self._lock:
            self.failure_count += 1
            if self.state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN)
            elif self.state == CircuitState.CLOSED and self.failure_count >= self.config.failure_threshold:
                self._move_to(CircuitState.OPEN)

    def _move_to(self, new_state: CircuitState):
        old_state = self.state
        self.state = new_state
        self.last_state_change = datetime.utcnow()
        self._trial_in_flight = False
        self.trial_successes = 0

        if new_state == CircuitState.OPEN:
            self.opened_at = self._clock()
            logger.warning(f"Circuit breaker {self.name}: {old_state.value} -> open, "
                           f"polling paused for {self.config.recovery_timeout}s "
                           f"after {self.failure_count} failures")
            return

        if new_state == CircuitState.CLOSED:
            self.failure_count = 0
            self.opened_at = None
        logger.info(f"Circuit breaker {self.name}: {old_state.value} -> {new_state.value}")

    def force_open(self):
        """Pause polling for one recovery timeout (maintenance)"""
        with self._lock:
            self._move_to(CircuitState.OPEN)

    def force_close(self):
        with self._lock:
            self._move_to(CircuitState.CLOSED)

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "remaining_open_seconds": round(self.remaining_open_seconds(), 3),
            "last_state_change": self.last_state_change.isoformat(),
            "config": {
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout": self.config.recovery_timeout,
                "success_threshold": self.config.success_threshold,
            },
        }
