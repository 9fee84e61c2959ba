# delayqueue/dispatcher/core.py
"""
Dispatcher - polls the claim queue for due tasks and executes them exactly once.

One fire() cycle:
    next_due(now) -> claim(id) -> store.find(id) -> store.start(task)
    -> taskable.run(task) under timeout_run -> store.end(task)

Two independent exclusivity layers:
- claim queue removal (fast path: losers see a removal count of 0)
- store conditional start (authoritative: only a READY row can become RUNNING,
  which also guards fire_task()/run_task() calls that bypass the queue)

Any number of dispatchers, in threads or processes, may share one queue and one
store. Submission writes the store first, then the queue; a crash in between
leaves a READY record that initialize() puts back on the queue.
"""

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Union

from ..errors import CollaboratorError, ConfigurationError
from ..lifecycle.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from ..lifecycle.state_machine import TaskState, transition_task
from ..middleware.correlation import task_context
from ..models import DelayTask, TaskSubmission, utcnow
from ..queue.base import ClaimQueue
from ..store.task_store import TaskStore
from .backoff import calculate_backoff_seconds, random_sleep
from .taskable import TaskableRegistry
from .timeout import CancellationToken, timeout_run

logger = logging.getLogger("delayqueue.dispatcher")

TIMEOUT_RESULT = "Task timed out after {timeout}s"


class FireOutcome(str, Enum):
    """What a single fire() cycle did"""
    IDLE = "idle"              # Nothing due, backoff slept
    LOST_RACE = "lost_race"    # Another dispatcher claimed the id first
    NOT_FOUND = "not_found"    # Claimed id has no record in the store
    NOT_READY = "not_ready"    # Record was no longer READY when starting it
    COMPLETED = "completed"
    TIMEDOUT = "timedout"
    FAILED = "failed"


@dataclass
class DispatcherConfig:
    """Polling and recovery settings of one dispatcher"""
    poll_min_ms: int = 500              # Idle backoff lower bound
    poll_max_ms: int = 1500             # Idle backoff upper bound
    timeout_grace_seconds: float = 1.0  # Wait for a timed out taskable to honour cancellation
    max_backoff_seconds: int = 60       # Cap of the backoff after collaborator failures

    def __post_init__(self):
        if self.poll_min_ms < 0 or self.poll_max_ms < self.poll_min_ms:
            raise ConfigurationError(
                f"Invalid poll interval: min={self.poll_min_ms}ms max={self.poll_max_ms}ms"
            )

    @classmethod
    def from_settings(cls, config) -> "DispatcherConfig":
        return cls(
            poll_min_ms=config.POLL_MIN_MS,
            poll_max_ms=config.POLL_MAX_MS,
            timeout_grace_seconds=config.TIMEOUT_GRACE_SECONDS,
            max_backoff_seconds=config.MAX_BACKOFF_SECONDS,
        )


def current_millis() -> int:
    return int(time.time() * 1000)


class Dispatcher:
    """
    Polling dispatcher over a claim queue and a task store.

    token is the shutdown signal: stop() cancels it, run() returns once it is
    cancelled and the idle backoff wakes up immediately.
    """

    def __init__(
        self,
        store: TaskStore,
        queue: ClaimQueue,
        resolver: TaskableRegistry,
        config: Optional[DispatcherConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], int] = current_millis,
        token: Optional[CancellationToken] = None,
        breaker: Optional[CircuitBreaker] = None,
        name: str = "dispatcher",
    ):
        self.store = store
        self.queue = queue
        self.resolver = resolver
        self.config = config or DispatcherConfig()
        self.rng = rng or random.Random()
        self.clock = clock
        self.token = token or CancellationToken()
        self.breaker = breaker or CircuitBreaker(name, CircuitBreakerConfig())
        self.name = name

    # =========================================================================
    # Submission / cancellation / recovery
    # =========================================================================

    def submit(
        self,
        submission: Union[TaskSubmission, Sequence[TaskSubmission]],
    ) -> Union[DelayTask, List[DelayTask]]:
        """
        Persist then enqueue one task or a batch.

        The two writes are not atomic: if the enqueue fails the records stay
        READY in the store until initialize() runs.
        """
        if isinstance(submission, TaskSubmission):
            task = submission.create_task()
            self.store.add(task)
            self.queue.enqueue(task.task_id, task.score)
            logger.info(f"Task submitted | task_id={task.task_id} | service={task.task_service} | run_at={task.run_at.isoformat()}")
            return task

        tasks = [item.create_task() for item in submission]
        if not tasks:
            return []
        self.store.add(tasks)
        self.queue.enqueue_batch({task.task_id: task.score for task in tasks})
        logger.info(f"Submitted {len(tasks)} tasks")
        return tasks

    def cancel(self, reason: str, task_ids: Union[str, Sequence[str]]) -> int:
        """
        Cancel tasks that have not been claimed yet.

        Returns the number of records actually cancelled. A task already claimed
        is not in the queue and no longer READY in the store, so it runs to its
        own terminal state.
        """
        ids = [task_ids] if isinstance(task_ids, str) else list(task_ids)
        if not ids:
            return 0
        self.queue.remove(ids)
        cancelled = self.store.cancel_tasks(reason, ids)
        logger.info(f"Cancelled {cancelled}/{len(ids)} tasks | reason={reason}")
        return cancelled

    def initialize(self) -> int:
        """
        Rebuild the claim queue from every READY record in the store.

        Idempotent: re-adding an id only rewrites its score with the same run time.
        Call on startup and whenever the queue may have lost entries.
        """
        tasks = self.store.list_ready()
        if not tasks:
            logger.info("Initialize: no ready tasks to enqueue")
            return 0

        self.queue.enqueue_batch({task.task_id: task.score for task in tasks})
        logger.info(f"Initialize: enqueued {len(tasks)} ready tasks")
        return len(tasks)

    def find(self, task_id: str) -> Optional[DelayTask]:
        return self.store.find(task_id)

    # =========================================================================
    # Polling loop
    # =========================================================================

    def run(self, token: Optional[CancellationToken] = None) -> None:
        """
        Fire repeatedly until the token is cancelled.

        Collaborator failures are logged, counted by the circuit breaker and
        followed by an exponential backoff; the loop then resumes. Any other
        exception is counted as a breaker failure and ends the loop.
        """
        token = token or self.token
        consecutive_failures = 0
        logger.info(f"{self.name} started | poll={self.config.poll_min_ms}-{self.config.poll_max_ms}ms")

        while not token.cancelled:
            if not self.breaker.can_execute():
                token.wait(max(self.breaker.remaining_open_seconds(), 0.1))
                continue

            try:
                self.fire(token)
            except CollaboratorError as e:
                consecutive_failures += 1
                self.breaker.record_failure()
                delay = calculate_backoff_seconds(consecutive_failures, self.config.max_backoff_seconds)
                logger.exception(
                    f"{self.name} poll failed | failures={consecutive_failures} | "
                    f"retry_in={delay}s | error={e}"
                )
                token.wait(delay)
            except Exception:
                # Frees a half-open trial for dispatchers sharing this breaker
                self.breaker.record_failure()
                raise
            else:
                consecutive_failures = 0
                self.breaker.record_success()

        logger.info(f"{self.name} stopped")

    def stop(self) -> None:
        """Request shutdown; an in-flight fire() completes first"""
        self.token.cancel("stop requested")

    def fire(self, token: Optional[CancellationToken] = None) -> FireOutcome:
        """
        Run one poll-claim-execute-persist cycle.

        Call in a loop, or at least once per second, to keep dispatch timely.

        Raises:
            CollaboratorError: If the store or the queue is unavailable
        """
        token = token or self.token
        task_ids = self.queue.next_due(self.clock(), 0, 1)
        if not task_ids:
            random_sleep(self.config.poll_min_ms, self.config.poll_max_ms, self.rng, token)
            return FireOutcome.IDLE

        task_id = task_ids[0]
        if self.queue.claim(task_id) < 1:
            # Taken by another dispatcher
            return FireOutcome.LOST_RACE

        return self.fire_task(task_id)

    def fire_task(self, task_id: str) -> FireOutcome:
        """Run a task by id, bypassing the queue; the store start guard still applies"""
        task = self.store.find(task_id)
        if task is None:
            logger.warning(f"Task {task_id} not found in store")
            return FireOutcome.NOT_FOUND

        return self.run_task(task)

    def run_task(self, task: DelayTask) -> FireOutcome:
        """Start, execute and finish a loaded task record"""
        task.start_time = utcnow()
        if self.store.start(task) == 0:
            logger.debug(f"Task {task.task_id} {task.task_name} is not ready")
            return FireOutcome.NOT_READY

        with task_context(task.task_id):
            try:
                taskable = self.resolver.get_taskable(task.task_service)
                value, timed_out = timeout_run(
                    lambda work_token: taskable.run(task, work_token),
                    task.timeout,
                    grace_seconds=self.config.timeout_grace_seconds,
                    name=f"task {task.task_id}",
                )
            except Exception as ex:
                logger.warning(f"Task failed {task!r}", exc_info=True)
                self._end_task(task, TaskState.FAILED, f"{type(ex).__name__}: {ex}")
                return FireOutcome.FAILED

            if timed_out:
                logger.warning(f"Task timed out {task!r}")
                self._end_task(task, TaskState.TIMEDOUT, TIMEOUT_RESULT.format(timeout=task.timeout))
                return FireOutcome.TIMEDOUT

            logger.info(f"Task completed {task!r}")
            self._end_task(task, TaskState.COMPLETED, None if value is None else str(value))
            return FireOutcome.COMPLETED

    def _end_task(self, task: DelayTask, final_state: TaskState, result: Optional[str]) -> None:
        transition_task(task, final_state)
        task.result = result
        self.store.end(task)

    def get_status(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "running": not self.token.cancelled,
            "circuit_breaker": self.breaker.get_status(),
        }
