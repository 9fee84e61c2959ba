# delayqueue/__init__.py
"""
delayqueue - delayed task scheduling over a Redis sorted set and a SQL task table

Tasks are persisted in the task store and their ids queued with their run time as
score; competing dispatchers claim due ids and execute each task exactly once.
"""

from .dispatcher import (
    CancellationToken,
    Dispatcher,
    DispatcherConfig,
    FireOutcome,
    TaskableRegistry,
    taskable,
)
from .lifecycle import TaskState
from .models import DelayTask, TaskSubmission
from .queue import ClaimQueue, InMemoryClaimQueue, RedisClaimQueue
from .store import TaskStore

__version__ = "1.0.0"

__all__ = [
    "CancellationToken",
    "ClaimQueue",
    "DelayTask",
    "Dispatcher",
    "DispatcherConfig",
    "FireOutcome",
    "InMemoryClaimQueue",
    "RedisClaimQueue",
    "TaskState",
    "TaskStore",
    "TaskSubmission",
    "TaskableRegistry",
    "taskable",
]
