# delayqueue/dispatcher/__init__.py
"""
Dispatch engine - polling loop, claim protocol and timeout-bounded execution
"""

from .backoff import random_sleep, calculate_backoff_seconds
from .core import Dispatcher, DispatcherConfig, FireOutcome, TIMEOUT_RESULT, current_millis
from .taskable import Taskable, FunctionTaskable, TaskableRegistry, default_registry, taskable
from .timeout import CancellationToken, timeout_run

__all__ = [
    "Dispatcher",
    "DispatcherConfig",
    "FireOutcome",
    "TIMEOUT_RESULT",
    "current_millis",
    "Taskable",
    "FunctionTaskable",
    "TaskableRegistry",
    "default_registry",
    "taskable",
    "CancellationToken",
    "timeout_run",
    "random_sleep",
    "calculate_backoff_seconds",
]
