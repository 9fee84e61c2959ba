# delayqueue/dispatcher/taskable.py
"""
Taskables - the business logic a task runs, resolved by its service name.

A taskable receives the task record and the cancellation token of its execution.
Long-running taskables must check the token and return once it is cancelled.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Union

from ..errors import TaskableNotFoundError
from .timeout import CancellationToken

logger = logging.getLogger("delayqueue.dispatcher.taskable")


class Taskable(ABC):
    """Capability executed for every task of one service"""

    @abstractmethod
    def run(self, task, token: CancellationToken) -> Any:
        """Execute the task; the return value becomes the task result"""


class FunctionTaskable(Taskable):
    """Adapts a plain function taking (task, token)"""

    def __init__(self, func: Callable[[Any, CancellationToken], Any]):
        self.func = func

    def run(self, task, token: CancellationToken) -> Any:
        return self.func(task, token)

    def __repr__(self) -> str:
        return f"FunctionTaskable({getattr(self.func, '__qualname__', self.func)!r})"


class TaskableRegistry:
    """Maps service names to taskables"""

    def __init__(self):
        self._taskables: Dict[str, Taskable] = {}
        self._lock = threading.Lock()

    def register(self, service: str, taskable: Union[Taskable, Callable]) -> Taskable:
        if not isinstance(taskable, Taskable):
            if not callable(taskable):
                raise TypeError(f"Taskable for '{service}' must be a Taskable or callable")
            taskable = FunctionTaskable(taskable)

        with self._lock:
            if service in self._taskables:
                logger.warning(f"Taskable for service '{service}' replaced")
            self._taskables[service] = taskable
        logger.info(f"Registered taskable {taskable!r} for service '{service}'")
        return taskable

    def taskable(self, service: str):
        """Decorator registering a function under a service name"""
        def decorator(func):
            self.register(service, func)
            return func
        return decorator

    def unregister(self, service: str) -> bool:
        with self._lock:
            return self._taskables.pop(service, None) is not None

    def get_taskable(self, service: str) -> Taskable:
        """
        Raises:
            TaskableNotFoundError: If nothing is registered for the service
        """
        with self._lock:
            taskable = self._taskables.get(service)
        if taskable is None:
            raise TaskableNotFoundError(service)
        return taskable

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._taskables)


# Registry used by the worker bootstrap and the module-level decorator
default_registry = TaskableRegistry()


def taskable(service: str):
    """Register a function on the default registry"""
    return default_registry.taskable(service)
