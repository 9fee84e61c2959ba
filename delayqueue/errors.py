# delayqueue/errors.py
"""
Exception taxonomy for the delay queue.

Lost races and missing records are not exceptions: the dispatcher reports them
as FireOutcome values. Everything here is raised to the caller.
"""

from typing import Optional


class DelayQueueError(Exception):
    """Base class for all delayqueue errors"""


class ConfigurationError(DelayQueueError):
    """Raised when dispatcher or worker settings are inconsistent"""


class CollaboratorError(DelayQueueError):
    """
    Raised when the task store or the claim queue cannot be reached.

    Signals infrastructure unavailability. The dispatch loop backs off and
    retries on this class; it is never recorded as a task outcome.
    """

    collaborator = "collaborator"

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{self.collaborator} {operation} failed{detail}")


class StoreUnavailableError(CollaboratorError):
    """Task store call failed"""

    collaborator = "task store"


class QueueUnavailableError(CollaboratorError):
    """Claim queue call failed"""

    collaborator = "claim queue"


class TaskableNotFoundError(DelayQueueError):
    """Raised when no capability is registered for a task's service name"""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"No taskable registered for service '{service}'")


class TaskCancelledError(DelayQueueError):
    """Raised by a cancellation token when the work is asked to stop"""
