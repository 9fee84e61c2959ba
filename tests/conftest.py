"""
pytest configuration for the delayqueue test suite
"""

import random
import sys
import os
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from delayqueue.dispatcher import Dispatcher, DispatcherConfig, TaskableRegistry
from delayqueue.models import TaskSubmission, create_db_engine, init_db, make_session_factory, utcnow
from delayqueue.queue import InMemoryClaimQueue
from delayqueue.store import TaskStore


def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "slow: test waits on real timeouts")


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite database per test (separate connections per thread)"""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'delayqueue.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return TaskStore(make_session_factory(engine))


@pytest.fixture
def queue():
    return InMemoryClaimQueue()


class CallRecorder:
    """Thread-safe record of the task ids a taskable ran"""

    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, task, token):
        with self._lock:
            self.calls.append(task.task_id)
        return "ok"


@pytest.fixture
def recorder():
    return CallRecorder()


@pytest.fixture
def registry(recorder):
    registry = TaskableRegistry()
    registry.register("echo", recorder)

    @registry.taskable("params")
    def params(task, token):
        return task.params["value"]

    @registry.taskable("boom")
    def boom(task, token):
        raise ValueError("boom")

    @registry.taskable("cooperative")
    def cooperative(task, token):
        # Returns as soon as the timeout cancels the token
        cancelled = token.wait(5)
        return f"cancelled={cancelled}"

    return registry


@pytest.fixture
def dispatcher_config():
    return DispatcherConfig(poll_min_ms=0, poll_max_ms=5, timeout_grace_seconds=1.0, max_backoff_seconds=0)


@pytest.fixture
def dispatcher(store, queue, registry, dispatcher_config):
    return Dispatcher(store, queue, registry, config=dispatcher_config, rng=random.Random(42))


# =============================================================================
# Submissions
# =============================================================================

def due_submission(service="echo", seconds_ago=1, **kwargs) -> TaskSubmission:
    return TaskSubmission(task_service=service, run_at=utcnow() - timedelta(seconds=seconds_ago), **kwargs)


def future_submission(service="echo", seconds_ahead=3600, **kwargs) -> TaskSubmission:
    return TaskSubmission(task_service=service, run_at=utcnow() + timedelta(seconds=seconds_ahead), **kwargs)


class DeadlineAfterFinishFuture(Future):
    """Future whose bounded wait reports the deadline only once the work has finished"""

    def result(self, timeout=None):
        if timeout is not None:
            self.exception()
            raise FutureTimeoutError()
        return super().result()
