# delayqueue/worker.py
"""
Worker process bootstrap.

Builds the task store, the Redis claim queue and the taskable registry from
settings, reconciles the queue with the store, then runs N dispatcher threads
until SIGINT/SIGTERM. Start as many worker processes as needed; they coordinate
only through Redis and the database.

    python -m delayqueue.worker --workers 4 --taskables myapp.tasks
    python -m delayqueue.worker --serve     # also expose the admin API
"""

import argparse
import importlib
import logging
import signal
import threading
from typing import Callable, List, Optional, Sequence

import uvicorn

from .api import create_app
from .config import Settings, configure_logging, get_settings
from .dispatcher import CancellationToken, Dispatcher, DispatcherConfig, TaskableRegistry, default_registry
from .lifecycle import CircuitBreaker, CircuitBreakerConfig
from .models import create_db_engine, make_session_factory
from .queue import ClaimQueue, RedisClaimQueue
from .store import TaskStore

logger = logging.getLogger("delayqueue.worker")


def load_taskables(modules: Sequence[str]) -> None:
    """Import modules whose @taskable decorators populate the default registry"""
    for module in modules:
        importlib.import_module(module)
        logger.info(f"Loaded taskables from {module}")


def build_dispatchers(
    count: int,
    store: TaskStore,
    queue: ClaimQueue,
    registry: TaskableRegistry,
    config: DispatcherConfig,
    shutdown: CancellationToken,
    breaker: CircuitBreaker,
) -> List[Dispatcher]:
    """One dispatcher per thread, each with its own random source and stop token"""
    return [
        Dispatcher(
            store,
            queue,
            registry,
            config=config,
            token=shutdown.child(),
            breaker=breaker,
            name=f"dispatcher-{index}",
        )
        for index in range(count)
    ]


def start_dispatchers(dispatchers: Sequence[Dispatcher]) -> List[threading.Thread]:
    threads = []
    for dispatcher in dispatchers:
        thread = threading.Thread(target=dispatcher.run, name=dispatcher.name, daemon=True)
        thread.start()
        threads.append(thread)
    return threads


def install_signal_handlers(shutdown: CancellationToken) -> None:
    def handle(signum, frame):
        name = signal.Signals(signum).name
        logger.info(f"Received {name}, stopping dispatchers")
        shutdown.cancel(name)

    signal.signal(signal.SIGINT, handle)
    signal.signal(signal.SIGTERM, handle)


def run_worker(
    config: Settings,
    workers: int,
    initialize: bool = True,
    serve: bool = False,
    registry: TaskableRegistry = default_registry,
    shutdown: Optional[CancellationToken] = None,
    queue_factory: Callable[[Settings], ClaimQueue] = RedisClaimQueue.from_settings,
) -> List[Dispatcher]:
    """Run dispatchers until shutdown is cancelled; returns them once all threads exited"""
    if workers < 1:
        raise ValueError(f"workers must be at least 1, got {workers}")

    shutdown = shutdown or CancellationToken()
    store = TaskStore(make_session_factory(create_db_engine(config.DATABASE_URL)))
    queue = queue_factory(config)
    queue.ping()

    if initialize:
        Dispatcher(store, queue, registry).initialize()

    breaker = CircuitBreaker(
        "worker",
        CircuitBreakerConfig(
            failure_threshold=config.BREAKER_FAILURE_THRESHOLD,
            recovery_timeout=config.BREAKER_RECOVERY_TIMEOUT,
        ),
    )
    dispatchers = build_dispatchers(
        workers, store, queue, registry, DispatcherConfig.from_settings(config), shutdown, breaker
    )
    threads = start_dispatchers(dispatchers)
    logger.info(f"Worker started | dispatchers={len(threads)} | services={registry.names()}")

    if serve:
        # uvicorn owns the main thread and its signals; dispatchers stop when it exits
        uvicorn.run(create_app(dispatchers[0]), host=config.API_HOST, port=config.API_PORT)
        shutdown.cancel("api server exited")
    else:
        # Wake up periodically so signal handlers run on the main thread
        while not shutdown.wait(1.0):
            pass

    for thread in threads:
        thread.join()
    logger.info("Worker stopped")
    return dispatchers


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run delayqueue dispatchers")
    parser.add_argument("--workers", type=int, default=None,
                        help="dispatcher threads (default: WORKER_COUNT)")
    parser.add_argument("--taskables", nargs="*", default=[],
                        help="modules registering taskables with @taskable")
    parser.add_argument("--no-initialize", action="store_true",
                        help="skip rebuilding the claim queue from the store on startup")
    parser.add_argument("--serve", action="store_true",
                        help="serve the admin API on API_HOST:API_PORT")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = parse_args(argv)
    config = get_settings()
    configure_logging(config)
    load_taskables(args.taskables)

    shutdown = CancellationToken()
    if not args.serve:
        install_signal_handlers(shutdown)
    run_worker(
        config,
        workers=args.workers or config.WORKER_COUNT,
        initialize=not args.no_initialize,
        serve=args.serve,
        shutdown=shutdown,
    )


if __name__ == "__main__":
    main()
