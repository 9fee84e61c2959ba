# delayqueue/dispatcher/timeout.py
"""
Timeout-bounded execution with cooperative cancellation.

A unit of work is called as ``work(token)``. When its deadline passes the caller
stops waiting and the token is cancelled; the work is expected to poll
``token.cancelled`` (or call ``token.raise_if_cancelled()``) at its own safe
points and return. Python threads cannot be killed, so work that ignores its token
keeps running until it finishes and its result is discarded. That is a contract
violation by the taskable, reported in the log.
"""

import contextvars
import logging
import threading
from concurrent.futures import Future, TimeoutError as FutureTimeoutError, wait
from typing import Any, Callable, List, Optional, Tuple

from ..errors import TaskCancelledError

logger = logging.getLogger("delayqueue.dispatcher.timeout")


class CancellationToken:
    """
    Thread-safe cancellation signal.

    Cancelling a token cancels every token created from it with child(), so one
    shutdown token can stop several dispatchers while each can still be stopped
    on its own.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._children: List["CancellationToken"] = []
        self.reason: Optional[str] = None
        if parent is not None:
            parent._adopt(self)

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            children, self._children = self._children, []
        for child in children:
            child.cancel(reason)

    def child(self) -> "CancellationToken":
        return CancellationToken(parent=self)

    def _adopt(self, child: "CancellationToken") -> None:
        with self._lock:
            if not self._event.is_set():
                self._children.append(child)
                return
        child.cancel(self.reason)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block up to timeout seconds; True if the token was cancelled"""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise TaskCancelledError(self.reason or "cancelled")

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled}, reason={self.reason!r})"


def timeout_run(
    work: Callable[[CancellationToken], Any],
    timeout_seconds: float,
    token: Optional[CancellationToken] = None,
    grace_seconds: float = 0.0,
    name: str = "work",
) -> Tuple[Any, bool]:
    """
    Run work with a wall-clock bound.

    Returns (value, timed_out). With timeout_seconds <= 0 the work runs on the
    calling thread without a bound. Otherwise it runs on a dedicated daemon thread
    carrying a copy of the caller's context variables; on timeout the token is
    cancelled, the runner waits up to grace_seconds for the work to wind down and
    returns (None, True). Never retries.

    Raises:
        Whatever the work raised, unchanged.
    """
    token = token or CancellationToken()

    if timeout_seconds <= 0:
        return work(token), False

    future: Future = Future()
    context = contextvars.copy_context()

    def runner():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(context.run(work, token))
        except BaseException as e:
            # Includes SystemExit and KeyboardInterrupt
            future.set_exception(e)

    threading.Thread(target=runner, name=f"delayqueue-{name}", daemon=True).start()

    try:
        return future.result(timeout=timeout_seconds), False
    except FutureTimeoutError:
        if future.done():
            # Finished right at the deadline, or the work raised TimeoutError itself
            error = future.exception()
            if error is not None:
                raise error
            return future.result(), False

    token.cancel(f"timed out after {timeout_seconds}s")
    logger.warning(f"{name} exceeded {timeout_seconds}s, cancellation requested")

    if grace_seconds > 0:
        done, _ = wait([future], timeout=grace_seconds)
        if not done:
            logger.warning(
                f"{name} ignored cancellation for {grace_seconds}s and is still running; "
                f"its result will be discarded"
            )

    return None, True
