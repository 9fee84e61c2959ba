# delayqueue/dispatcher/backoff.py
import random
from typing import Optional

from .timeout import CancellationToken


def random_sleep(
    min_ms: int,
    max_ms: int,
    rng: random.Random,
    token: Optional[CancellationToken] = None,
) -> bool:
    """
    Sleep for a uniformly random time between min_ms and max_ms.

    Jitter keeps competing dispatchers from polling in lockstep. Returns True if
    the sleep was cut short by cancellation.
    """
    seconds = rng.uniform(min_ms, max_ms) / 1000.0
    if token is None:
        token = CancellationToken()
    return token.wait(seconds)


def calculate_backoff_seconds(consecutive_failures: int, cap: int = 60) -> int:
    """
    Calculate exponential backoff delay after infrastructure failures.
    backoff_seconds = min(cap, 2 ** consecutive_failures)
    """
    return min(cap, 2 ** consecutive_failures)
