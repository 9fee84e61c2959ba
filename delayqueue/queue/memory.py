# delayqueue/queue/memory.py
"""
In-process claim queue for single-process embedding and tests.
Atomic within one interpreter only.
"""

import threading
from typing import Dict, Iterable, List, Optional

from .base import ClaimQueue


class InMemoryClaimQueue(ClaimQueue):

    def __init__(self):
        self._scores: Dict[str, float] = {}
        self._lock = threading.Lock()

    def enqueue_batch(self, scores: Dict[str, float]) -> None:
        with self._lock:
            for task_id, score in scores.items():
                self._scores[task_id] = float(score)

    def remove(self, task_ids: Iterable[str]) -> int:
        removed = 0
        with self._lock:
            for task_id in task_ids:
                if self._scores.pop(task_id, None) is not None:
                    removed += 1
        return removed

    def next_due(self, max_score: float, offset: int = 0, limit: int = 1) -> List[str]:
        with self._lock:
            # Ties break on id, matching the lexicographic order of a sorted set
            due = sorted(
                (score, task_id) for task_id, score in self._scores.items()
                if 0 <= score <= max_score
            )
        return [task_id for _, task_id in due[offset:offset + limit]]

    def size(self) -> int:
        with self._lock:
            return len(self._scores)

    def score(self, task_id: str) -> Optional[float]:
        with self._lock:
            return self._scores.get(task_id)

    def clear(self) -> None:
        with self._lock:
            self._scores.clear()
