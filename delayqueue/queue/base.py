# delayqueue/queue/base.py
"""
Ordered claim queue contract.

Maps task ids to a numeric ready-time score (epoch milliseconds). claim() is the
only operation that must be atomic across every process sharing the queue.
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional


class ClaimQueue(ABC):
    """Shared ordered structure the dispatchers race on"""

    def ping(self) -> bool:
        """Reachability check; remote queues override it"""
        return True

    @abstractmethod
    def enqueue_batch(self, scores: Dict[str, float]) -> None:
        """Upsert ids with their scores; re-adding an id updates its score"""

    def enqueue(self, task_id: str, score: float) -> None:
        self.enqueue_batch({task_id: score})

    @abstractmethod
    def remove(self, task_ids: Iterable[str]) -> int:
        """Atomically remove ids, returning how many were present"""

    def claim(self, task_id: str) -> int:
        """
        Remove a single id. A return of 1 grants exclusive rights to run the task,
        0 means another dispatcher already took it.
        """
        return self.remove([task_id])

    @abstractmethod
    def next_due(self, max_score: float, offset: int = 0, limit: int = 1) -> List[str]:
        """Ids with score <= max_score, ascending by score, paged"""

    @abstractmethod
    def size(self) -> int:
        """Number of queued ids"""

    @abstractmethod
    def score(self, task_id: str) -> Optional[float]:
        """Score of a queued id, None when absent"""

    @abstractmethod
    def clear(self) -> None:
        """Drop every queued id"""
