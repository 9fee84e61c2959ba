# delayqueue/queue/redis_queue.py
"""
Redis sorted-set claim queue.

ZADD upserts, ZREM is the claim (Redis executes it atomically, so among racing
dispatchers exactly one sees a removal count of 1) and ZRANGEBYSCORE pages the
due ids in score order.
"""

import logging
from typing import Dict, Iterable, List, Optional

import redis

from ..config import Settings, settings as default_settings
from ..errors import QueueUnavailableError
from .base import ClaimQueue

logger = logging.getLogger("delayqueue.queue.redis")


class RedisClaimQueue(ClaimQueue):
    """Claim queue stored under a single sorted-set key"""

    def __init__(self, client: redis.Redis, key: str = "delayqueue:tasks"):
        self.client = client
        self.key = key

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "RedisClaimQueue":
        config = config or default_settings
        client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        logger.info(f"Redis claim queue configured | host={config.REDIS_HOST}:{config.REDIS_PORT} | key={config.QUEUE_KEY}")
        return cls(client, key=config.QUEUE_KEY)

    def ping(self) -> bool:
        """Verify Redis is available before queue operations"""
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            raise QueueUnavailableError("ping", e) from e

    def enqueue_batch(self, scores: Dict[str, float]) -> None:
        if not scores:
            return
        try:
            self.client.zadd(self.key, {task_id: float(score) for task_id, score in scores.items()})
        except redis.RedisError as e:
            raise QueueUnavailableError("enqueue", e) from e

    def remove(self, task_ids: Iterable[str]) -> int:
        ids = list(task_ids)
        if not ids:
            return 0
        try:
            return int(self.client.zrem(self.key, *ids))
        except redis.RedisError as e:
            raise QueueUnavailableError("remove", e) from e

    def next_due(self, max_score: float, offset: int = 0, limit: int = 1) -> List[str]:
        try:
            return list(self.client.zrangebyscore(self.key, 0, max_score, start=offset, num=limit))
        except redis.RedisError as e:
            raise QueueUnavailableError("next_due", e) from e

    def size(self) -> int:
        try:
            return int(self.client.zcard(self.key))
        except redis.RedisError as e:
            raise QueueUnavailableError("size", e) from e

    def score(self, task_id: str) -> Optional[float]:
        try:
            return self.client.zscore(self.key, task_id)
        except redis.RedisError as e:
            raise QueueUnavailableError("score", e) from e

    def clear(self) -> None:
        try:
            self.client.delete(self.key)
        except redis.RedisError as e:
            raise QueueUnavailableError("clear", e) from e
