# delayqueue Claim Queue Package
from .base import ClaimQueue
from .memory import InMemoryClaimQueue
from .redis_queue import RedisClaimQueue

__all__ = ["ClaimQueue", "InMemoryClaimQueue", "RedisClaimQueue"]
