from __future__ import annotations
import logging

import redis

from ..errors import StorageError
from ..events import OptOutRecord

logger = logging.getLogger(__name__)

DEFAULT_KEY = "optout:users"


class OptOutRegistry:
    """
    Server-side record of hashed user ids that opted out.
    Backed by a Redis set so it survives process restarts.
    Absence of a record means "not opted out" (default-in).
    """

    def __init__(self, client: redis.Redis, key: str = DEFAULT_KEY):
        self.r = client
        self.key = key

    def opt_out(self, hashed_user_id: str) -> OptOutRecord:
        try:
            self.r.sadd(self.key, hashed_user_id)
        except redis.RedisError as e:
            raise StorageError(f"opt-out write failed: {e}") from e
        logger.info("user opted out of tracking")
        return OptOutRecord(hashed_user_id=hashed_user_id, opted_out=True)

    def opt_in(self, hashed_user_id: str) -> OptOutRecord:
        try:
            self.r.srem(self.key, hashed_user_id)
        except redis.RedisError as e:
            raise StorageError(f"opt-in write failed: {e}") from e
        return OptOutRecord(hashed_user_id=hashed_user_id, opted_out=False)

    def has_opted_out(self, hashed_user_id: str) -> bool:
        if not hashed_user_id:
            return False
        try:
            return bool(self.r.sismember(self.key, hashed_user_id))
        except redis.RedisError as e:
            raise StorageError(f"opt-out lookup failed: {e}") from e
