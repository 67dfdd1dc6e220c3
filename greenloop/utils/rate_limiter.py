"""
Per-user request rate limiting backed by Redis

Counters live in Redis with a fixed window. When Redis is unreachable the
request is let through.
"""
import logging

from fastapi import Depends, HTTPException, Request, status
from redis.exceptions import RedisError

from greenloop.models.user import User
from greenloop.utils import redis_client as redis_module
from greenloop.utils.security import get_current_user

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, times: int = 5, seconds: int = 60):
        """
        Args:
            times: requests allowed per window
            seconds: window length
        """
        self.times = times
        self.seconds = seconds

    async def __call__(
        self,
        request: Request,
        current_user: User = Depends(get_current_user),
    ) -> None:
        client = redis_module.redis_client
        if not client:
            return

        key = f"rate_limit:user:{current_user.id}:{request.url.path}"
        try:
            current = await client.incr(key)
            if current == 1:
                await client.expire(key, self.seconds)
        except RedisError as exc:
            logger.warning("Rate limiter unavailable, allowing request: %s", exc)
            return

        if current > self.times:
            logger.warning("Rate limit exceeded for user %s on %s", current_user.id, request.url.path)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many requests, please try again later",
            )
