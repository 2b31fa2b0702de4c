import json
from time import time
from typing import Dict, Optional, Sequence, Tuple
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
import logging

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)

# (path prefix, bucket name, requests per minute); first match wins
DEFAULT_RULES: Tuple[Tuple[str, str, int], ...] = (
    ("/api/webhooks", "webhook", 1000),
    ("/api", "api", 100),
)


def _make_redis_client():
    redis_url = settings.redis_url
    if not redis_url:
        logger.info("REDIS_URL not set. Using in-memory rate limiting.")
        return None
    try:
        # Parse Redis URL (supports redis:// and redis://:password@host:port)
        return redis.from_url(redis_url, decode_responses=True)
    except ValueError as e:
        logger.warning(f"Invalid REDIS_URL: {e}. Falling back to in-memory rate limiting.")
        return None


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Distributed rate limiter using Redis (with fallback to in-memory).
    Uses Token Bucket Algorithm, one bucket per (rule, client IP).
    Paths matching no rule are not limited.
    """

    def __init__(self, app, rules: Sequence[Tuple[str, str, int]] = DEFAULT_RULES, redis_client=None):
        super().__init__(app)
        self.rules = tuple(rules)
        self.refill_time_window = 60.0
        # Fallback: in-memory storage (bucket key -> (tokens, last_refill_ts))
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._redis = redis_client if redis_client is not None else _make_redis_client()

    def _match_rule(self, path: str) -> Optional[Tuple[str, int]]:
        for prefix, name, capacity in self.rules:
            if path.startswith(prefix):
                return name, capacity
        return None

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            # Take first IP in the list
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _refill(self, tokens: float, last_refill: float, now: float, capacity: int) -> float:
        elapsed = max(0.0, now - last_refill)
        refill = (elapsed / self.refill_time_window) * capacity
        return min(capacity, tokens + refill)

    async def _check_rate_limit_redis(self, key: str, capacity: int) -> Optional[bool]:
        """
        Check rate limit using Redis.
        Returns True if allowed, False if limited, None if Redis failed.
        """
        try:
            now = time()
            bucket_data = await self._redis.get(key)

            if bucket_data:
                # Parse stored data: {"tokens": float, "last_refill": float}
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                # New bucket, start with full capacity
                tokens = float(capacity)
                last_refill = now

            tokens = self._refill(tokens, last_refill, now, capacity)
            if tokens < 1.0:
                return False

            tokens -= 1.0
            bucket_data = json.dumps({"tokens": tokens, "last_refill": now})
            await self._redis.setex(key, int(self.refill_time_window) + 10, bucket_data)
            return True

        except (redis.RedisError, OSError, ValueError) as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    def _check_rate_limit_memory(self, key: str, capacity: int) -> bool:
        now = time()
        tokens, last_refill = self._buckets.get(key, (float(capacity), now))
        tokens = self._refill(tokens, last_refill, now, capacity)

        if tokens < 1.0:
            return False

        # Consume a token and store
        self._buckets[key] = (tokens - 1.0, now)
        return True

    async def dispatch(self, request: Request, call_next) -> Response:
        rule = self._match_rule(request.url.path)
        if rule is None:
            return await call_next(request)

        name, capacity = rule
        key = f"rate_limit:{name}:{self._get_client_ip(request)}"

        allowed = None
        if self._redis is not None:
            allowed = await self._check_rate_limit_redis(key, capacity)
        if allowed is None:
            allowed = self._check_rate_limit_memory(key, capacity)

        if not allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "ok": False,
                    "data": {},
                    "error": "RATE_LIMIT_EXCEEDED",
                    "message": "Rate limit exceeded. Try again shortly."
                },
                headers={"Retry-After": str(int(self.refill_time_window))},
            )

        return await call_next(request)
