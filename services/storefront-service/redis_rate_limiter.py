"""Redis-backed rate limiting middleware."""
import logging
import time
from typing import Optional, Tuple

import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from config import RATE_LIMIT_PER_MINUTE_IP, RATE_LIMIT_PER_MINUTE_USER
from errors import error_body
from monitoring import rate_limit_exceeded_counter, suspicious_activity_counter

logger = logging.getLogger(__name__)

# (status predicate, pattern name, threshold) over a 5 minute window
SUSPICIOUS_PATTERNS = [
    (lambda status: status == 401, "credential_stuffing", 5),
    (lambda status: status == 404, "endpoint_scanning", 10),
    (lambda status: 400 <= status < 500, "abuse", 20),
]
SUSPICIOUS_WINDOW_SECONDS = 300


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Sliding window rate limiter shared across service instances through Redis.

    Two tiers: a per-IP limit, and a lower per-user limit for requests that
    carry a bearer token. When Redis is unreachable requests are allowed.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        requests_per_minute_ip: int = RATE_LIMIT_PER_MINUTE_IP,
        requests_per_minute_user: int = RATE_LIMIT_PER_MINUTE_USER,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Redis connection
            requests_per_minute_ip: Max requests per IP per window
            requests_per_minute_user: Max requests per bearer token per window
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.redis = redis_client
        self.requests_per_minute_ip = requests_per_minute_ip
        self.requests_per_minute_user = requests_per_minute_user
        self.window_seconds = window_seconds

    def _check_rate_limit(self, key: str, limit: int, window: int) -> Tuple[bool, int]:
        """
        Record a request in a sorted-set sliding window and test it against the limit.

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, current_time - window)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, window + 1)
            results = pipe.execute()

            count = results[1]
            return count < limit, count + 1
        except redis.RedisError as e:
            logger.error("Redis rate limit error", extra={"error": str(e)})
            return True, 0

    def _reject(self, limit_type: str, limit: int) -> JSONResponse:
        rate_limit_exceeded_counter.add(1, {"limit_type": limit_type})
        return JSONResponse(
            status_code=429,
            content=error_body(f"Rate limit exceeded. Maximum {limit} requests per minute."),
            headers={"Retry-After": str(self.window_seconds)}
        )

    async def dispatch(self, request: Request, call_next):
        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        user_key = None
        auth_header = request.headers.get("authorization")
        if auth_header and auth_header.lower().startswith("bearer "):
            user_key = auth_header.split()[-1][:16]

        ip_allowed, ip_count = self._check_rate_limit(
            f"rate:ip:{client_ip}", self.requests_per_minute_ip, self.window_seconds
        )
        if not ip_allowed:
            logger.warning("Rate limit exceeded for IP", extra={"client_ip": client_ip, "count": ip_count})
            return self._reject("ip", self.requests_per_minute_ip)

        if user_key:
            user_allowed, user_count = self._check_rate_limit(
                f"rate:user:{user_key}", self.requests_per_minute_user, self.window_seconds
            )
            if not user_allowed:
                logger.warning("Rate limit exceeded for user", extra={"client_ip": client_ip, "count": user_count})
                return self._reject("user", self.requests_per_minute_user)

        response = await call_next(request)
        self._detect_suspicious_activity(response.status_code, client_ip)
        return response

    def _detect_suspicious_activity(self, status_code: int, client_ip: str) -> Optional[str]:
        """
        Count client errors per IP and flag repeated ones.

        Returns:
            The first pattern whose threshold was reached, if any
        """
        flagged = None
        try:
            now = time.time()
            for matches, pattern, threshold in SUSPICIOUS_PATTERNS:
                if not matches(status_code):
                    continue
                key = f"suspicious:{pattern}:{client_ip}"
                self.redis.zadd(key, {str(now): now})
                self.redis.expire(key, SUSPICIOUS_WINDOW_SECONDS + 1)
                count = self.redis.zcount(key, now - SUSPICIOUS_WINDOW_SECONDS, now)
                if count >= threshold:
                    suspicious_activity_counter.add(1, {"type": pattern})
                    logger.warning("Suspicious activity detected", extra={
                        "type": pattern,
                        "client_ip": client_ip,
                        "count": count
                    })
                    flagged = flagged or pattern
        except redis.RedisError as e:
            logger.error("Error detecting suspicious activity", extra={"error": str(e)})
        return flagged
