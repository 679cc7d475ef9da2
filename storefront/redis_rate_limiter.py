"""Redis-backed rate limiter."""
import logging
import time
from typing import Optional, Tuple

import redis
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.auth import peek_subject
from storefront.config import Settings
from storefront.monitoring import rate_limit_exceeded_counter, suspicious_activity_counter

logger = logging.getLogger(__name__)

SUSPICIOUS_WINDOW_SECONDS = 300

# status code -> (pattern name, hits within the window that trigger it)
SUSPICIOUS_PATTERNS = (
    (401, "credential_stuffing", 5),
    (404, "endpoint_scanning", 10),
)
CLIENT_ERROR_THRESHOLD = 20


class RedisRateLimiter(BaseHTTPMiddleware):
    """
    Sliding-window rate limiter shared by every service instance.

    Requests are limited per client IP and, when the request carries a
    valid bearer token, per user. If Redis is unavailable requests are
    let through.
    """

    def __init__(
        self,
        app,
        redis_client: redis.Redis,
        settings: Settings,
        window_seconds: int = 60
    ):
        """
        Initialize Redis-backed rate limiter.

        Args:
            app: FastAPI application
            redis_client: Redis connection
            settings: Service settings (limits and token secret)
            window_seconds: Sliding window size in seconds
        """
        super().__init__(app)
        self.redis = redis_client
        self.settings = settings
        self.requests_per_minute_ip = settings.rate_limit_per_minute_ip
        self.requests_per_minute_user = settings.rate_limit_per_minute_user
        self.window_seconds = window_seconds

    def _check_rate_limit(
        self,
        key: str,
        limit: int,
        window: int
    ) -> Tuple[bool, int]:
        """
        Check rate limit using Redis sorted set (sliding window).

        Args:
            key: Redis key for this limit (e.g., "rate:ip:192.168.1.1")
            limit: Maximum requests allowed
            window: Time window in seconds

        Returns:
            Tuple of (is_allowed, current_count)
        """
        try:
            current_time = time.time()
            window_start = current_time - window

            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, window_start)
            pipe.zcard(key)
            pipe.zadd(key, {str(current_time): current_time})
            pipe.expire(key, window + 1)
            results = pipe.execute()

            # Count before the current request was added
            count = results[1]
            return count < limit, count + 1

        except redis.RedisError as e:
            logger.error("Redis rate limit error", extra={"error": str(e)})
            return True, 0

    def _too_many_requests(self, limit_type: str, limit: int) -> JSONResponse:
        return JSONResponse(
            status_code=429,
            content={
                "error": f"Rate limit exceeded for {limit_type}. Maximum {limit} requests per minute.",
                "error_type": "RateLimitError",
            },
            headers={"Retry-After": str(self.window_seconds)},
        )

    async def dispatch(self, request: Request, call_next):
        """
        Process request with per-IP and per-user rate limiting.

        Returns:
            Response, or 429 if rate limited
        """
        client_ip = request.client.host if request.client else "unknown"
        if "x-forwarded-for" in request.headers:
            client_ip = request.headers["x-forwarded-for"].split(",")[0].strip()

        user_id = peek_subject(request.headers.get("authorization"), self.settings)

        ip_allowed, ip_count = self._check_rate_limit(
            f"rate:ip:{client_ip}",
            self.requests_per_minute_ip,
            self.window_seconds
        )
        if not ip_allowed:
            rate_limit_exceeded_counter.add(1, {"limit_type": "ip"})
            logger.warning("Rate limit exceeded for IP", extra={
                "client_ip": client_ip,
                "count": ip_count,
                "limit": self.requests_per_minute_ip
            })
            return self._too_many_requests("IP", self.requests_per_minute_ip)

        if user_id:
            user_allowed, user_count = self._check_rate_limit(
                f"rate:user:{user_id}",
                self.requests_per_minute_user,
                self.window_seconds
            )
            if not user_allowed:
                rate_limit_exceeded_counter.add(1, {"limit_type": "user"})
                logger.warning("Rate limit exceeded for user", extra={
                    "user_id": user_id,
                    "count": user_count,
                    "limit": self.requests_per_minute_user
                })
                return self._too_many_requests("user", self.requests_per_minute_user)

        response = await call_next(request)

        self._detect_suspicious_activity(response.status_code, client_ip, user_id)

        return response

    def _record_hit(self, key: str, now: float) -> int:
        self.redis.zadd(key, {str(now): now})
        self.redis.expire(key, SUSPICIOUS_WINDOW_SECONDS + 1)
        return self.redis.zcount(key, now - SUSPICIOUS_WINDOW_SECONDS, now)

    def _detect_suspicious_activity(
        self,
        status_code: int,
        client_ip: str,
        user_id: Optional[str]
    ) -> None:
        """
        Flag bursts of failed requests from one client.

        Patterns, over five minutes: 5+ failed authentications, 10+ not
        found responses, 20+ client errors of any kind.
        """
        if status_code < 400 or status_code >= 500:
            return
        try:
            now = time.time()
            for code, pattern, threshold in SUSPICIOUS_PATTERNS:
                if status_code == code:
                    count = self._record_hit(f"suspicious:{code}:{client_ip}", now)
                    if count >= threshold:
                        suspicious_activity_counter.add(1, {"type": pattern})
                        logger.warning("Suspicious activity detected", extra={
                            "pattern": pattern,
                            "client_ip": client_ip,
                            "user_id": user_id,
                            "count": count
                        })

            count = self._record_hit(f"suspicious:4xx:{client_ip}", now)
            if count >= CLIENT_ERROR_THRESHOLD:
                suspicious_activity_counter.add(1, {"type": "abuse"})
                logger.warning("Suspicious activity detected", extra={
                    "pattern": "abuse",
                    "client_ip": client_ip,
                    "user_id": user_id,
                    "count": count
                })
        except redis.RedisError as e:
            logger.error("Error detecting suspicious activity", extra={"error": str(e)})
