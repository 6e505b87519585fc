"""Rate limiting middleware for the ingest pipeline.

A single token bucket is shared by all requests. What happens to a request
that finds the bucket empty depends on the configured behavior:

- NONE: no limit, every request is admitted
- HARD: answer immediately with the configured status code (429 by default)
- QUEUE: wait until the bucket refills, then forward
- CLOSE: drop the connection without sending a response
"""

import time
from abc import ABC, abstractmethod
from typing import Callable

from starlette.types import ASGIApp, Receive, Scope, Send

from http_test_server.app.core.config import RateLimitBehavior, Settings
from http_test_server.app.core.logging import get_logger
from http_test_server.app.core.token_bucket import TokenBucket
from http_test_server.app.core.transport import hijack_connection
from http_test_server.app.middleware.base import status_response

logger = get_logger(__name__)


class RateLimiter(ABC):
    """Admission decision for a single request."""

    behavior: RateLimitBehavior

    @abstractmethod
    async def admit(self, scope: Scope, receive: Receive, send: Send) -> bool:
        """Decide whether to forward the request.

        Returns:
            True to forward the request. False means the limiter has already
            answered the request or closed its connection.
        """


class NoRateLimiter(RateLimiter):
    behavior = RateLimitBehavior.NONE

    async def admit(self, scope: Scope, receive: Receive, send: Send) -> bool:
        return True


class BucketRateLimiter(RateLimiter):
    """Base class for limiters backed by a token bucket."""

    def __init__(self, bucket: TokenBucket):
        self.bucket = bucket


class HardRateLimiter(BucketRateLimiter):
    behavior = RateLimitBehavior.HARD

    def __init__(self, bucket: TokenBucket, status_code: int = 429):
        super().__init__(bucket)
        self.status_code = status_code

    async def admit(self, scope: Scope, receive: Receive, send: Send) -> bool:
        if self.bucket.try_take():
            return True
        logger.debug("Rate limit exceeded, rejecting with %d", self.status_code)
        await status_response(self.status_code)(scope, receive, send)
        return False


class QueueRateLimiter(BucketRateLimiter):
    behavior = RateLimitBehavior.QUEUE

    async def admit(self, scope: Scope, receive: Receive, send: Send) -> bool:
        waited = await self.bucket.wait()
        if waited > 0:
            logger.debug("Request queued for %.3fs by rate limit", waited)
        return True


class CloseRateLimiter(BucketRateLimiter):
    behavior = RateLimitBehavior.CLOSE

    async def admit(self, scope: Scope, receive: Receive, send: Send) -> bool:
        if self.bucket.try_take():
            return True
        logger.debug("Rate limit exceeded, dropping connection")
        await hijack_connection(scope)
        return False


def create_rate_limiter(
    settings: Settings,
    clock: Callable[[], float] = time.monotonic,
) -> RateLimiter:
    """Build the rate limiter selected by ``settings.rate_limit_behavior``.

    Raises:
        ConfigurationError: If the bucket parameters are not positive
    """
    behavior = settings.rate_limit_behavior
    if behavior is RateLimitBehavior.NONE:
        return NoRateLimiter()

    bucket = TokenBucket(
        fill_interval=settings.rate_limit_bucket_fill_interval.total_seconds(),
        capacity=settings.rate_limit_bucket_capacity,
        quantum=settings.rate_limit_bucket_quantum,
        clock=clock,
    )
    if behavior is RateLimitBehavior.HARD:
        return HardRateLimiter(bucket, settings.rate_limit_hard_status_code)
    if behavior is RateLimitBehavior.QUEUE:
        return QueueRateLimiter(bucket)
    return CloseRateLimiter(bucket)


class RateLimitMiddleware:
    """ASGI middleware that asks a RateLimiter before forwarding.

    Usage:
        RateLimitMiddleware(app, limiter=create_rate_limiter(settings))
    """

    def __init__(self, app: ASGIApp, limiter: RateLimiter):
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        if await self.limiter.admit(scope, receive, send):
            await self.app(scope, receive, send)
