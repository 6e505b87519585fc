"""Request pipeline assembly.

Outer to inner, every request passes through:

    request id -> access log -> gzip decompression -> statistics
        -> rate limit -> latency -> error injection -> ingest endpoint

The first two layers wrap the whole FastAPI app so health and probe requests
are tagged and logged too. The rest wrap only the ingest endpoint. Each layer
is a starlette ``Middleware`` entry, so layers can be reordered or replaced
by editing a list.
"""

import time
from typing import Callable, List, Optional, Sequence

from starlette.middleware import Middleware
from starlette.types import ASGIApp

from http_test_server.app.api.ingest import IngestEndpoint
from http_test_server.app.core.config import Settings
from http_test_server.app.core.expression import compile_expression
from http_test_server.app.middleware import (
    AccessLogMiddleware,
    ErrorInjectionMiddleware,
    GzipDecompressionMiddleware,
    LatencyMiddleware,
    RateLimitMiddleware,
    RequestIdMiddleware,
    StatisticsMiddleware,
    create_latency_model,
    create_rate_limiter,
)
from http_test_server.app.services.statistics import StatisticsAggregator


def compose(app: ASGIApp, middleware: Sequence[Middleware]) -> ASGIApp:
    """Wrap ``app`` so the first entry of ``middleware`` is the outermost layer."""
    for cls, args, kwargs in reversed(middleware):
        app = cls(app, *args, **kwargs)
    return app


def outer_middleware() -> List[Middleware]:
    """Layers applied to every request the server receives."""
    return [
        Middleware(RequestIdMiddleware),
        Middleware(AccessLogMiddleware),
    ]


def ingest_middleware(
    settings: Settings,
    statistics: StatisticsAggregator,
    started_at: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> List[Middleware]:
    """Layers applied to ingest requests, built from ``settings``.

    Args:
        settings: Rate limit, latency and error injection parameters
        statistics: Aggregator the statistics layer records into
        started_at: Clock reading expressions measure uptime from
        clock: Monotonic clock shared by the token bucket and expressions

    Returns:
        Middleware entries, outermost first

    Raises:
        ConfigurationError: If the rate limit parameters are invalid
        ExpressionCompileError: If a latency or error expression does not compile
    """
    if started_at is None:
        started_at = clock()

    return [
        Middleware(GzipDecompressionMiddleware),
        Middleware(StatisticsMiddleware, statistics=statistics),
        Middleware(RateLimitMiddleware, limiter=create_rate_limiter(settings, clock=clock)),
        Middleware(
            LatencyMiddleware,
            model=create_latency_model(settings),
            started_at=started_at,
            clock=clock,
        ),
        Middleware(
            ErrorInjectionMiddleware,
            expression=compile_expression(settings.error_expression),
            started_at=started_at,
            clock=clock,
        ),
    ]


def build_ingest_app(
    settings: Settings,
    statistics: StatisticsAggregator,
    started_at: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> ASGIApp:
    """Compose the ingest endpoint with its middleware."""
    return compose(
        IngestEndpoint(),
        ingest_middleware(settings, statistics, started_at=started_at, clock=clock),
    )
