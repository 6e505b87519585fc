import threading
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from http_test_server import __version__
from http_test_server.app.api import health_router
from http_test_server.app.core.config import Settings
from http_test_server.app.core.logging import get_logger
from http_test_server.app.exceptions import HttpTestServerError
from http_test_server.app.pipeline import build_ingest_app, outer_middleware
from http_test_server.app.services.statistics import StatisticsAggregator
from http_test_server.app.services.ticker import StatisticsTicker

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    statistics: Optional[StatisticsAggregator] = None,
    started_at: Optional[float] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The rate limiter, latency model and error expression are built here, so
    invalid parameters fail before any socket is opened.

    Args:
        settings: Server configuration; defaults are used when omitted
        statistics: Aggregator to record into; a new one is created when omitted
        started_at: Clock reading that expression uptime is measured from
        clock: Monotonic clock in seconds

    Returns:
        Configured FastAPI application instance

    Raises:
        ConfigurationError: If the rate limit parameters are invalid
        ExpressionCompileError: If a latency or error expression does not compile
    """
    if settings is None:
        settings = Settings()
    if statistics is None:
        statistics = StatisticsAggregator()

    ingest_app = build_ingest_app(settings, statistics, started_at=started_at, clock=clock)
    ticker = StatisticsTicker(statistics, interval=settings.stats_log_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Run the statistics ticker for as long as the app is served."""
        await ticker.start()
        logger.info(
            "Server is starting",
            extra={
                "address": settings.address,
                "rate_limit_behavior": settings.rate_limit_behavior.value,
                "latency_distribution": settings.latency_distribution.value,
            },
        )
        yield
        app.state.readiness.clear()
        await ticker.stop()
        ticker.log_counts()
        logger.info("Server stopped")

    app = FastAPI(
        title="HTTP Test Server",
        description="Ingest endpoint with configurable latency, rate limiting and error injection",
        version=__version__,
        lifespan=lifespan,
        middleware=outer_middleware(),
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.state.settings = settings
    app.state.statistics = statistics
    app.state.readiness = threading.Event()
    app.state.ticker = ticker

    app.include_router(health_router)

    @app.exception_handler(HttpTestServerError)
    async def server_error_handler(request: Request, exc: HttpTestServerError) -> PlainTextResponse:
        """Answer errors that escaped the pipeline with their status code."""
        logger.error(
            f"Unhandled {type(exc).__name__}: {exc.message}",
            extra={"exception_type": type(exc).__name__},
        )
        return PlainTextResponse(f"{exc.message}\n", status_code=exc.status_code)

    app.mount("/", ingest_app)

    return app
