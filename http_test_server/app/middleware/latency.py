"""Latency injection middleware.

Every request is delayed by a duration drawn from a normal distribution
before it is forwarded. The distribution is either fixed (NORMAL) or has a
mean and standard deviation computed per request from expressions
(EXPRESSION), which lets the delay follow load or time.
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from starlette.types import ASGIApp, Receive, Scope, Send

from http_test_server.app.core.config import LatencyDistribution, Settings
from http_test_server.app.core.expression import EvaluationContext, Expression, compile_expression
from http_test_server.app.core.logging import get_logger
from http_test_server.app.exceptions import ExpressionEvalError
from http_test_server.app.middleware.base import InFlightGauge, status_response

logger = get_logger(__name__)


def sample_delay(mean: float, stddev: float) -> float:
    """Draw a delay in seconds.

    Parameters are used as given. A negative draw means the request is not
    delayed at all.
    """
    return max(0.0, random.normalvariate(mean, stddev))


class LatencyModel(ABC):
    """Produces the delay for a single request."""

    distribution: LatencyDistribution

    @abstractmethod
    def delay(self, context: EvaluationContext) -> float:
        """Seconds to delay the request.

        Raises:
            ExpressionEvalError: If the model evaluates an expression that fails
        """


class NormalLatency(LatencyModel):
    distribution = LatencyDistribution.NORMAL

    def __init__(self, mean: float, stddev: float):
        self.mean = mean
        self.stddev = stddev

    def delay(self, context: EvaluationContext) -> float:
        return sample_delay(self.mean, self.stddev)


class ExpressionLatency(LatencyModel):
    """Normal distribution whose parameters are expressions in milliseconds."""

    distribution = LatencyDistribution.EXPRESSION

    def __init__(self, mean: Expression, stddev: Expression):
        self.mean = mean
        self.stddev = stddev

    def delay(self, context: EvaluationContext) -> float:
        mean_ms = self.mean.evaluate_number(context)
        stddev_ms = self.stddev.evaluate_number(context)
        return sample_delay(mean_ms / 1000.0, stddev_ms / 1000.0)


def create_latency_model(settings: Settings) -> LatencyModel:
    """Build the latency model selected by ``settings.latency_distribution``.

    Raises:
        ExpressionCompileError: If an expression in the settings does not compile
    """
    if settings.latency_distribution is LatencyDistribution.EXPRESSION:
        return ExpressionLatency(
            compile_expression(settings.latency_expression_mean_ms),
            compile_expression(settings.latency_expression_stddev_ms),
        )
    return NormalLatency(
        settings.latency_normal_mean.total_seconds(),
        settings.latency_normal_stddev.total_seconds(),
    )


class LatencyMiddleware:
    """Delay requests according to a LatencyModel.

    Args:
        app: The wrapped ASGI app
        model: Source of per-request delays
        started_at: Clock reading taken when the server started; defaults to now
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        app: ASGIApp,
        model: LatencyModel,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.app = app
        self.model = model
        self.clock = clock
        self.started_at = clock() if started_at is None else started_at
        self.in_flight = InFlightGauge()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        with self.in_flight.track() as active:
            context = EvaluationContext(
                uptime=self.clock() - self.started_at,
                active_requests=active,
            )
            try:
                delay = self.model.delay(context)
            except ExpressionEvalError as exc:
                logger.error("Could not compute latency: %s", exc)
                await status_response(exc.status_code, str(exc))(scope, receive, send)
                return

            if delay > 0:
                await asyncio.sleep(delay)
            await self.app(scope, receive, send)
