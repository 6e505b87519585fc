"""Error injection middleware.

An expression is evaluated for every request and decides its fate:

- a number: answer with that status code
- true: answer with 500
- false: forward the request
- "CLOSE": drop the connection without a response
- any other string: answer with 500
"""

import math
import time
from typing import Callable, Optional

from starlette.types import ASGIApp, Receive, Scope, Send

from http_test_server.app.core.expression import EvaluationContext, Expression, Value
from http_test_server.app.core.logging import get_logger
from http_test_server.app.core.transport import hijack_connection
from http_test_server.app.exceptions import ExpressionEvalError
from http_test_server.app.middleware.base import InFlightGauge, status_response

logger = get_logger(__name__)

CLOSE = "CLOSE"


def status_from_number(value: float) -> int:
    """Convert a numeric expression result to an HTTP status code.

    Raises:
        ExpressionEvalError: If the value is not a finite number in 200..599
    """
    if isinstance(value, float) and not math.isfinite(value):
        raise ExpressionEvalError(f"expression returned {value}, which is not a status code")
    status_code = int(value)
    if not 200 <= status_code <= 599:
        raise ExpressionEvalError(
            f"expression returned {status_code}, which is not a status code in 200-599"
        )
    return status_code


class ErrorInjectionMiddleware:
    """Fail requests according to an error expression.

    Args:
        app: The wrapped ASGI app
        expression: Compiled error expression
        started_at: Clock reading taken when the server started; defaults to now
        clock: Monotonic clock in seconds
    """

    def __init__(
        self,
        app: ASGIApp,
        expression: Expression,
        started_at: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.app = app
        self.expression = expression
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
                result = self.expression.evaluate(context)
            except ExpressionEvalError as exc:
                logger.error("Error expression failed: %s", exc)
                await status_response(exc.status_code, str(exc))(scope, receive, send)
                return

            await self._dispatch(result, scope, receive, send)

    async def _dispatch(self, result: Value, scope: Scope, receive: Receive, send: Send) -> None:
        # bool is a subclass of int, so it has to be checked first.
        if isinstance(result, bool):
            if result:
                await status_response(500)(scope, receive, send)
            else:
                await self.app(scope, receive, send)
            return

        if isinstance(result, (int, float)):
            try:
                status_code = status_from_number(result)
            except ExpressionEvalError as exc:
                logger.error("Error expression failed: %s", exc)
                await status_response(exc.status_code, str(exc))(scope, receive, send)
                return
            await status_response(status_code)(scope, receive, send)
            return

        if result == CLOSE:
            await hijack_connection(scope)
            return

        logger.error("Error expression returned unrecognized string %r", result)
        await status_response(
            500,
            f"expression returned a string, {result!r}, but it was not recognized",
        )(scope, receive, send)
