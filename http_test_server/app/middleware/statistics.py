"""Statistics capture middleware.

Reads the request body, forwards the request with the body replayed, and
observes the status code the rest of the pipeline answers with. The finished
request is handed to the aggregator only after the response has been sent.
"""

import asyncio
from datetime import datetime, timezone

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from http_test_server.app.core.logging import get_logger
from http_test_server.app.exceptions import BodyReadError
from http_test_server.app.middleware.base import read_body, replay_body, status_response
from http_test_server.app.services.statistics import HandledRequest, StatisticsAggregator

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StatisticsMiddleware:
    """Capture per-request statistics.

    Recording is scheduled on the event loop after the downstream app has
    returned, so it never adds to the latency the client measures. Readers
    of the aggregator see a request shortly after its response completes,
    not at the same instant.
    """

    def __init__(self, app: ASGIApp, statistics: StatisticsAggregator):
        self.app = app
        self.statistics = statistics

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        handled = HandledRequest(
            start=_utcnow(),
            content_type=Headers(scope=scope).get("content-type", ""),
        )

        async def send_with_status(message: Message) -> None:
            if message["type"] == "http.response.start":
                handled.status = message["status"]
            await send(message)

        try:
            try:
                handled.body = await read_body(receive)
            except BodyReadError as exc:
                logger.warning("Error reading body: %s", exc)
                await status_response(exc.status_code, exc.detail)(scope, receive, send_with_status)
                return

            await self.app(scope, replay_body(handled.body, receive), send_with_status)
        finally:
            handled.end = _utcnow()
            asyncio.get_running_loop().call_soon(self.statistics.record_request, handled)
