"""Access logging middleware."""

import time

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from http_test_server.app.core.logging import get_logger
from http_test_server.app.middleware.request_id import get_request_id

logger = get_logger(__name__)


class AccessLogMiddleware:
    """Log one line per request once it has been handled.

    Requests whose connection was dropped without a response are logged
    with status 0.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start_time = time.perf_counter()
        status_code = 0

        async def send_with_status(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        finally:
            headers = Headers(scope=scope)
            client = scope.get("client")
            remote_addr = f"{client[0]}:{client[1]}" if client else "-"
            user_agent = headers.get("user-agent", "-")
            request_id = get_request_id(scope)
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            logger.info(
                "%s %s %s %s %s %s",
                request_id,
                scope["method"],
                scope["path"],
                remote_addr,
                user_agent,
                status_code,
                extra={
                    "method": scope["method"],
                    "path": scope["path"],
                    "remote_addr": remote_addr,
                    "user_agent": user_agent,
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                },
            )
