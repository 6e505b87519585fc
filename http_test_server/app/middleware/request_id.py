"""Request ID middleware for correlating requests in logs.

This middleware tags each incoming request with an ID and returns it in
the ``X-Request-Id`` response header.
"""

import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from http_test_server.app.core.logging import request_id_var


class RequestIdMiddleware:
    """ASGI middleware to add a request ID to all requests.

    The request ID is:
    1. Extracted from the X-Request-Id header if present
    2. Generated as UUID if not present
    3. Stored in the scope state and the logging context variable
    4. Returned in the X-Request-Id response header
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Request-Id"):
        self.app = app
        self.header_name = header_name

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get(self.header_name)
        if not request_id:
            request_id = str(uuid.uuid4())
        scope.setdefault("state", {})["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[self.header_name] = request_id
            await send(message)

        token = request_id_var.set(request_id)
        try:
            await self.app(scope, receive, send_with_request_id)
        finally:
            request_id_var.reset(token)


def get_request_id(scope: Scope) -> str:
    """Get the request ID stored in the scope state.

    Args:
        scope: ASGI connection scope

    Returns:
        Request ID string, or "unknown" if RequestIdMiddleware did not run
    """
    return scope.get("state", {}).get("request_id", "unknown")
