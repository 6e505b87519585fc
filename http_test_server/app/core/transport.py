"""Connection hijacking support.

ASGI has no standard way for an application to drop a connection without
answering. The uvicorn protocol below advertises a ``http.connection.hijack``
scope extension whose ``close`` callable closes the underlying transport.
Middleware asks for it through :func:`hijack_connection`, which fails loudly
when the app is served by something that does not provide it.
"""

import asyncio
from typing import Any, Dict

from starlette.types import ASGIApp, Receive, Scope, Send
from uvicorn.protocols.http.h11_impl import H11Protocol

from http_test_server.app.exceptions import HijackUnsupportedError

HIJACK_EXTENSION = "http.connection.hijack"


def supports_hijack(scope: Scope) -> bool:
    """Check whether the connection behind ``scope`` can be hijacked."""
    extensions: Dict[str, Any] = scope.get("extensions") or {}
    return HIJACK_EXTENSION in extensions


async def hijack_connection(scope: Scope) -> None:
    """Close the client connection without sending a response.

    Raises:
        HijackUnsupportedError: If the server did not provide the extension
    """
    if not supports_hijack(scope):
        raise HijackUnsupportedError("connection not hijackable")
    scope["extensions"][HIJACK_EXTENSION]["close"]()
    # Let the server observe the disconnect before the app returns, so it
    # does not try to answer the request itself.
    await asyncio.sleep(0)


def with_hijack_extension(app: ASGIApp, transport: asyncio.BaseTransport) -> ASGIApp:
    """Wrap ``app`` so every HTTP scope on this connection can close ``transport``."""

    async def hijackable_app(scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            extensions = dict(scope.get("extensions") or {})
            extensions[HIJACK_EXTENSION] = {"close": transport.close}
            scope["extensions"] = extensions
        await app(scope, receive, send)

    return hijackable_app


class HijackableH11Protocol(H11Protocol):
    """h11 protocol that lets the application drop its own connection."""

    def connection_made(self, transport: asyncio.Transport) -> None:
        super().connection_made(transport)
        self.app = with_hijack_extension(self.app, transport)
