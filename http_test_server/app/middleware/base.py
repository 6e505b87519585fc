"""Shared pieces of the request pipeline middleware.

Every layer is a plain ASGI middleware class taking the wrapped app as its
first argument, so any layer can be composed with any other.
"""

import contextlib
import threading
from http import HTTPStatus
from typing import Iterator, Optional

from starlette.responses import PlainTextResponse, Response
from starlette.types import Message, Receive

from http_test_server.app.exceptions import BodyReadError


class InFlightGauge:
    """Thread-safe count of requests currently inside a component."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._value = 0

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    @contextlib.contextmanager
    def track(self) -> Iterator[int]:
        """Count the caller as in flight; yields the count including the caller."""
        with self._lock:
            self._value += 1
            current = self._value
        try:
            yield current
        finally:
            with self._lock:
                self._value -= 1


async def read_body(receive: Receive) -> bytes:
    """Read the whole request body.

    Raises:
        BodyReadError: If the client disconnects before the body is complete
    """
    chunks = []
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            raise BodyReadError("client disconnected while sending body")
        if message["type"] != "http.request":
            continue
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            return b"".join(chunks)


def replay_body(body: bytes, receive: Receive) -> Receive:
    """Build a receive callable that hands ``body`` downstream once.

    Later calls fall through to the original receive so disconnects are
    still delivered.
    """
    delivered = False

    async def replay() -> Message:
        nonlocal delivered
        if not delivered:
            delivered = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


def status_response(status_code: int, detail: Optional[str] = None) -> Response:
    """Plain text response for ``status_code``, like a bare HTTP error page.

    Statuses that must not carry a body get an empty one.
    """
    if status_code < 200 or status_code in (204, 304):
        return Response(status_code=status_code)
    if detail is None:
        try:
            detail = HTTPStatus(status_code).phrase
        except ValueError:
            detail = ""
    return PlainTextResponse(f"{detail}\n", status_code=status_code)
