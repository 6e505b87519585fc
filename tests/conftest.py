"""Shared fixtures for the test server tests."""

from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import pytest

from http_test_server.app.core.config import Settings
from http_test_server.app.core.transport import HIJACK_EXTENSION


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeConnection:
    """Stands in for the server transport behind the hijack extension."""

    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True


class ASGIResult:
    """Messages an app sent for a single raw ASGI call."""

    def __init__(self, messages: List[Dict[str, Any]]):
        self.messages = messages

    @property
    def status(self) -> Optional[int]:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return message["status"]
        return None

    @property
    def headers(self) -> Dict[str, str]:
        for message in self.messages:
            if message["type"] == "http.response.start":
                return {k.decode(): v.decode() for k, v in message.get("headers", [])}
        return {}

    @property
    def body(self) -> bytes:
        return b"".join(
            message.get("body", b"")
            for message in self.messages
            if message["type"] == "http.response.body"
        )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Build Settings from keyword overrides, ignoring any .env file."""

    def factory(**overrides: Any) -> Settings:
        return Settings(_env_file=None, **overrides)

    return factory


@pytest.fixture
def call_asgi() -> Callable[..., Any]:
    """Call an ASGI app directly and collect what it sends.

    Passing ``connection`` adds the hijack extension backed by it.
    """

    async def call(
        app: Any,
        method: str = "POST",
        path: str = "/",
        body: bytes = b"",
        headers: Iterable[Tuple[str, str]] = (),
        connection: Optional[FakeConnection] = None,
    ) -> ASGIResult:
        scope: Dict[str, Any] = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "path": path,
            "raw_path": path.encode(),
            "query_string": b"",
            "root_path": "",
            "headers": [(k.lower().encode(), v.encode()) for k, v in headers],
            "client": ("127.0.0.1", 40000),
            "server": ("127.0.0.1", 8080),
            "extensions": {},
        }
        if connection is not None:
            scope["extensions"][HIJACK_EXTENSION] = {"close": connection.close}

        request_sent = False
        messages: List[Dict[str, Any]] = []

        async def receive() -> Dict[str, Any]:
            nonlocal request_sent
            if not request_sent:
                request_sent = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        async def send(message: Dict[str, Any]) -> None:
            messages.append(message)

        await app(scope, receive, send)
        return ASGIResult(messages)

    return call


@pytest.fixture
def counting_app() -> Any:
    """Terminal ASGI app answering 204 and counting its invocations."""

    class CountingApp:
        def __init__(self) -> None:
            self.calls = 0

        async def __call__(self, scope: Any, receive: Any, send: Any) -> None:
            self.calls += 1
            await receive()
            await send({"type": "http.response.start", "status": 204, "headers": []})
            await send({"type": "http.response.body", "body": b""})

    return CountingApp()


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()
