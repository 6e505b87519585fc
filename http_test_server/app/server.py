"""Embeddable test server.

``HttpTestServer`` runs the app on uvicorn inside the caller's event loop
and exposes the lifecycle the process entry point needs: start listening,
read statistics, and shut down gracefully with a deadline.
"""

import asyncio
import contextlib
import socket
from typing import Generator, Optional

import uvicorn
from fastapi import FastAPI

from http_test_server.app.core.config import Settings
from http_test_server.app.core.logging import get_logger
from http_test_server.app.core.transport import HijackableH11Protocol
from http_test_server.app.exceptions import HttpTestServerError, ShutdownTimeout
from http_test_server.app.main import create_app
from http_test_server.app.services.statistics import Statistics, StatisticsAggregator

logger = get_logger(__name__)


class _UvicornServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to its owner."""

    @contextlib.contextmanager
    def capture_signals(self) -> Generator[None, None, None]:
        yield

    def install_signal_handlers(self) -> None:
        pass


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind a listening socket, raising HttpTestServerError if the address is unusable."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError as exc:
        sock.close()
        raise HttpTestServerError(f"could not listen on {host}:{port}: {exc}") from exc
    sock.set_inheritable(True)
    return sock


class HttpTestServer:
    """The test server with its pipeline, statistics and lifecycle.

    Usage:
        server = HttpTestServer(settings)
        await server.start()
        ...
        statistics = await server.shutdown()

    Args:
        settings: Server configuration
        statistics: Aggregator to record into; a new one is created when omitted

    Raises:
        ConfigurationError: If the rate limit parameters are invalid
        ExpressionCompileError: If a latency or error expression does not compile
    """

    def __init__(self, settings: Settings, statistics: Optional[StatisticsAggregator] = None):
        self.settings = settings
        self.statistics = statistics or StatisticsAggregator()
        self.app: FastAPI = create_app(settings, self.statistics)
        self._socket: Optional[socket.socket] = None
        self._port: Optional[int] = None
        self._server: Optional[_UvicornServer] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def port(self) -> int:
        """Port the server listens on; resolved after start() when configured as 0."""
        if self._port is None:
            return self.settings.port
        return self._port

    @property
    def address(self) -> str:
        return f"{self.settings.host}:{self.port}"

    @property
    def ready(self) -> bool:
        return self.app.state.readiness.is_set()

    async def start(self) -> None:
        """Start serving in the background and wait until connections are accepted."""
        if self._task is not None:
            raise HttpTestServerError("server already started")

        self._socket = bind_socket(self.settings.host, self.settings.port)
        self._port = self._socket.getsockname()[1]
        config = uvicorn.Config(
            self.app,
            http=HijackableH11Protocol,
            lifespan="on",
            log_config=None,
            access_log=False,
        )
        self._server = _UvicornServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[self._socket]))

        while not self._server.started:
            if self._task.done():
                self._task.result()
                raise HttpTestServerError("server exited during startup")
            await asyncio.sleep(0.01)

        self.app.state.readiness.set()
        logger.info(f"Server is ready to handle requests at {self.address}")

    def snapshot(self) -> Statistics:
        """Consistent copy of the statistics recorded so far."""
        return self.statistics.snapshot()

    async def shutdown(self, timeout: Optional[float] = None) -> Statistics:
        """Stop accepting connections and wait for in-flight requests.

        If requests are still running when ``timeout`` elapses, a warning is
        logged and the server is stopped anyway.

        Args:
            timeout: Seconds to wait; defaults to ``settings.shutdown_timeout``

        Returns:
            Final statistics snapshot
        """
        if timeout is None:
            timeout = self.settings.shutdown_timeout

        self.app.state.readiness.clear()
        if self._task is None or self._server is None:
            return self.snapshot()

        logger.info("Server is shutting down...")
        self._server.should_exit = True
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(str(ShutdownTimeout(timeout)))
            self._server.force_exit = True
            await self._task
        finally:
            self._task = None
            self._server = None

        await self.app.state.ticker.stop()
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        # Statistics are recorded by loop callbacks after each response.
        await asyncio.sleep(0)
        logger.info("Server stopped")
        return self.snapshot()
