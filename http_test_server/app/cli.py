"""Process entry point.

Settings come from ``HTTP_TEST_*`` environment variables, a .env file and
command-line flags. The server runs until SIGINT or SIGTERM, then shuts down
gracefully and writes the activity summary.
"""

import asyncio
import signal
import sys
from typing import List, Optional

from http_test_server.app.core.config import Settings, load_settings
from http_test_server.app.core.logging import get_logger, setup_logging
from http_test_server.app.exceptions import HttpTestServerError
from http_test_server.app.server import HttpTestServer
from http_test_server.app.services.statistics import Statistics
from http_test_server.app.services.summary import remove_summary, write_parameters, write_summary

logger = get_logger(__name__)


async def serve(server: HttpTestServer) -> Statistics:
    """Run ``server`` until the process is asked to stop."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await server.start()
        await stop.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    return await server.shutdown()


def run(settings: Settings) -> int:
    """Run a test server with ``settings`` and write its output files.

    Returns:
        Process exit status
    """
    try:
        server = HttpTestServer(settings)
    except HttpTestServerError as exc:
        print(f"http_test_server: {exc}", file=sys.stderr)
        return 1

    remove_summary(settings.summary_path)
    if settings.parameters_path is not None:
        write_parameters(settings.parameters_path, settings)

    try:
        statistics = asyncio.run(serve(server))
    except HttpTestServerError as exc:
        logger.error(f"Server failed: {exc}")
        return 1

    write_summary(settings.summary_path, statistics)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Parse settings, configure logging and run the server.

    Args:
        argv: Command-line arguments; ``sys.argv[1:]`` when omitted
    """
    try:
        settings = load_settings(cli_args=argv if argv is not None else True)
    except HttpTestServerError as exc:
        print(f"http_test_server: {exc}", file=sys.stderr)
        return 1

    setup_logging(settings.log_level, settings.log_format)
    return run(settings)
