"""Request body decompression middleware.

Shippers often gzip their payloads; decoding them before the statistics
layer makes byte and message counts reflect the uncompressed content.
"""

import gzip
import zlib

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Receive, Scope, Send

from http_test_server.app.core.logging import get_logger
from http_test_server.app.exceptions import BodyReadError
from http_test_server.app.middleware.base import read_body, replay_body, status_response

logger = get_logger(__name__)


class GzipDecompressionMiddleware:
    """Decompress ``Content-Encoding: gzip`` request bodies.

    Bodies that cannot be decoded are answered with 400 Bad Request and never
    reach the rest of the pipeline.
    """

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        encoding = Headers(scope=scope).get("content-encoding", "").strip().lower()
        if encoding != "gzip":
            await self.app(scope, receive, send)
            return

        try:
            body = await read_body(receive)
            body = gzip.decompress(body)
        except BodyReadError as exc:
            logger.warning("Error reading body: %s", exc)
            await status_response(exc.status_code, exc.detail)(scope, receive, send)
            return
        except (OSError, EOFError, zlib.error) as exc:
            logger.warning("Could not read gzip body: %s", exc)
            await status_response(400, "can't read body")(scope, receive, send)
            return

        await self.app(scope, replay_body(body, receive), send)
