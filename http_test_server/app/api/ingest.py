"""Terminal ingest handler.

Sits at the end of the request pipeline. The statistics layer has already
looked at the body; this handler only drains it and acknowledges.
"""

from starlette.datastructures import Headers
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from http_test_server.app.core.logging import get_logger
from http_test_server.app.exceptions import BodyReadError
from http_test_server.app.middleware.base import read_body, status_response

logger = get_logger(__name__)


class IngestEndpoint:
    """Read the body to completion and answer 204 No Content."""

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        logger.debug("Received content-type: %s", Headers(scope=scope).get("content-type", ""))
        try:
            await read_body(receive)
        except BodyReadError as exc:
            logger.warning("Error reading body: %s", exc)
            await status_response(exc.status_code, exc.detail)(scope, receive, send)
            return
        await Response(status_code=204)(scope, receive, send)
