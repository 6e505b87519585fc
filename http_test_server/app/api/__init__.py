"""HTTP endpoints of the test server."""

from http_test_server.app.api.health import router as health_router
from http_test_server.app.api.ingest import IngestEndpoint

__all__ = [
    "IngestEndpoint",
    "health_router",
]
