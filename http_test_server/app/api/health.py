"""Readiness and client probe endpoints."""

from typing import Any

from fastapi import APIRouter, Request, Response

router = APIRouter()

ELASTICSEARCH_VERSION = "7.1.1"


@router.get("/_health", status_code=204)
async def health(request: Request) -> Response:
    """Return 204 once the listener accepts connections, 503 before that."""
    if request.app.state.readiness.is_set():
        return Response(status_code=204)
    return Response(status_code=503)


@router.get("/elasticsearch")
async def elasticsearch_root() -> dict[str, Any]:
    """Answer the version probe Elasticsearch clients send before bulk writes."""
    return {"version": {"number": ELASTICSEARCH_VERSION}}
