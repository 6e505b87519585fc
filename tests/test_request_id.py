"""Tests for request ID middleware."""

import uuid

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from http_test_server.app.core.logging import request_id_var
from http_test_server.app.middleware.request_id import RequestIdMiddleware, get_request_id


def make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/id")
    async def read_id(request: Request):
        return {"state": get_request_id(request.scope), "context": request_id_var.get()}

    return app


class TestRequestIdMiddleware:

    def test_echoes_incoming_request_id(self):
        client = TestClient(make_app())
        response = client.get("/id", headers={"X-Request-Id": "abc-123"})

        assert response.headers["X-Request-Id"] == "abc-123"
        assert response.json() == {"state": "abc-123", "context": "abc-123"}

    def test_assigns_request_id_when_missing(self):
        client = TestClient(make_app())
        response = client.get("/id")

        request_id = response.headers["X-Request-Id"]
        assert str(uuid.UUID(request_id)) == request_id
        assert response.json()["state"] == request_id

    def test_assigned_ids_are_unique(self):
        client = TestClient(make_app())
        ids = {client.get("/id").headers["X-Request-Id"] for _ in range(20)}
        assert len(ids) == 20

    def test_empty_header_gets_a_new_id(self):
        client = TestClient(make_app())
        response = client.get("/id", headers={"X-Request-Id": ""})
        assert response.headers["X-Request-Id"] != ""

    def test_context_is_reset_after_request(self):
        client = TestClient(make_app())
        client.get("/id", headers={"X-Request-Id": "abc-123"})
        assert request_id_var.get() is None

    def test_header_on_error_responses(self):
        client = TestClient(make_app())
        response = client.get("/missing", headers={"X-Request-Id": "abc-123"})

        assert response.status_code == 404
        assert response.headers["X-Request-Id"] == "abc-123"
