"""Tests for error injection middleware."""

import pytest

from http_test_server.app.core.expression import compile_expression
from http_test_server.app.exceptions import ExpressionEvalError
from http_test_server.app.middleware.error import ErrorInjectionMiddleware, status_from_number


def error_app(app, text, **kwargs):
    return ErrorInjectionMiddleware(app, expression=compile_expression(text), **kwargs)


class TestStatusFromNumber:

    def test_integral_values(self):
        assert status_from_number(503) == 503
        assert status_from_number(404.0) == 404

    def test_truncates_fractions(self):
        assert status_from_number(500.9) == 500

    @pytest.mark.parametrize("value", [0, 199, 600, -500, float("nan"), float("inf")])
    def test_rejects_values_outside_status_range(self, value):
        with pytest.raises(ExpressionEvalError):
            status_from_number(value)


class TestErrorInjectionMiddleware:

    @pytest.mark.asyncio
    async def test_false_forwards(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "false"))
        assert result.status == 204
        assert counting_app.calls == 1

    @pytest.mark.asyncio
    async def test_true_answers_500(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "true"))
        assert result.status == 500
        assert result.body == b"Internal Server Error\n"
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_number_is_status_code(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "503"))
        assert result.status == 503
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_conditional_operator_expression(self, counting_app, call_asgi):
        app = error_app(counting_app, "t >= 0 && !false ? 429 : false")
        result = await call_asgi(app)
        assert result.status == 429
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_forced_success_status_is_not_forwarded(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "200"))
        assert result.status == 200
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_close_drops_connection(self, counting_app, call_asgi, fake_connection):
        result = await call_asgi(error_app(counting_app, "CLOSE"), connection=fake_connection)
        assert result.messages == []
        assert fake_connection.closed is True
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_close_string_literal(self, counting_app, call_asgi, fake_connection):
        await call_asgi(error_app(counting_app, "'CLOSE'"), connection=fake_connection)
        assert fake_connection.closed is True

    @pytest.mark.asyncio
    async def test_unrecognized_string_answers_500(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "'boom'"))
        assert result.status == 500
        assert b"'boom'" in result.body
        assert b"not recognized" in result.body
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_evaluation_error_answers_500(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "nope"))
        assert result.status == 500
        assert b"unknown variable name: nope" in result.body
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_out_of_range_status_answers_500(self, counting_app, call_asgi):
        result = await call_asgi(error_app(counting_app, "42"))
        assert result.status == 500
        assert counting_app.calls == 0

    @pytest.mark.asyncio
    async def test_uses_uptime(self, counting_app, call_asgi, fake_clock):
        app = error_app(
            counting_app,
            "503 if t >= 10 else false",
            started_at=fake_clock(),
            clock=fake_clock,
        )

        assert (await call_asgi(app)).status == 204
        fake_clock.advance(10.0)
        assert (await call_asgi(app)).status == 503

    @pytest.mark.asyncio
    async def test_active_requests_counts_the_current_request(self, counting_app, call_asgi):
        app = error_app(counting_app, "false if active_requests == 1 else 500")
        assert (await call_asgi(app)).status == 204
        assert app.in_flight.value == 0
