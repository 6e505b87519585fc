"""Tests for the latency and error expression evaluator."""

import math

import pytest

from http_test_server.app.core.expression import EvaluationContext, compile_expression
from http_test_server.app.exceptions import ExpressionCompileError, ExpressionEvalError


def evaluate(text, uptime=0.0, active_requests=0):
    return compile_expression(text).evaluate(
        EvaluationContext(uptime=uptime, active_requests=active_requests)
    )


class TestCompile:
    """Compile-time validation."""

    def test_records_variables_and_functions(self):
        expr = compile_expression("active_requests * rand() + t")
        assert expr.variables == frozenset({"active_requests", "t"})
        assert expr.functions == frozenset({"rand"})
        assert expr.text == "active_requests * rand() + t"

    def test_literals_are_not_variables(self):
        expr = compile_expression("true or false")
        assert expr.variables == frozenset()

    @pytest.mark.parametrize("text", [
        "1 +",
        "",
        "foo()",
        "__import__('os')",
        "t.real",
        "[1, 2]",
        "lambda: 1",
        "sin(x=1)",
        "1 in t",
    ])
    def test_rejects_invalid_expressions(self, text):
        with pytest.raises(ExpressionCompileError) as exc_info:
            compile_expression(text)
        assert "could not use expression" in str(exc_info.value)

    def test_unknown_variable_compiles(self):
        # Variables are only resolved when evaluated
        expr = compile_expression("nope + 1")
        assert "nope" in expr.variables


class TestEvaluate:
    """Evaluation against an EvaluationContext."""

    def test_arithmetic(self):
        assert evaluate("1 + 2 * 3") == 7
        assert evaluate("7 // 2") == 3
        assert evaluate("-5 + 10 % 3") == -4

    def test_power_is_floating_point(self):
        assert evaluate("2 ** 10") == 1024.0
        assert isinstance(evaluate("2 ** 10"), float)
        assert evaluate("4 ** 0.5") == 2.0

    def test_t_is_whole_seconds_of_uptime(self):
        assert evaluate("t", uptime=12.9) == 12

    def test_active_requests(self):
        assert evaluate("active_requests * 10", active_requests=3) == 30

    def test_pi_and_sin(self):
        assert evaluate("sin(pi / 2)") == pytest.approx(1.0)
        assert evaluate("pi") == math.pi

    def test_rand_is_in_unit_interval(self):
        for _ in range(100):
            value = evaluate("rand()")
            assert 0 <= value < 1

    def test_boolean_literals(self):
        assert evaluate("true") is True
        assert evaluate("false") is False
        assert evaluate("True and not False") is True

    def test_close_variable_is_the_close_string(self):
        assert evaluate("CLOSE") == "CLOSE"
        assert evaluate("'CLOSE'") == "CLOSE"

    def test_conditional(self):
        expr = "503 if active_requests > 2 else false"
        assert evaluate(expr, active_requests=3) == 503
        assert evaluate(expr, active_requests=1) is False

    def test_chained_comparison(self):
        assert evaluate("1 < active_requests < 5", active_requests=3) is True
        assert evaluate("1 < active_requests < 5", active_requests=5) is False

    def test_evaluate_number(self):
        expr = compile_expression("t * 100")
        assert expr.evaluate_number(EvaluationContext(uptime=2.0, active_requests=0)) == 200.0

    def test_compiled_expression_is_reusable(self):
        expr = compile_expression("active_requests + 1")
        results = [
            expr.evaluate(EvaluationContext(uptime=0, active_requests=n))
            for n in range(3)
        ]
        assert results == [1, 2, 3]


class TestCLikeOperators:
    """``&&``, ``||``, ``!`` and ``c ? a : b`` alongside the Python spellings."""

    def test_and(self):
        expr = "active_requests > 10 && t < 5"
        assert evaluate(expr, active_requests=11) is True
        assert evaluate(expr, active_requests=11, uptime=7.0) is False
        assert evaluate(expr, active_requests=3) is False

    def test_or(self):
        assert evaluate("true || false") is True
        assert evaluate("false || false") is False
        assert evaluate("active_requests > 10 || t > 1", uptime=2.0) is True

    def test_not(self):
        assert evaluate("!false") is True
        assert evaluate("!true") is False
        assert evaluate("!!true") is True
        assert evaluate("!(active_requests > 2)", active_requests=1) is True

    def test_not_binds_to_its_operand(self):
        # (!sin(0)) < 2, not !(sin(0) < 2)
        assert evaluate("!sin(0) < 2") is True

    def test_not_equal_is_not_negation(self):
        assert evaluate("1 != 2") is True
        assert evaluate("active_requests != 0", active_requests=0) is False

    def test_conditional(self):
        expr = "active_requests > 2 ? 503 : false"
        assert evaluate(expr, active_requests=3) == 503
        assert evaluate(expr, active_requests=1) is False

    def test_conditional_with_rand(self):
        assert evaluate("rand() < 0.1 ? 500 : false") in (500, False)
        assert evaluate("rand() < 2 ? 500 : false") == 500

    def test_nested_conditional_is_right_associative(self):
        expr = "active_requests > 5 ? 503 : active_requests > 2 ? 429 : false"
        assert evaluate(expr, active_requests=6) == 503
        assert evaluate(expr, active_requests=3) == 429
        assert evaluate(expr, active_requests=0) is False

    def test_conditional_in_then_branch(self):
        expr = "t > 0 ? active_requests > 1 ? 1 : 2 : 3"
        assert evaluate(expr, uptime=1.0, active_requests=2) == 1
        assert evaluate(expr, uptime=1.0, active_requests=0) == 2
        assert evaluate(expr, uptime=0.0) == 3

    def test_conditional_inside_parentheses_and_calls(self):
        assert evaluate("1 + (active_requests > 0 ? 10 : 20)", active_requests=1) == 11
        assert evaluate("sin(active_requests > 0 ? 0 : pi / 2)", active_requests=1) == 0.0

    def test_combined_operators(self):
        expr = "active_requests > 1 && !false ? CLOSE : 200"
        assert evaluate(expr, active_requests=2) == "CLOSE"
        assert evaluate(expr, active_requests=0) == 200

    def test_string_literals_are_left_alone(self):
        assert evaluate("'a && b ? c : !d' == 'a && b ? c : !d'") is True
        assert evaluate('"||"') == "||"

    def test_text_is_kept_as_written(self):
        expr = compile_expression("!false && true")
        assert expr.text == "!false && true"

    @pytest.mark.parametrize("text", [
        "1 ? 2",
        "1 : 2",
        "true &&",
        "|| false",
        "!",
        "(true ? 1 : 2",
    ])
    def test_rejects_malformed_operators(self, text):
        with pytest.raises(ExpressionCompileError):
            compile_expression(text)


class TestEvaluateErrors:
    """Failures that surface per request."""

    def test_unknown_variable(self):
        with pytest.raises(ExpressionEvalError, match="unknown variable name: nope"):
            evaluate("nope + 1")

    def test_function_arity(self):
        with pytest.raises(ExpressionEvalError):
            evaluate("rand(1)")
        with pytest.raises(ExpressionEvalError):
            evaluate("sin(1, 2)")

    def test_function_argument_type(self):
        with pytest.raises(ExpressionEvalError, match="numeric argument"):
            evaluate("sin('a')")

    def test_division_by_zero(self):
        with pytest.raises(ExpressionEvalError, match="division by zero"):
            evaluate("1 / (active_requests - 1)", active_requests=1)

    def test_type_error(self):
        with pytest.raises(ExpressionEvalError):
            evaluate("CLOSE - 1")

    def test_huge_power_overflows(self):
        with pytest.raises(ExpressionEvalError, match="overflow"):
            evaluate("9 ** 9 ** 9")

    def test_power_domain_error(self):
        with pytest.raises(ExpressionEvalError, match="math domain error"):
            evaluate("(-8) ** 0.5")

    def test_power_of_string(self):
        with pytest.raises(ExpressionEvalError, match="type error"):
            evaluate("CLOSE ** 2")

    def test_evaluate_number_rejects_non_numbers(self):
        expr = compile_expression("true")
        with pytest.raises(ExpressionEvalError, match="did not return a number"):
            expr.evaluate_number(EvaluationContext(uptime=0, active_requests=0))

    def test_eval_error_maps_to_server_error(self):
        with pytest.raises(ExpressionEvalError) as exc_info:
            evaluate("nope")
        assert exc_info.value.status_code == 500
