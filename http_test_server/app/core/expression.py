"""Expression evaluator for latency and error injection.

Expressions are a restricted subset of Python expression syntax parsed with
the ast module. They are compiled once when the server is configured and then
evaluated for every request against a snapshot of live server state.

The C-like operators ``&&``, ``||``, ``!`` and ``c ? a : b`` are accepted as
well and rewritten to ``and``, ``or``, ``not`` and ``a if c else b`` before
parsing. ``**`` is computed in floating point.

The parser operates in two phases:
1. Compile time: reject forbidden constructs and calls to unknown functions
2. Evaluation: walk the validated AST against an EvaluationContext

Names available to expressions:
- ``active_requests``: requests currently inside the evaluating component
- ``t``: whole seconds since the server started
- ``pi``: the constant pi
- ``CLOSE``: the string "CLOSE", so ``CLOSE`` and ``'CLOSE'`` are equivalent
- ``true``/``false`` (and ``True``/``False``): boolean literals

Functions: ``rand()`` returns a uniform number in [0, 1), ``sin(x)`` the sine
of a numeric argument.

Example:
    expr = compile_expression("rand() < 0.1 ? 500 : false")
    expr.evaluate(EvaluationContext(uptime=12.5, active_requests=3))
"""

import ast
import math
import operator
import random
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, List, Tuple, Union

from http_test_server.app.exceptions import ExpressionCompileError, ExpressionEvalError

Value = Union[bool, int, float, str]


@dataclass(frozen=True)
class EvaluationContext:
    """Read-only snapshot of server state for a single evaluation.

    Attributes:
        uptime: Seconds elapsed since the server started
        active_requests: Requests currently in flight in the evaluating component
    """

    uptime: float
    active_requests: int


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _rand(*args: Any) -> float:
    if args:
        raise ExpressionEvalError(f"rand() expects no arguments, got {len(args)}")
    return random.random()


def _power(base: Any, exponent: Any) -> float:
    # Computed as floats so oversized powers overflow.
    if not (_is_number(base) and _is_number(exponent)):
        raise TypeError("unsupported operand types for **")
    return math.pow(base, exponent)


def _sin(*args: Any) -> float:
    if len(args) != 1:
        raise ExpressionEvalError("sin() expects one argument")
    if not _is_number(args[0]):
        raise ExpressionEvalError(
            f"sin() expects a numeric argument, got {type(args[0]).__name__}"
        )
    return math.sin(args[0])


FUNCTIONS: Dict[str, Callable[..., Value]] = {
    "rand": _rand,
    "sin": _sin,
}

_CONSTANTS: Dict[str, bool] = {
    "true": True,
    "false": False,
    "True": True,
    "False": False,
}

_COMPARISON_OPS: Dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
}

_BINARY_OPS: Dict[type, Callable[[Any, Any], Any]] = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: _power,
}

_UNARY_OPS: Dict[type, Callable[[Any], Any]] = {
    ast.Not: operator.not_,
    ast.USub: operator.neg,
    ast.UAdd: operator.pos,
}


def _variables(context: EvaluationContext) -> Dict[str, Value]:
    return {
        "active_requests": context.active_requests,
        "t": int(context.uptime),
        "pi": math.pi,
        "CLOSE": "CLOSE",
    }


class _ExpressionValidator(ast.NodeVisitor):
    """AST visitor that accepts only the supported expression constructs.

    Anything without an explicit visit method is rejected.
    """

    def __init__(self) -> None:
        self.errors: List[str] = []
        self.names: set = set()
        self.functions: set = set()

    def generic_visit(self, node: ast.AST) -> None:
        self.errors.append(f"forbidden construct: {type(node).__name__}")

    def visit_Expression(self, node: ast.Expression) -> None:
        self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> None:
        if not isinstance(node.value, (bool, int, float, str)):
            self.errors.append(f"forbidden constant type: {type(node.value).__name__}")

    def visit_Name(self, node: ast.Name) -> None:
        if node.id not in _CONSTANTS:
            self.names.add(node.id)

    def visit_BinOp(self, node: ast.BinOp) -> None:
        if type(node.op) not in _BINARY_OPS:
            self.errors.append(f"forbidden binary operator: {type(node.op).__name__}")
        self.visit(node.left)
        self.visit(node.right)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> None:
        if type(node.op) not in _UNARY_OPS:
            self.errors.append(f"forbidden unary operator: {type(node.op).__name__}")
        self.visit(node.operand)

    def visit_BoolOp(self, node: ast.BoolOp) -> None:
        for value in node.values:
            self.visit(value)

    def visit_Compare(self, node: ast.Compare) -> None:
        for op in node.ops:
            if type(op) not in _COMPARISON_OPS:
                self.errors.append(f"forbidden comparison operator: {type(op).__name__}")
        self.visit(node.left)
        for comparator in node.comparators:
            self.visit(comparator)

    def visit_IfExp(self, node: ast.IfExp) -> None:
        self.visit(node.test)
        self.visit(node.body)
        self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> None:
        if not isinstance(node.func, ast.Name):
            self.errors.append("only plain function calls are allowed")
            return
        if node.func.id not in FUNCTIONS:
            self.errors.append(f"unknown function: {node.func.id}")
        if node.keywords:
            self.errors.append(f"{node.func.id}() does not accept keyword arguments")
        self.functions.add(node.func.id)
        for arg in node.args:
            self.visit(arg)


class _ExpressionEvaluator(ast.NodeVisitor):
    """AST visitor that evaluates a validated expression.

    A new evaluator is created for every evaluation, so a compiled expression
    can be evaluated from many requests at once.
    """

    def __init__(self, variables: Dict[str, Value]) -> None:
        self._variables = variables

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        if node.id in _CONSTANTS:
            return _CONSTANTS[node.id]
        try:
            return self._variables[node.id]
        except KeyError:
            raise ExpressionEvalError(f"unknown variable name: {node.id}") from None

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        op_name = type(node.op).__name__
        try:
            return _BINARY_OPS[type(node.op)](left, right)
        except ZeroDivisionError as e:
            raise ExpressionEvalError(f"division by zero in {op_name} operation") from e
        except OverflowError as e:
            raise ExpressionEvalError(f"numeric overflow in {op_name} operation") from e
        except ValueError as e:
            raise ExpressionEvalError(f"math domain error in {op_name} operation") from e
        except TypeError as e:
            msg = (
                f"type error in {op_name}: cannot apply to "
                f"{type(left).__name__} and {type(right).__name__}"
            )
            raise ExpressionEvalError(msg) from e

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        try:
            return _UNARY_OPS[type(node.op)](operand)
        except TypeError as e:
            msg = f"type error in unary {type(node.op).__name__}: cannot apply to {type(operand).__name__}"
            raise ExpressionEvalError(msg) from e

    def visit_BoolOp(self, node: ast.BoolOp) -> Any:
        result = None
        for value in node.values:
            result = self.visit(value)
            if isinstance(node.op, ast.And) and not result:
                return result
            if isinstance(node.op, ast.Or) and result:
                return result
        return result

    def visit_Compare(self, node: ast.Compare) -> Any:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators):
            right = self.visit(comparator)
            try:
                if not _COMPARISON_OPS[type(op)](left, right):
                    return False
            except TypeError as e:
                msg = (
                    f"type error in comparison ({type(op).__name__}): cannot compare "
                    f"{type(left).__name__} and {type(right).__name__}"
                )
                raise ExpressionEvalError(msg) from e
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if self.visit(node.test):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def visit_Call(self, node: ast.Call) -> Any:
        args = [self.visit(arg) for arg in node.args]
        return FUNCTIONS[node.func.id](*args)


class Expression:
    """A compiled expression.

    Immutable after compilation; ``evaluate`` keeps no state on the instance.
    """

    def __init__(
        self,
        text: str,
        tree: ast.Expression,
        variables: FrozenSet[str],
        functions: FrozenSet[str],
    ) -> None:
        self._text = text
        self._tree = tree
        self._variables = variables
        self._functions = functions

    @property
    def text(self) -> str:
        """Return the original expression string."""
        return self._text

    @property
    def variables(self) -> FrozenSet[str]:
        """Names the expression reads; resolved when it is evaluated."""
        return self._variables

    @property
    def functions(self) -> FrozenSet[str]:
        return self._functions

    def evaluate(self, context: EvaluationContext) -> Value:
        """Evaluate the expression against a snapshot of server state.

        Raises:
            ExpressionEvalError: If a variable is unknown, a function gets
                the wrong arguments, an operation fails, or the result is
                not a number, boolean or string
        """
        result = _ExpressionEvaluator(_variables(context)).visit(self._tree)
        if not isinstance(result, (bool, int, float, str)):
            raise ExpressionEvalError(
                f"expression did not return an expected type, returned: {type(result).__name__}"
            )
        return result

    def evaluate_number(self, context: EvaluationContext) -> float:
        """Evaluate the expression and require a numeric result."""
        result = self.evaluate(context)
        if not _is_number(result):
            raise ExpressionEvalError(
                f"expression {self._text!r} did not return a number, returned: {type(result).__name__}"
            )
        return float(result)

    def __repr__(self) -> str:
        return f"Expression({self._text!r})"


# Operators written in the C-like style (``&&``, ``||``, ``!``, ``c ? a : b``)
# are rewritten into their Python spelling before parsing.
_STRING_LITERAL = re.compile(r"""'(?:[^'\\]|\\.)*'|"(?:[^"\\]|\\.)*\"""")
_LEADING_OPERAND = re.compile(r"\s*(?:[A-Za-z_]\w*|(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)")
_LOGICAL_OPERATORS = {"&&": " and ", "||": " or "}

Token = Tuple[str, str]


def _tokenize(text: str) -> List[Token]:
    """Split text into string literals, brackets, ``?``, ``:``, ``!`` and runs of other source."""
    tokens: List[Token] = []
    run: List[str] = []

    def flush() -> None:
        if run:
            tokens.append(("text", "".join(run)))
            run.clear()

    i = 0
    while i < len(text):
        char = text[i]
        pair = text[i:i + 2]
        if char in "'\"":
            match = _STRING_LITERAL.match(text, i)
            if match:
                flush()
                tokens.append(("atom", match.group()))
                i = match.end()
                continue
            run.append(char)
        elif pair in _LOGICAL_OPERATORS:
            run.append(_LOGICAL_OPERATORS[pair])
            i += 2
            continue
        elif pair == "!=":
            run.append(pair)
            i += 2
            continue
        elif char in "()?:!,":
            flush()
            tokens.append((char, char))
        else:
            run.append(char)
        i += 1
    flush()
    return tokens


def _group(tokens: List[Token], pos: int, nested: bool) -> Tuple[List[Token], int, bool]:
    items: List[Token] = []
    while pos < len(tokens):
        kind, value = tokens[pos]
        pos += 1
        if kind == "(":
            inner, pos, closed = _group(tokens, pos, True)
            items.append(("atom", "(" + _convert(inner) + (")" if closed else "")))
        elif kind == ")" and nested:
            return items, pos, True
        else:
            items.append((kind, value))
    return items, pos, False


def _take_operand(items: List[Token], pos: int) -> Tuple[str, int, List[Token]]:
    # Returns the operand of a prefix ``!``, the next position and any leftover text.
    if pos >= len(items):
        return "", pos, []
    kind, value = items[pos]
    if kind == "!":
        operand, pos, rest = _take_operand(items, pos + 1)
        return f"(not {operand})", pos, rest
    if kind == "atom":
        return value, pos + 1, []
    if kind == "text" and not value.strip():
        return _take_operand(items, pos + 1)
    if kind == "text":
        match = _LEADING_OPERAND.match(value)
        if match:
            operand, remainder = match.group(), value[match.end():]
            pos += 1
            call = pos < len(items) and items[pos][0] == "atom" and items[pos][1].startswith("(")
            if not remainder and call:
                operand += items[pos][1]
                pos += 1
            return operand, pos, [("text", remainder)] if remainder else []
    return "", pos, []


def _apply_not(items: List[Token]) -> List[Token]:
    result: List[Token] = []
    pos = 0
    while pos < len(items):
        kind, value = items[pos]
        if kind != "!":
            result.append((kind, value))
            pos += 1
            continue
        operand, pos, rest = _take_operand(items, pos + 1)
        result.append(("atom", f"(not {operand})"))
        result.extend(rest)
    return result


def _convert_conditional(items: List[Token]) -> str:
    items = _apply_not(items)
    question = next((i for i, (kind, _) in enumerate(items) if kind == "?"), None)
    if question is not None:
        depth = 0
        for colon in range(question + 1, len(items)):
            kind = items[colon][0]
            if kind == "?":
                depth += 1
            elif kind == ":":
                if depth == 0:
                    test = _convert_conditional(items[:question])
                    body = _convert_conditional(items[question + 1:colon])
                    orelse = _convert_conditional(items[colon + 1:])
                    return f"({body.strip()}) if ({test.strip()}) else ({orelse.strip()})"
                depth -= 1
    return "".join(value for _, value in items)


def _convert(items: List[Token]) -> str:
    segments: List[List[Token]] = [[]]
    for item in items:
        if item[0] == ",":
            segments.append([])
        else:
            segments[-1].append(item)
    return ",".join(_convert_conditional(segment) for segment in segments)


def _to_python(text: str) -> str:
    """Rewrite ``&&``, ``||``, ``!`` and ``c ? a : b`` into Python operators.

    Text inside string literals is left untouched, and expressions already
    written with ``and``/``or``/``not``/``if``-``else`` pass through unchanged.
    A ``?`` without a matching ``:`` is kept as is and fails to parse.

    Example:
        >>> _to_python("rand() < 0.1 ? 500 : false")
        '(500) if (rand() < 0.1) else (false)'
    """
    items, _, _ = _group(_tokenize(text), 0, False)
    return _convert(items)


def compile_expression(text: str) -> Expression:
    """Parse and validate an expression.

    Raises:
        ExpressionCompileError: If the text is not valid syntax, uses a
            forbidden construct, or calls an unknown function
    """
    try:
        tree = ast.parse(_to_python(text).strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionCompileError(text, f"invalid syntax: {e.msg}") from e

    validator = _ExpressionValidator()
    validator.visit(tree)
    if validator.errors:
        raise ExpressionCompileError(text, "; ".join(validator.errors))

    return Expression(
        text,
        tree,
        frozenset(validator.names),
        frozenset(validator.functions),
    )
