"""Core utilities for the test server."""

from http_test_server.app.core.config import Settings, load_settings
from http_test_server.app.core.expression import EvaluationContext, Expression, compile_expression
from http_test_server.app.core.logging import get_logger, setup_logging
from http_test_server.app.core.token_bucket import TokenBucket

__all__ = [
    "Settings",
    "load_settings",
    "EvaluationContext",
    "Expression",
    "compile_expression",
    "get_logger",
    "setup_logging",
    "TokenBucket",
]
