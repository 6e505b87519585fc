"""ASGI middleware making up the request pipeline."""

from http_test_server.app.middleware.access_log import AccessLogMiddleware
from http_test_server.app.middleware.compression import GzipDecompressionMiddleware
from http_test_server.app.middleware.error import ErrorInjectionMiddleware
from http_test_server.app.middleware.latency import LatencyMiddleware, create_latency_model
from http_test_server.app.middleware.rate_limit import RateLimitMiddleware, create_rate_limiter
from http_test_server.app.middleware.request_id import RequestIdMiddleware
from http_test_server.app.middleware.statistics import StatisticsMiddleware

__all__ = [
    "AccessLogMiddleware",
    "ErrorInjectionMiddleware",
    "GzipDecompressionMiddleware",
    "LatencyMiddleware",
    "RateLimitMiddleware",
    "RequestIdMiddleware",
    "StatisticsMiddleware",
    "create_latency_model",
    "create_rate_limiter",
]
