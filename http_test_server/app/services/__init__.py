"""Services package for the test server.

This package provides:
- Statistics aggregation shared by all request handlers
- The periodic statistics log
- Summary and parameters files written around a run
"""

from http_test_server.app.services.statistics import Statistics, StatisticsAggregator
from http_test_server.app.services.ticker import StatisticsTicker

__all__ = [
    "Statistics",
    "StatisticsAggregator",
    "StatisticsTicker",
]
