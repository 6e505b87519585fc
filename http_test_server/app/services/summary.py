"""Summary and parameters files written around a test run."""

import json
from pathlib import Path
from typing import Any, Dict

from http_test_server.app.core.config import (
    LatencyDistribution,
    RateLimitBehavior,
    Settings,
    format_duration,
)
from http_test_server.app.core.logging import get_logger
from http_test_server.app.services.statistics import Statistics

logger = get_logger(__name__)


def remove_summary(path: Path) -> None:
    """Delete a summary left over from a previous run."""
    path.unlink(missing_ok=True)


def write_summary(path: Path, statistics: Statistics) -> None:
    """Write the final statistics snapshot as JSON."""
    path.write_text(json.dumps(statistics.to_dict()))
    logger.info("Wrote activity summary to %s", path)


def run_parameters(settings: Settings) -> Dict[str, Any]:
    """Describe the injected behavior so a run can be reproduced.

    Only the parameters that apply to the selected latency distribution and
    rate limit behavior are included.
    """
    parameters: Dict[str, Any] = {
        "latency_distribution": settings.latency_distribution.value,
    }
    if settings.latency_distribution is LatencyDistribution.NORMAL:
        parameters["latency_distribution_normal_mean"] = format_duration(settings.latency_normal_mean)
        parameters["latency_distribution_normal_standard_deviation"] = format_duration(
            settings.latency_normal_stddev
        )
    else:
        parameters["latency_distribution_expression_mean"] = settings.latency_expression_mean_ms
        parameters["latency_distribution_expression_standard_deviation"] = (
            settings.latency_expression_stddev_ms
        )

    parameters["error_expression"] = settings.error_expression
    parameters["rate_limit_behavior"] = settings.rate_limit_behavior.value
    if settings.rate_limit_behavior is not RateLimitBehavior.NONE:
        parameters["rate_limit_bucket_fill_interval"] = format_duration(
            settings.rate_limit_bucket_fill_interval
        )
        parameters["rate_limit_bucket_capacity"] = settings.rate_limit_bucket_capacity
        parameters["rate_limit_bucket_quantum"] = settings.rate_limit_bucket_quantum
    if settings.rate_limit_behavior is RateLimitBehavior.HARD:
        parameters["rate_limit_hard_status_code"] = settings.rate_limit_hard_status_code
    return parameters


def write_parameters(path: Path, settings: Settings) -> None:
    path.write_text(json.dumps(run_parameters(settings)))
    logger.info("Wrote test parameters to %s", path)
