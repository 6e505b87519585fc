import re
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from http_test_server.app.exceptions import ConfigurationError

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION = re.compile(r"^[+-]?(?:(?:\d+(?:\.\d*)?|\.\d+)(?:ns|us|µs|ms|s|m|h))+$")


def parse_duration(raw: Any) -> Any:
    """Parse unit-suffixed durations such as ``250ms`` or ``1m30s``.

    Plain numbers are seconds. Anything else is handed back unchanged so
    pydantic can try its own timedelta formats (ISO-8601, ``HH:MM:SS``).
    """
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return timedelta(seconds=raw)
    if not isinstance(raw, str):
        return raw

    text = raw.strip()
    if text in ("0", "+0", "-0", ""):
        return timedelta(0)
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass
    if not _DURATION.match(text):
        return raw

    sign = -1.0 if text.startswith("-") else 1.0
    seconds = sum(
        float(value) * _DURATION_UNITS[unit]
        for value, unit in _DURATION_PART.findall(text)
    )
    return timedelta(seconds=sign * seconds)


def format_duration(value: timedelta) -> str:
    """Render a duration the way it is accepted on the command line."""
    return f"{value.total_seconds():g}s"


class RateLimitBehavior(str, Enum):
    """What the rate limiter does with a request once the bucket is empty."""

    NONE = "NONE"  # no rate limit
    HARD = "HARD"  # reject with the configured status code
    QUEUE = "QUEUE"  # wait until a token is available
    CLOSE = "CLOSE"  # drop the connection without a response


class LatencyDistribution(str, Enum):
    NORMAL = "NORMAL"
    EXPRESSION = "EXPRESSION"


class Settings(BaseSettings):
    """Test server settings loaded from environment variables.

    Every field can be set as ``HTTP_TEST_<FIELD>`` in the environment or a
    .env file; the command-line entry point also accepts them as flags.
    Settings are immutable once built.
    """

    address: str = "0.0.0.0:8080"

    # Latency injection
    latency_distribution: LatencyDistribution = LatencyDistribution.NORMAL
    latency_normal_mean: timedelta = timedelta(0)
    latency_normal_stddev: timedelta = timedelta(0)
    latency_expression_mean_ms: str = "0"
    latency_expression_stddev_ms: str = "0"

    # Error injection
    error_expression: str = "false"

    # Rate limiting
    rate_limit_behavior: RateLimitBehavior = RateLimitBehavior.NONE
    rate_limit_bucket_fill_interval: timedelta = timedelta(0)
    rate_limit_bucket_capacity: int = 0
    rate_limit_bucket_quantum: int = 0
    rate_limit_hard_status_code: int = 429

    # Output files
    summary_path: Path = Path("/tmp/http_test_server_summary.json")
    parameters_path: Optional[Path] = None

    # Background statistics log and shutdown
    stats_log_interval: float = 5.0
    shutdown_timeout: float = 30.0

    # Logging settings
    log_level: str = "INFO"
    log_format: str = "text"  # text | structured | json

    model_config = SettingsConfigDict(
        env_prefix="HTTP_TEST_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @field_validator(
        "latency_normal_mean",
        "latency_normal_stddev",
        "rate_limit_bucket_fill_interval",
        mode="before",
    )
    @classmethod
    def decode_duration(cls, v: Any) -> Any:
        return parse_duration(v)

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Validate the address has the form host:port."""
        host, sep, port = v.rpartition(":")
        if not sep or not port.isdigit() or not 0 <= int(port) <= 65535:
            raise ValueError(f"address must be host:port, got {v!r}")
        return v

    @field_validator("rate_limit_hard_status_code")
    @classmethod
    def validate_status_code(cls, v: int) -> int:
        if not 200 <= v <= 599:
            raise ValueError("rate_limit_hard_status_code must be between 200 and 599")
        return v

    @field_validator("stats_log_interval", "shutdown_timeout")
    @classmethod
    def validate_positive_seconds(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("intervals and timeouts must be positive")
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "structured", "json"):
            raise ValueError("log_format must be one of text, structured, json")
        return v

    @model_validator(mode="after")
    def validate_rate_limit_bucket(self) -> "Settings":
        """Bucket parameters are required once a rate limit behavior is chosen."""
        if self.rate_limit_behavior is RateLimitBehavior.NONE:
            return self
        if self.rate_limit_bucket_fill_interval <= timedelta(0):
            raise ValueError(
                "rate_limit_bucket_fill_interval must be > 0 if "
                "rate_limit_behavior is not NONE"
            )
        if self.rate_limit_bucket_capacity <= 0:
            raise ValueError(
                "rate_limit_bucket_capacity must be > 0 if "
                "rate_limit_behavior is not NONE"
            )
        if self.rate_limit_bucket_quantum <= 0:
            raise ValueError(
                "rate_limit_bucket_quantum must be > 0 if "
                "rate_limit_behavior is not NONE"
            )
        return self

    @property
    def host(self) -> str:
        host = self.address.rpartition(":")[0]
        return host.strip("[]") or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.address.rpartition(":")[2])


def load_settings(cli_args: Any = None, **overrides: Any) -> Settings:
    """Build settings from the environment, flags and explicit overrides.

    Args:
        cli_args: ``None`` to skip flag parsing, ``True`` to parse
            ``sys.argv``, or a list of arguments to parse
        **overrides: Field values that take priority over the environment

    Raises:
        ConfigurationError: If any value is missing or invalid
    """
    try:
        if cli_args is None:
            return Settings(**overrides)
        return Settings(
            _cli_parse_args=cli_args,
            _cli_prog_name="http_test_server",
            **overrides,
        )
    except ValidationError as exc:
        reasons = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'settings'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(reasons) from exc
