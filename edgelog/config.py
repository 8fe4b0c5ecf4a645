"""
Configuration for the EdgeLog shipper.

All values come from the environment. Numeric settings fall back to their
defaults when missing or unparseable; the collector endpoint has no default
and is checked each time the actor needs it.
"""

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass

DEFAULT_BATCH_INTERVAL_MS = 20_000
DEFAULT_BATCH_MAX_RECORDS = 200
DEFAULT_BACKOFF_BASE_MS = 2_000
DEFAULT_BACKOFF_MAX_MS = 60_000

ENV_ENDPOINT = "EDGELOG_ENDPOINT"
ENV_BATCH_MS = "EDGELOG_BATCH_MS"
ENV_BATCH_MAX_RECORDS = "EDGELOG_BATCH_MAX_RECORDS"
ENV_BACKOFF_BASE_MS = "EDGELOG_BACKOFF_BASE_MS"
ENV_BACKOFF_MAX_MS = "EDGELOG_BACKOFF_MAX_MS"

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class ConfigurationError(ValueError):
    """Raised when the shipper cannot run with the current settings."""


def parse_int(value: str | None, default: int) -> int:
    """
    Parse the leading integer of an environment value.

    "150ms" parses as 150; anything without a leading integer, and any
    value below 1, yields the default.
    """
    if not value:
        return default
    match = _LEADING_INT.match(value)
    if not match:
        return default
    parsed = int(match.group(1))
    return parsed if parsed > 0 else default


@dataclass
class ShipperConfig:
    """Settings for one log actor."""

    endpoint: str = ""
    batch_interval_ms: int = DEFAULT_BATCH_INTERVAL_MS
    batch_max_records: int = DEFAULT_BATCH_MAX_RECORDS
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    backoff_max_ms: int = DEFAULT_BACKOFF_MAX_MS

    def __post_init__(self):
        self.endpoint = (self.endpoint or "").strip()

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ShipperConfig":
        """
        Build a config from environment variables.

        Environment variables:
            EDGELOG_ENDPOINT: Collector URL (required before the first flush)
            EDGELOG_BATCH_MS: Batch interval in milliseconds
            EDGELOG_BATCH_MAX_RECORDS: Records that trigger an immediate flush
            EDGELOG_BACKOFF_BASE_MS: First backoff window in milliseconds
            EDGELOG_BACKOFF_MAX_MS: Backoff ceiling in milliseconds
        """
        env = os.environ if environ is None else environ
        return cls(
            endpoint=env.get(ENV_ENDPOINT, ""),
            batch_interval_ms=parse_int(env.get(ENV_BATCH_MS), DEFAULT_BATCH_INTERVAL_MS),
            batch_max_records=parse_int(env.get(ENV_BATCH_MAX_RECORDS), DEFAULT_BATCH_MAX_RECORDS),
            backoff_base_ms=parse_int(env.get(ENV_BACKOFF_BASE_MS), DEFAULT_BACKOFF_BASE_MS),
            backoff_max_ms=parse_int(env.get(ENV_BACKOFF_MAX_MS), DEFAULT_BACKOFF_MAX_MS),
        )

    def require_endpoint(self) -> str:
        """Return the collector endpoint or raise ConfigurationError."""
        if not self.endpoint:
            raise ConfigurationError(f"{ENV_ENDPOINT} is not set")
        return self.endpoint
