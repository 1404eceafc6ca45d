"""Runtime configuration for the refresh pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

ENV_PREFIX = "FUND_REFRESH_"

DEFAULT_WATCHLIST_FILE = Path("watchlist.json")
DEFAULT_OUTPUT_FILE = Path("valuation_output.txt")


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Backoff policy of a retry executor. Delays are in seconds."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0


@dataclass(frozen=True, slots=True)
class SchedulerConfig:
    update_interval: float = 60.0
    max_retries: int = 3
    retry_delay: float = 2.0


@dataclass(frozen=True, slots=True)
class Settings:
    watchlist_file: Path = DEFAULT_WATCHLIST_FILE
    output_file: Path = DEFAULT_OUTPUT_FILE
    proxy: str | None = None
    concurrency: int = 5
    log_level: str = "INFO"
    market_timezone: str | None = None
    scheduler: SchedulerConfig = SchedulerConfig()
    retry: RetryConfig = RetryConfig()

    @classmethod
    def from_env(cls, env_file: str | os.PathLike[str] | None = None) -> Settings:
        """Build settings from ``FUND_REFRESH_*`` variables (and a .env file)."""

        load_dotenv(env_file)
        defaults = cls()
        return cls(
            watchlist_file=Path(_env("WATCHLIST_FILE", defaults.watchlist_file)),
            output_file=Path(_env("OUTPUT_FILE", defaults.output_file)),
            proxy=_env("PROXY", None) or None,
            concurrency=_positive_int(_env("CONCURRENCY", defaults.concurrency), "CONCURRENCY"),
            log_level=str(_env("LOG_LEVEL", defaults.log_level)).upper(),
            market_timezone=_env("MARKET_TIMEZONE", None) or None,
            scheduler=SchedulerConfig(
                update_interval=_non_negative_float(
                    _env("INTERVAL_SECONDS", defaults.scheduler.update_interval), "INTERVAL_SECONDS"
                ),
                max_retries=_positive_int(
                    _env("MAX_RETRIES", defaults.scheduler.max_retries), "MAX_RETRIES"
                ),
                retry_delay=_non_negative_float(
                    _env("RETRY_DELAY", defaults.scheduler.retry_delay), "RETRY_DELAY"
                ),
            ),
            retry=RetryConfig(
                max_retries=_non_negative_int(
                    _env("FETCH_MAX_RETRIES", defaults.retry.max_retries), "FETCH_MAX_RETRIES"
                ),
                base_delay=_non_negative_float(
                    _env("FETCH_BASE_DELAY", defaults.retry.base_delay), "FETCH_BASE_DELAY"
                ),
                max_delay=_non_negative_float(
                    _env("FETCH_MAX_DELAY", defaults.retry.max_delay), "FETCH_MAX_DELAY"
                ),
                backoff_multiplier=defaults.retry.backoff_multiplier,
            ),
        )


def _env(name: str, default: Any) -> Any:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _positive_int(value: Any, name: str) -> int:
    parsed = _non_negative_int(value, name)
    if parsed < 1:
        raise ValueError(f"{ENV_PREFIX}{name} must be at least 1.")
    return parsed


def _non_negative_int(value: Any, name: str) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be an integer.") from exc
    if parsed < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative.")
    return parsed


def _non_negative_float(value: Any, name: str) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{ENV_PREFIX}{name} must be a number.") from exc
    if parsed < 0:
        raise ValueError(f"{ENV_PREFIX}{name} must not be negative.")
    return parsed
