"""Configuration for the durable jobs queue."""

import os
import re
from datetime import timedelta
from typing import Optional

TERMINAL_STRATEGIES = ("error", "requeue")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"Invalid integer in {name}: {raw!r}") from e


class DurableJobsConfig:
    """Configuration object for a durable jobs queue."""

    def __init__(
        self,
        db_dsn: str,
        table_name: str = "durable_jobs",
        lock_timeout_seconds: int = 300,
        availability_ttl_seconds: int = 60,
        backoff_base_ms: int = 5000,
        backoff_cap_ms: int = 300000,
        default_max_attempts: int = 5,
        terminal_strategy: str = "error",
        requeue_delay_seconds: int = 86400,
        max_jobs_per_run: int = 10,
        max_errors_per_run: int = 3,
        breaker_threshold: int = 5,
        cron_secret: Optional[str] = None,
        handlers_module: Optional[str] = None,
    ):
        if not _IDENTIFIER_RE.match(table_name or ""):
            raise ValueError(f"Invalid table name: {table_name!r}")
        if terminal_strategy not in TERMINAL_STRATEGIES:
            raise ValueError(
                f"Unknown terminal strategy {terminal_strategy!r}, "
                f"expected one of {', '.join(TERMINAL_STRATEGIES)}"
            )

        self.db_dsn = db_dsn
        self.table_name = table_name
        self.lock_timeout_seconds = lock_timeout_seconds
        self.availability_ttl_seconds = availability_ttl_seconds
        self.backoff_base_ms = backoff_base_ms
        self.backoff_cap_ms = backoff_cap_ms
        self.default_max_attempts = default_max_attempts
        self.terminal_strategy = terminal_strategy
        self.requeue_delay_seconds = requeue_delay_seconds
        self.max_jobs_per_run = max_jobs_per_run
        self.max_errors_per_run = max_errors_per_run
        self.breaker_threshold = breaker_threshold
        self.cron_secret = cron_secret
        self.handlers_module = handlers_module

    @classmethod
    def from_env(cls) -> "DurableJobsConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("DURABLE_JOBS_DB_DSN")
        if not db_dsn:
            raise ValueError("DURABLE_JOBS_DB_DSN environment variable is required")

        terminal_strategy = (
            os.getenv("DURABLE_JOBS_TERMINAL_STRATEGY", "error").strip().lower()
        )
        if terminal_strategy not in TERMINAL_STRATEGIES:
            raise ValueError(
                f"Invalid DURABLE_JOBS_TERMINAL_STRATEGY: {terminal_strategy!r}"
            )

        return cls(
            db_dsn=db_dsn,
            table_name=os.getenv("DURABLE_JOBS_TABLE", "durable_jobs"),
            lock_timeout_seconds=_int_from_env(
                "DURABLE_JOBS_LOCK_TIMEOUT_SECONDS", 300
            ),
            availability_ttl_seconds=_int_from_env(
                "DURABLE_JOBS_AVAILABILITY_TTL_SECONDS", 60
            ),
            backoff_base_ms=_int_from_env("DURABLE_JOBS_BACKOFF_BASE_MS", 5000),
            backoff_cap_ms=_int_from_env("DURABLE_JOBS_BACKOFF_CAP_MS", 300000),
            default_max_attempts=_int_from_env("DURABLE_JOBS_DEFAULT_MAX_ATTEMPTS", 5),
            terminal_strategy=terminal_strategy,
            requeue_delay_seconds=_int_from_env(
                "DURABLE_JOBS_REQUEUE_DELAY_SECONDS", 86400
            ),
            max_jobs_per_run=_int_from_env("DURABLE_JOBS_MAX_JOBS_PER_RUN", 10),
            max_errors_per_run=_int_from_env("DURABLE_JOBS_MAX_ERRORS_PER_RUN", 3),
            breaker_threshold=_int_from_env("DURABLE_JOBS_BREAKER_THRESHOLD", 5),
            cron_secret=os.getenv("DURABLE_JOBS_CRON_SECRET") or None,
            handlers_module=os.getenv("DURABLE_JOBS_HANDLERS_MODULE") or None,
        )

    @property
    def lock_timeout(self) -> timedelta:
        return timedelta(seconds=self.lock_timeout_seconds)

    @property
    def requeue_delay(self) -> timedelta:
        return timedelta(seconds=self.requeue_delay_seconds)
