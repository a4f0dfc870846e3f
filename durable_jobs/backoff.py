"""Retry backoff and terminal-failure strategies."""

from datetime import datetime, timedelta
from typing import Optional

from durable_jobs.config import DurableJobsConfig
from durable_jobs.models import JobStatus

# 2**32 * base is far beyond any sane cap
_MAX_EXPONENT = 32


class BackoffPolicy:
    """Capped exponential backoff: base * 2^(attempts-1), never above cap."""

    def __init__(self, base_ms: int = 5000, cap_ms: int = 300000):
        if base_ms < 0 or cap_ms < 0:
            raise ValueError("Backoff base and cap must be non-negative")
        self.base_ms = base_ms
        self.cap_ms = cap_ms

    def delay_ms(self, attempts: int) -> int:
        """
        Calculate the delay before the next attempt.

        Args:
            attempts: Attempts made so far (1-indexed)

        Returns:
            Delay in milliseconds
        """
        exponent = min(max(0, attempts - 1), _MAX_EXPONENT)
        return min(self.base_ms * (2**exponent), self.cap_ms)

    def delay(self, attempts: int) -> timedelta:
        return timedelta(milliseconds=self.delay_ms(attempts))


class FailureOutcome:
    """How a failed job row should be rewritten."""

    def __init__(
        self,
        status: JobStatus,
        scheduled_at: Optional[datetime],
        reset_attempts: bool = False,
        terminal: bool = False,
    ):
        self.status = status
        # None leaves the stored schedule untouched
        self.scheduled_at = scheduled_at
        self.reset_attempts = reset_attempts
        self.terminal = terminal

    def __repr__(self) -> str:
        return (
            f"FailureOutcome(status={self.status.value}, "
            f"scheduled_at={self.scheduled_at}, reset_attempts={self.reset_attempts})"
        )


class TerminalFailureStrategy:
    """Decides what happens to a job once it has used all of its attempts."""

    name = "abstract"

    def resolve(self, now: datetime) -> FailureOutcome:
        raise NotImplementedError


class HardErrorStrategy(TerminalFailureStrategy):
    """Park the job in the error state until someone replays it."""

    name = "error"

    def resolve(self, now: datetime) -> FailureOutcome:
        return FailureOutcome(JobStatus.ERROR, scheduled_at=None, terminal=True)


class LongDelayRequeueStrategy(TerminalFailureStrategy):
    """Requeue with a fresh attempt budget far in the future."""

    name = "requeue"

    def __init__(self, delay: timedelta = timedelta(hours=24)):
        if delay <= timedelta(0):
            raise ValueError("Requeue delay must be positive")
        self.delay = delay

    def resolve(self, now: datetime) -> FailureOutcome:
        return FailureOutcome(
            JobStatus.QUEUED,
            scheduled_at=now + self.delay,
            reset_attempts=True,
            terminal=True,
        )


def terminal_strategy_from_config(config: DurableJobsConfig) -> TerminalFailureStrategy:
    """Build the terminal strategy named in the config."""
    if config.terminal_strategy == LongDelayRequeueStrategy.name:
        return LongDelayRequeueStrategy(config.requeue_delay)
    return HardErrorStrategy()
