"""High-level queue API: enqueue, lease, complete, fail."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional, Union
from uuid import UUID, uuid4

import asyncpg
from dateutil import parser as date_parser

from durable_jobs.availability import AvailabilityProbe, CircuitBreaker, TTLCache
from durable_jobs.backoff import (
    BackoffPolicy,
    FailureOutcome,
    TerminalFailureStrategy,
    terminal_strategy_from_config,
)
from durable_jobs.config import DurableJobsConfig
from durable_jobs.errors import StoreUnavailableError, TransientStoreError
from durable_jobs.models import Job, JobStatus
from durable_jobs.store import JobStore, is_missing_relation_error, is_store_error

MAX_ERROR_LENGTH = 500


def coerce_datetime(value: Any, fallback: Optional[datetime]) -> Optional[datetime]:
    """
    Interpret ``value`` as a point in time.

    Accepts datetimes, epoch seconds and ISO-8601 strings. Naive values are
    taken as UTC. Anything unparseable gives ``fallback``.
    """
    parsed = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            parsed = None
    elif isinstance(value, str) and value.strip():
        try:
            parsed = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            parsed = None

    if parsed is None:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_error(error: Any, max_length: int = MAX_ERROR_LENGTH) -> str:
    """Render a failure as bounded text for the last_error column."""
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
    elif error is None:
        message = "unknown error"
    else:
        message = str(error)

    if len(message) > max_length:
        return f"{message[:max_length]}…"
    return message


def _coerce_job_id(job_id: Union[UUID, str, None]) -> Optional[UUID]:
    if isinstance(job_id, UUID):
        return job_id
    if not job_id:
        return None
    try:
        return UUID(str(job_id))
    except ValueError:
        return None


def _coerce_delay(delay: Union[timedelta, int, float, None]) -> Optional[timedelta]:
    """A timedelta, or a number of milliseconds."""
    if delay is None or isinstance(delay, bool):
        return None
    if isinstance(delay, timedelta):
        return delay
    if isinstance(delay, (int, float)):
        return timedelta(milliseconds=delay)
    raise TypeError(f"delay must be a timedelta or milliseconds, got {type(delay).__name__}")


class JobQueue:
    """
    Durable job queue over a single PostgreSQL table.

    One instance per table. The idempotency key schema is chosen by the
    caller (see ``durable_jobs.keys``); what happens after the last attempt
    is decided by the injected terminal-failure strategy.
    """

    def __init__(
        self,
        config: DurableJobsConfig,
        db_pool: asyncpg.Pool,
        terminal_strategy: Optional[TerminalFailureStrategy] = None,
        backoff: Optional[BackoffPolicy] = None,
        availability_cache: Optional[TTLCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.store = JobStore(db_pool, config.table_name)
        self.backoff = backoff or BackoffPolicy(config.backoff_base_ms, config.backoff_cap_ms)
        self.terminal_strategy = terminal_strategy or terminal_strategy_from_config(config)
        # None: read the time from the database so every host agrees
        self.clock = clock
        self.breaker = CircuitBreaker(config.breaker_threshold, self.logger)
        self.probe = AvailabilityProbe(
            self.store,
            availability_cache or TTLCache(config.availability_ttl_seconds),
            self.breaker,
            self.logger,
        )

    @property
    def lock_timeout(self) -> timedelta:
        return self.config.lock_timeout

    async def available(self, force: bool = False) -> bool:
        """Whether the jobs table exists (cached)."""
        return await self.probe.available(force=force)

    async def now(self, operation: str = "now") -> datetime:
        """Current time from the injected clock, or from the database."""
        if self.clock is not None:
            return self.clock()
        return await self._call(operation, self.store.current_time)

    async def enqueue(
        self,
        idempotency_key: str,
        trigger_type: str,
        payload: Any = None,
        *,
        stage: Optional[str] = None,
        context: Any = None,
        scheduled_at: Any = None,
        max_attempts: Optional[int] = None,
        initial_error: Any = None,
    ) -> Optional[Job]:
        """
        Create the job for ``idempotency_key``, or reset the existing one.

        Args:
            idempotency_key: Unique key of the logical unit of work
            trigger_type: Handler name
            payload: JSON-serializable handler input
            stage: Optional workflow stage
            context: Optional JSON-serializable extra data
            scheduled_at: Earliest run time (datetime, epoch seconds or ISO string)
            max_attempts: Attempts before the terminal strategy applies
            initial_error: Known failure of a first attempt; delays the job by
                one backoff step

        Returns:
            The stored job, or None when the jobs table is unavailable.
            If the existing row is currently leased, it is returned unchanged.
        """
        if not idempotency_key:
            raise ValueError("idempotency_key is required")
        if not trigger_type:
            raise ValueError("trigger_type is required")

        if not await self.available():
            self.logger.warning(
                f"Jobs table {self.store.table} not available, skipping enqueue of {idempotency_key}"
            )
            return None

        now = await self.now("enqueue")
        run_at = coerce_datetime(scheduled_at, now) if scheduled_at is not None else now
        last_error = None
        if initial_error is not None:
            last_error = format_error(initial_error)
            run_at = now + self.backoff.delay(1)

        if (
            not isinstance(max_attempts, int)
            or isinstance(max_attempts, bool)
            or max_attempts <= 0
        ):
            max_attempts = self.config.default_max_attempts

        try:
            job = await self._call(
                "enqueue",
                self.store.upsert_job,
                id=uuid4(),
                idempotency_key=idempotency_key,
                trigger_type=trigger_type,
                stage=stage,
                payload=payload,
                context=context,
                max_attempts=max_attempts,
                scheduled_at=run_at,
                last_error=last_error,
                now=now,
                stale_before=now - self.lock_timeout,
            )
            if job is None:
                current = await self._call(
                    "enqueue", self.store.get_job_by_key, idempotency_key
                )
                self.logger.info(
                    f"Job {idempotency_key} is currently leased, enqueue left it untouched"
                )
                return current
        except StoreUnavailableError:
            self.logger.warning(
                f"Jobs table {self.store.table} disappeared, skipping enqueue of {idempotency_key}"
            )
            return None

        self.logger.info(
            f"Enqueued job {job.id} ({trigger_type}, key={idempotency_key}) "
            f"scheduled at {job.scheduled_at}"
        )
        return job

    async def lease(
        self,
        worker_id: Optional[str] = None,
        exclude_stages: Optional[Iterable[str]] = None,
    ) -> Optional[Job]:
        """
        Lease the oldest eligible job for ``worker_id``.

        Never blocks on rows locked by other workers. Jobs whose lease is older
        than the lock timeout are reclaimed.
        """
        if not await self.available():
            self.logger.debug(f"Jobs table {self.store.table} not available, worker idle")
            return None

        worker_id = worker_id or str(uuid4())
        stages = [
            stage.strip()
            for stage in (exclude_stages or [])
            if isinstance(stage, str) and stage.strip()
        ]
        now = await self.now("lease")

        try:
            job = await self._call(
                "lease",
                self.store.lease_next_job,
                worker_id=worker_id,
                now=now,
                stale_before=now - self.lock_timeout,
                exclude_stages=stages,
            )
        except StoreUnavailableError:
            self.logger.warning(f"Jobs table {self.store.table} unavailable while leasing")
            return None

        if job is not None:
            self.logger.info(
                f"Leased job {job.id} ({job.trigger_type}, attempt "
                f"{job.attempts}/{job.max_attempts}) to worker {worker_id}"
            )
        return job

    async def complete(
        self, job_id: Union[UUID, str], leased: Optional[Job] = None
    ) -> Optional[Job]:
        """
        Mark a running job as completed. No-op when unknown or unavailable.

        When ``leased`` is the job as returned by ``lease``, the update only
        applies while that same lease is still held; a job reclaimed by
        another worker in the meantime is left alone.
        """
        job_uuid = _coerce_job_id(job_id)
        if job_uuid is None:
            return None
        if not await self.available():
            return None

        try:
            now = await self.now("complete")
            job = await self._call(
                "complete",
                self.store.complete_job,
                job_uuid,
                now,
                lock_owner=leased.lock_owner if leased else None,
                locked_at=leased.locked_at if leased else None,
            )
        except StoreUnavailableError:
            self.logger.warning(f"Jobs table {self.store.table} unavailable while completing {job_id}")
            return None

        if job is None:
            self.logger.warning(f"Job {job_id} is not running under this lease, nothing to complete")
        else:
            self.logger.info(f"Job {job_id} completed")
        return job

    async def fail(
        self,
        job_id: Union[UUID, str],
        error: Any,
        delay: Union[timedelta, int, float, None] = None,
        scheduled_at: Any = None,
        leased: Optional[Job] = None,
    ) -> Optional[Job]:
        """
        Record a failed attempt of a running job.

        Retries with capped exponential backoff while attempts remain; after
        that the terminal strategy decides.

        Args:
            job_id: Job to fail
            error: Exception or message
            delay: Retry delay override (timedelta or milliseconds)
            scheduled_at: Retry time override; wins over ``delay``
            leased: The job as leased; restricts the update to that lease
        """
        job_uuid = _coerce_job_id(job_id)
        if job_uuid is None:
            return None
        if not await self.available():
            return None

        now = await self.now("fail")
        override_at = coerce_datetime(scheduled_at, None) if scheduled_at is not None else None
        override_delay = _coerce_delay(delay)
        message = format_error(error)
        decisions: list[tuple[FailureOutcome, int]] = []

        def decide(attempts: int, max_attempts: int) -> FailureOutcome:
            if attempts < max_attempts:
                if override_at is not None:
                    next_run = override_at
                elif override_delay is not None:
                    next_run = now + override_delay
                else:
                    next_run = now + self.backoff.delay(attempts)
                outcome = FailureOutcome(JobStatus.QUEUED, scheduled_at=next_run)
            else:
                outcome = self.terminal_strategy.resolve(now)
            decisions.append((outcome, attempts))
            return outcome

        try:
            job = await self._call(
                "fail",
                self.store.fail_job,
                job_uuid,
                message,
                now,
                decide,
                lock_owner=leased.lock_owner if leased else None,
                locked_at=leased.locked_at if leased else None,
            )
        except StoreUnavailableError:
            self.logger.warning(f"Jobs table {self.store.table} unavailable while failing {job_id}")
            return None

        if job is None:
            self.logger.warning(f"Job {job_id} is not running under this lease, nothing to fail")
            return None

        outcome, attempts = decisions[-1]
        if outcome.terminal and job.status == JobStatus.ERROR:
            self.logger.error(
                f"Job {job_id} exhausted its retries after {attempts} attempt(s) "
                f"and is parked in error: {message}"
            )
        elif outcome.terminal:
            self.logger.error(
                f"Job {job_id} exhausted its retries after {attempts} attempt(s), "
                f"requeued for {job.scheduled_at} by {self.terminal_strategy.name} "
                f"strategy: {message}"
            )
        else:
            self.logger.info(
                f"Job {job_id} failed attempt {job.attempts}/{job.max_attempts}, "
                f"retrying at {job.scheduled_at}: {message}"
            )
        return job

    async def get_job(self, job_id: Union[UUID, str]) -> Job:
        """Get a job by ID."""
        return await self._call("get_job", self.store.get_job, UUID(str(job_id)))

    async def list_jobs(
        self,
        *,
        status: Optional[str] = None,
        trigger_type: Optional[str] = None,
        stage: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs with optional filters."""
        return await self._call(
            "list_jobs",
            self.store.list_jobs,
            status=status,
            trigger_type=trigger_type,
            stage=stage,
            limit=limit,
        )

    async def status_summary(self, limit: int = 10) -> dict[str, Any]:
        """Counts per status plus samples of stuck, queued, completed and failed jobs."""
        if not await self.available(force=True):
            return {
                "table_exists": False,
                "table": self.store.table,
                "breaker": self.breaker.snapshot(),
            }

        stale_before = await self.now("status_summary") - self.lock_timeout
        counts = await self._call("status_summary", self.store.count_by_status)
        stuck = await self._call(
            "status_summary", self.store.list_stuck_jobs, stale_before, limit
        )
        recent = {}
        for status in (JobStatus.QUEUED, JobStatus.COMPLETED, JobStatus.ERROR):
            recent[status] = await self._call(
                "status_summary", self.store.list_recent_jobs, status, limit
            )

        summary = {status.value: counts.get(status.value, 0) for status in JobStatus}
        summary["total"] = sum(counts.values())

        return {
            "table_exists": True,
            "table": self.store.table,
            "summary": summary,
            "stuck_jobs": [job.to_dict() for job in stuck],
            "recent_queued": [job.to_dict() for job in recent[JobStatus.QUEUED]],
            "recent_completed": [job.to_dict() for job in recent[JobStatus.COMPLETED]],
            "recent_errors": [job.to_dict() for job in recent[JobStatus.ERROR]],
            "lock_timeout_seconds": int(self.lock_timeout.total_seconds()),
            "breaker": self.breaker.snapshot(),
        }

    async def _call(self, operation: str, func, *args, **kwargs):
        """Run a store call, translating database failures into queue errors."""
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            if is_missing_relation_error(e, self.store.table):
                self.probe.mark_unavailable()
                raise StoreUnavailableError(self.store.table) from e
            if is_store_error(e):
                self.breaker.record_failure(e)
                raise TransientStoreError(operation, e) from e
            raise

        self.breaker.record_success()
        return result
