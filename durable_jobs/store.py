"""Database store layer for durable jobs."""

import asyncio
import json
from datetime import datetime
from typing import Any, Callable, Optional, Sequence
from uuid import UUID

import asyncpg

from durable_jobs.errors import JobNotFoundError
from durable_jobs.models import Job, JobStatus

# undefined_table, undefined_column
MISSING_RELATION_SQLSTATES = frozenset({"42P01", "42703"})

# Errors that come from talking to the database rather than from our own code
STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def is_missing_relation_error(error: BaseException, table: Optional[str] = None) -> bool:
    """Return True when the error means the jobs table (or a column) does not exist."""
    if error is None:
        return False
    if getattr(error, "sqlstate", None) in MISSING_RELATION_SQLSTATES:
        return True

    message = str(error)
    if table:
        return (
            f'relation "{table}" does not exist' in message
            or f'missing FROM-clause entry for table "{table}"' in message
        )
    return ("relation" in message and "does not exist" in message) or (
        "missing FROM-clause entry" in message
    )


def is_store_error(error: BaseException) -> bool:
    return isinstance(error, STORE_ERRORS)


def _dump_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class JobStore:
    """Database layer for job operations."""

    def __init__(self, db_pool: asyncpg.Pool, table: str = "durable_jobs"):
        self.db_pool = db_pool
        self.table = table

    @property
    def _t(self) -> str:
        return f'"{self.table}"'

    async def probe(self) -> None:
        """Cheap read that fails when the table is missing."""
        async with self.db_pool.acquire() as conn:
            await conn.fetch(f"SELECT 1 FROM {self._t} WHERE 1 = 0")

    async def current_time(self) -> datetime:
        """The database clock, shared by every worker host."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval("SELECT clock_timestamp()")

    async def upsert_job(
        self,
        id: UUID,
        idempotency_key: str,
        trigger_type: str,
        stage: Optional[str],
        payload: Any,
        context: Any,
        max_attempts: int,
        scheduled_at: datetime,
        last_error: Optional[str],
        now: datetime,
        stale_before: datetime,
    ) -> Optional[Job]:
        """
        Insert a job, or reset the existing row with the same idempotency key.

        A row that currently holds a live lease is left alone; in that case
        nothing is returned.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO {self._t} (
                    id, idempotency_key, trigger_type, stage, status,
                    payload, context, attempts, max_attempts, attempt_budget,
                    scheduled_at, locked_at, lock_owner, last_error, created_at, updated_at
                ) VALUES (
                    $1, $2, $3, $4, $5, $6::jsonb, $7::jsonb, 0, $8, $8, $9,
                    NULL, NULL, $10, $11, $11
                )
                ON CONFLICT (idempotency_key) DO UPDATE SET
                    trigger_type = EXCLUDED.trigger_type,
                    stage = EXCLUDED.stage,
                    status = EXCLUDED.status,
                    payload = EXCLUDED.payload,
                    context = EXCLUDED.context,
                    max_attempts = {self._t}.attempts + EXCLUDED.max_attempts,
                    attempt_budget = EXCLUDED.attempt_budget,
                    scheduled_at = EXCLUDED.scheduled_at,
                    locked_at = NULL,
                    lock_owner = NULL,
                    last_error = EXCLUDED.last_error,
                    updated_at = EXCLUDED.updated_at
                WHERE {self._t}.status <> $12
                   OR {self._t}.locked_at IS NULL
                   OR {self._t}.locked_at < $13
                RETURNING *
                """,
                id,
                idempotency_key,
                trigger_type,
                stage,
                JobStatus.QUEUED.value,
                _dump_json(payload if payload is not None else {}),
                _dump_json(context),
                max_attempts,
                scheduled_at,
                last_error,
                now,
                JobStatus.RUNNING.value,
                stale_before,
            )

        return self._row_to_job(row) if row else None

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(f"SELECT * FROM {self._t} WHERE id = $1", job_id)

        if not row:
            raise JobNotFoundError(job_id)

        return self._row_to_job(row)

    async def get_job_by_key(self, idempotency_key: str) -> Optional[Job]:
        """Get a job by idempotency key."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT * FROM {self._t} WHERE idempotency_key = $1", idempotency_key
            )
        return self._row_to_job(row) if row else None

    async def lease_next_job(
        self,
        worker_id: str,
        now: datetime,
        stale_before: datetime,
        exclude_stages: Sequence[str] = (),
    ) -> Optional[Job]:
        """
        Atomically lease the oldest eligible job.

        Uses FOR UPDATE SKIP LOCKED so concurrent callers never receive the
        same row and never wait on each other. Running rows whose lease is
        older than ``stale_before`` are eligible again.
        """
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE {self._t}
                    SET status = $1,
                        attempts = attempts + 1,
                        locked_at = $2,
                        lock_owner = $3,
                        last_error = NULL,
                        updated_at = $2
                    WHERE id = (
                        SELECT id FROM {self._t}
                        WHERE (
                                (status = $4 AND scheduled_at <= $2)
                             OR (status = $1 AND locked_at < $5)
                              )
                          AND (stage IS NULL OR NOT (stage = ANY($6::text[])))
                        ORDER BY scheduled_at ASC, created_at ASC
                        LIMIT 1
                        FOR UPDATE SKIP LOCKED
                    )
                    RETURNING *
                    """,
                    JobStatus.RUNNING.value,
                    now,
                    worker_id,
                    JobStatus.QUEUED.value,
                    stale_before,
                    list(exclude_stages),
                )

        return self._row_to_job(row) if row else None

    async def complete_job(
        self,
        job_id: UUID,
        now: datetime,
        lock_owner: Optional[str] = None,
        locked_at: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Mark a running job as completed.

        With ``lock_owner``/``locked_at`` the update only applies while that
        exact lease is current. Returns None when nothing matched.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE {self._t}
                SET status = $1,
                    locked_at = NULL,
                    lock_owner = NULL,
                    last_error = NULL,
                    updated_at = $2
                WHERE id = $3
                  AND status = $4
                  AND ($5::text IS NULL OR lock_owner = $5)
                  AND ($6::timestamptz IS NULL OR locked_at = $6)
                RETURNING *
                """,
                JobStatus.COMPLETED.value,
                now,
                job_id,
                JobStatus.RUNNING.value,
                lock_owner,
                locked_at,
            )
        return self._row_to_job(row) if row else None

    async def fail_job(
        self,
        job_id: UUID,
        last_error: str,
        now: datetime,
        decide: Callable[[int, int], Any],
        lock_owner: Optional[str] = None,
        locked_at: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Record a failure of a running job in one transaction.

        ``decide(attempts, max_attempts)`` is called with the locked row's
        counters and must return a FailureOutcome. Rows that are not running,
        or whose lease no longer matches ``lock_owner``/``locked_at``, are
        left alone and None is returned.
        """
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                current = await conn.fetchrow(
                    f"""
                    SELECT attempts, max_attempts FROM {self._t}
                    WHERE id = $1
                      AND status = $2
                      AND ($3::text IS NULL OR lock_owner = $3)
                      AND ($4::timestamptz IS NULL OR locked_at = $4)
                    FOR UPDATE
                    """,
                    job_id,
                    JobStatus.RUNNING.value,
                    lock_owner,
                    locked_at,
                )
                if not current:
                    return None

                outcome = decide(current["attempts"] or 0, current["max_attempts"] or 0)

                # a reset restores the budget the caller last asked for
                row = await conn.fetchrow(
                    f"""
                    UPDATE {self._t}
                    SET status = $1,
                        scheduled_at = COALESCE($2::timestamptz, scheduled_at),
                        attempts = CASE WHEN $3::boolean THEN 0 ELSE attempts END,
                        max_attempts = CASE WHEN $3::boolean THEN attempt_budget ELSE max_attempts END,
                        locked_at = NULL,
                        lock_owner = NULL,
                        last_error = $4,
                        updated_at = $5
                    WHERE id = $6
                    RETURNING *
                    """,
                    outcome.status.value,
                    outcome.scheduled_at,
                    outcome.reset_attempts,
                    last_error,
                    now,
                    job_id,
                )

        return self._row_to_job(row) if row else None

    async def list_jobs(
        self,
        status: Optional[str] = None,
        trigger_type: Optional[str] = None,
        stage: Optional[str] = None,
        limit: int = 50,
    ) -> list[Job]:
        """List jobs with optional filters."""
        query = f"SELECT * FROM {self._t} WHERE 1=1"
        params = []
        param_idx = 1

        if status:
            query += f" AND status = ${param_idx}"
            params.append(status)
            param_idx += 1

        if trigger_type:
            query += f" AND trigger_type = ${param_idx}"
            params.append(trigger_type)
            param_idx += 1

        if stage:
            query += f" AND stage = ${param_idx}"
            params.append(stage)
            param_idx += 1

        query += f" ORDER BY created_at DESC LIMIT ${param_idx}"
        params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        """Count jobs per status."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT status, COUNT(*)::int AS count
                FROM {self._t}
                GROUP BY status
                ORDER BY status
                """
            )
        return {row["status"]: int(row["count"]) for row in rows}

    async def list_stuck_jobs(self, stale_before: datetime, limit: int = 10) -> list[Job]:
        """Running jobs whose lease is older than ``stale_before``."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM {self._t}
                WHERE status = $1 AND locked_at < $2
                ORDER BY locked_at ASC
                LIMIT $3
                """,
                JobStatus.RUNNING.value,
                stale_before,
                limit,
            )
        return [self._row_to_job(row) for row in rows]

    async def list_recent_jobs(self, status: JobStatus, limit: int = 10) -> list[Job]:
        """Queued jobs in lease order; finished jobs most recent first."""
        if status == JobStatus.QUEUED:
            order_by = "scheduled_at ASC, created_at ASC"
        else:
            order_by = "updated_at DESC"

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT * FROM {self._t}
                WHERE status = $1
                ORDER BY {order_by}
                LIMIT $2
                """,
                status.value,
                limit,
            )
        return [self._row_to_job(row) for row in rows]

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            idempotency_key=row["idempotency_key"],
            trigger_type=row["trigger_type"],
            stage=row["stage"],
            status=JobStatus(row["status"]),
            payload=_load_json(row["payload"]),
            context=_load_json(row["context"]),
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            attempt_budget=row["attempt_budget"],
            scheduled_at=row["scheduled_at"],
            lock_owner=row["lock_owner"],
            locked_at=row["locked_at"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
