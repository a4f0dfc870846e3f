"""Unit tests for store module."""

import json

import asyncpg
import pytest
from unittest.mock import MagicMock
from uuid import uuid4

from durable_jobs.backoff import FailureOutcome
from durable_jobs.errors import JobNotFoundError
from durable_jobs.models import JobStatus
from durable_jobs.store import JobStore, is_missing_relation_error, is_store_error


def test_missing_relation_by_sqlstate():
    error = asyncpg.exceptions.UndefinedTableError('relation "durable_jobs" does not exist')
    assert is_missing_relation_error(error)

    column_error = asyncpg.exceptions.UndefinedColumnError('column "stage" does not exist')
    assert is_missing_relation_error(column_error)


def test_missing_relation_by_message():
    assert is_missing_relation_error(Exception('relation "webhook_jobs" does not exist'))
    assert is_missing_relation_error(
        Exception('relation "webhook_jobs" does not exist'), table="webhook_jobs"
    )
    assert not is_missing_relation_error(
        Exception('relation "other" does not exist'), table="webhook_jobs"
    )


def test_other_errors_are_not_missing_relation():
    assert not is_missing_relation_error(OSError("connection refused"))
    assert not is_missing_relation_error(None)


def test_is_store_error():
    assert is_store_error(OSError("refused"))
    assert is_store_error(asyncpg.exceptions.UndefinedTableError("x"))
    assert not is_store_error(ValueError("bad"))


def test_row_to_job_decodes_json(job_row):
    store = JobStore(MagicMock())
    job = store._row_to_job(job_row(context='{"source": "webhook"}', status="running"))

    assert job.payload == {"customer_id": "cust-1"}
    assert job.context == {"source": "webhook"}
    assert job.status == JobStatus.RUNNING


@pytest.mark.asyncio
async def test_get_job_not_found(fake_pool, fake_conn):
    store = JobStore(fake_pool)
    fake_conn.fetchrow.return_value = None

    with pytest.raises(JobNotFoundError):
        await store.get_job(uuid4())


@pytest.mark.asyncio
async def test_upsert_job_serializes_payload(fake_pool, fake_conn, job_row, clock):
    store = JobStore(fake_pool, "webhook_jobs")
    fake_conn.fetchrow.return_value = job_row()

    await store.upsert_job(
        id=uuid4(),
        idempotency_key="org:evt:booking.created",
        trigger_type="booking.created",
        stage=None,
        payload=None,
        context={"attempt": 1},
        max_attempts=5,
        scheduled_at=clock.now,
        last_error=None,
        now=clock.now,
        stale_before=clock.now,
    )

    query, *params = fake_conn.fetchrow.call_args.args
    assert 'INSERT INTO "webhook_jobs"' in query
    assert "ON CONFLICT (idempotency_key)" in query
    assert params[5] == "{}"
    assert json.loads(params[6]) == {"attempt": 1}
    assert params[11] == "running"


@pytest.mark.asyncio
async def test_upsert_job_returns_none_when_row_is_leased(fake_pool, fake_conn, clock):
    store = JobStore(fake_pool)
    fake_conn.fetchrow.return_value = None

    job = await store.upsert_job(
        uuid4(), "c1:s1", "t", None, {}, None, 5, clock.now, None, clock.now, clock.now
    )
    assert job is None


@pytest.mark.asyncio
async def test_lease_next_job_passes_excluded_stages(fake_pool, fake_conn, clock):
    store = JobStore(fake_pool)

    job = await store.lease_next_job("w1", clock.now, clock.now, exclude_stages=("s3",))

    assert job is None
    query, *params = fake_conn.fetchrow.call_args.args
    assert "FOR UPDATE SKIP LOCKED" in query
    assert params[2] == "w1"
    assert params[5] == ["s3"]
    fake_conn.transaction.assert_called_once()


@pytest.mark.asyncio
async def test_fail_job_applies_decision(fake_pool, fake_conn, job_row, clock):
    store = JobStore(fake_pool)
    job_id = uuid4()
    fake_conn.fetchrow.side_effect = [
        {"attempts": 2, "max_attempts": 5},
        job_row(id=job_id, attempts=2),
    ]
    seen = []

    def decide(attempts, max_attempts):
        seen.append((attempts, max_attempts))
        return FailureOutcome(JobStatus.QUEUED, scheduled_at=clock.now)

    job = await store.fail_job(job_id, "boom", clock.now, decide)

    assert seen == [(2, 5)]
    assert job.id == job_id
    update_params = fake_conn.fetchrow.call_args_list[1].args[1:]
    assert update_params[0] == "queued"
    assert update_params[1] == clock.now
    assert update_params[2] is False
    assert update_params[3] == "boom"


@pytest.mark.asyncio
async def test_fail_job_matches_lease_and_restores_budget(fake_pool, fake_conn, job_row, clock):
    store = JobStore(fake_pool)
    job_id = uuid4()
    fake_conn.fetchrow.side_effect = [
        {"attempts": 5, "max_attempts": 5},
        job_row(id=job_id),
    ]

    def decide(attempts, max_attempts):
        return FailureOutcome(JobStatus.QUEUED, scheduled_at=clock.now, reset_attempts=True)

    await store.fail_job(job_id, "boom", clock.now, decide, lock_owner="w1", locked_at=clock.now)

    select_query, *select_params = fake_conn.fetchrow.call_args_list[0].args
    assert "FOR UPDATE" in select_query
    assert select_params == [job_id, "running", "w1", clock.now]
    update_query, *update_params = fake_conn.fetchrow.call_args_list[1].args
    assert "THEN attempt_budget" in update_query
    assert update_params[2] is True


@pytest.mark.asyncio
async def test_complete_job_only_touches_matching_lease(fake_pool, fake_conn, clock):
    store = JobStore(fake_pool)
    job_id = uuid4()

    job = await store.complete_job(job_id, clock.now, lock_owner="cron", locked_at=clock.now)

    assert job is None
    query, *params = fake_conn.fetchrow.call_args.args
    assert "status = $4" in query
    assert params == ["completed", clock.now, job_id, "running", "cron", clock.now]


@pytest.mark.asyncio
async def test_current_time_reads_database_clock(fake_pool, fake_conn, clock):
    store = JobStore(fake_pool)
    fake_conn.fetchval.return_value = clock.now

    assert await store.current_time() == clock.now
    fake_conn.fetchval.assert_awaited_once_with("SELECT clock_timestamp()")


@pytest.mark.asyncio
async def test_fail_job_missing_row(fake_pool, fake_conn, clock):
    store = JobStore(fake_pool)
    fake_conn.fetchrow.return_value = None
    decide = MagicMock()

    assert await store.fail_job(uuid4(), "boom", clock.now, decide) is None
    decide.assert_not_called()


@pytest.mark.asyncio
async def test_count_by_status(fake_pool, fake_conn):
    store = JobStore(fake_pool)
    fake_conn.fetch.return_value = [
        {"status": "queued", "count": 3},
        {"status": "error", "count": 1},
    ]

    assert await store.count_by_status() == {"queued": 3, "error": 1}


@pytest.mark.asyncio
async def test_list_jobs_builds_filters(fake_pool, fake_conn):
    store = JobStore(fake_pool)

    await store.list_jobs(status="queued", stage="s1", limit=20)

    query, *params = fake_conn.fetch.call_args.args
    assert "status = $1" in query
    assert "stage = $2" in query
    assert "LIMIT $3" in query
    assert params == ["queued", "s1", 20]
