"""Example FastAPI application using the durable jobs library."""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg
import uvicorn
from fastapi import FastAPI, HTTPException, Request

from durable_jobs import EVENT_KEY, DurableJobsConfig, JobQueue, JobRunner, jobs_table_ddl
from durable_jobs.fastapi_router import create_jobs_router

from examples.handlers import registry

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

config = DurableJobsConfig.from_env()
db_pool: Optional[asyncpg.Pool] = None
# Shared for the life of the app; the queue owns the availability cache and breaker
queue: Optional[JobQueue] = None
runner: Optional[JobRunner] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the pool, the jobs table and the shared queue on startup."""
    global db_pool, queue, runner
    db_pool = await asyncpg.create_pool(config.db_dsn, min_size=2, max_size=10)
    async with db_pool.acquire() as conn:
        await conn.execute(jobs_table_ddl(config.table_name))
    queue = JobQueue(config, db_pool)
    runner = JobRunner(queue, registry)
    logger.info("Database pool initialized")
    yield
    queue = None
    runner = None
    await db_pool.close()
    logger.info("Database pool closed")


app = FastAPI(title="Durable Jobs Example API", version="1.0.0", lifespan=lifespan)


def get_queue() -> JobQueue:
    if queue is None:
        raise RuntimeError("Application not initialized")
    return queue


def get_runner() -> JobRunner:
    if runner is None:
        raise RuntimeError("Application not initialized")
    return runner


app.include_router(
    create_jobs_router(get_queue, runner_factory=get_runner, cron_secret=config.cron_secret)
)


@app.post("/webhooks/{organization_id}")
async def receive_webhook(organization_id: str, request: Request) -> dict[str, Any]:
    """
    Try to process an inbound event inline; hand it to the queue when that fails.

    The idempotency key makes provider redeliveries collapse onto one job.
    """
    try:
        event = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Body must be a JSON object") from e
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Body must be a JSON object")

    event_type = event.get("type")
    try:
        key = EVENT_KEY.compose(
            organization_id=organization_id,
            event_id=event.get("id"),
            event_type=event_type,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    handler = registry.get_handler(str(event_type).strip())
    if handler is None:
        return {"accepted": False, "reason": f"unsupported event type {event_type}"}

    try:
        await handler(event.get("data", {}), None, None)
        return {"accepted": True, "processed": True}
    except Exception as e:
        logger.warning(f"Inline processing of {key} failed, queueing for retry: {e}")
        job = await get_queue().enqueue(
            key, str(event_type).strip(), event.get("data", {}), initial_error=e
        )
        return {"accepted": True, "processed": False, "queued": job is not None}


if __name__ == "__main__":
    uvicorn.run("examples.app:app", host="0.0.0.0", port=8000, log_level="info")
