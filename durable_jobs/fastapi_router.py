"""FastAPI router for the durable jobs HTTP surface."""

import hmac
import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel

from durable_jobs.errors import (
    AuthTokenError,
    JobNotFoundError,
    StoreUnavailableError,
    TransientStoreError,
)
from durable_jobs.queue import JobQueue
from durable_jobs.runner import JobRunner


logger = logging.getLogger(__name__)


class EnqueueJobRequest(BaseModel):
    """Request model for enqueueing a job."""

    idempotency_key: str
    trigger_type: str
    payload: Any = None
    stage: Optional[str] = None
    context: Any = None
    scheduled_at: Optional[str] = None  # ISO8601 datetime string
    max_attempts: Optional[int] = None
    initial_error: Optional[str] = None


class JobResponse(BaseModel):
    """Response model for job details."""

    id: str
    idempotency_key: str
    trigger_type: str
    stage: Optional[str] = None
    status: str
    payload: Any = None
    context: Any = None
    attempts: int
    max_attempts: int
    attempt_budget: Optional[int] = None
    scheduled_at: Optional[str] = None
    lock_owner: Optional[str] = None
    locked_at: Optional[str] = None
    last_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class EnqueueJobResponse(BaseModel):
    """Response model for enqueueing a job."""

    queued: bool
    job: Optional[JobResponse] = None


class ProcessedJob(BaseModel):
    job_id: Optional[str] = None
    event_type: Optional[str] = None


class DrainResponse(BaseModel):
    """Response model for a cron drain."""

    processed: int
    errors: int
    jobs: List[ProcessedJob]
    duration_ms: int
    message: str


def _matches(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def check_cron_secret(
    secret: Optional[str],
    authorization: Optional[str],
    x_cron_secret: Optional[str],
) -> str:
    """
    Validate the cron secret.

    Accepts ``Authorization: Bearer <secret>``, a bare ``Authorization: <secret>``
    or ``X-Cron-Secret: <secret>``. Returns the method that matched.

    Raises:
        AuthTokenError: a secret is configured and none of the headers match
    """
    if not secret:
        logger.warning("Cron secret not set, allowing unauthenticated access")
        return "no-secret-set"

    authorization = authorization or ""
    if _matches(authorization, f"Bearer {secret}") or _matches(authorization, secret):
        return "authorization-header"
    if x_cron_secret and _matches(x_cron_secret, secret):
        return "cron-secret-header"

    raise AuthTokenError("Invalid or missing cron secret")


def create_jobs_router(
    queue_factory: Callable[[], JobQueue],
    runner_factory: Optional[Callable[[], JobRunner]] = None,
    cron_secret: Optional[str] = None,
    cron_worker_id: str = "cron",
) -> APIRouter:
    """
    Create FastAPI router for durable jobs.

    Args:
        queue_factory: Callable that returns the application's JobQueue. It is
            called on every request, so it should hand back one long-lived
            instance; the availability cache and circuit breaker live on
            the queue and are lost when a new one is built per request
        runner_factory: Callable that returns a JobRunner; enables /cron/jobs
        cron_secret: Optional secret required by /cron/jobs
        cron_worker_id: Lock owner recorded for jobs leased by the cron drain

    Returns:
        APIRouter instance
    """
    router = APIRouter()

    async def get_queue() -> JobQueue:
        """Dependency to get JobQueue instance."""
        return queue_factory()

    async def verify_cron_secret(
        authorization: Optional[str] = Header(None),
        x_cron_secret: Optional[str] = Header(None, alias="X-Cron-Secret"),
    ) -> None:
        try:
            method = check_cron_secret(cron_secret, authorization, x_cron_secret)
        except AuthTokenError as e:
            logger.error("Unauthorized cron drain attempt")
            raise HTTPException(status_code=401, detail=str(e)) from e
        logger.debug(f"Cron drain authorized via {method}")

    @router.post("/jobs/enqueue", response_model=EnqueueJobResponse)
    async def enqueue_job(
        request: EnqueueJobRequest,
        queue: JobQueue = Depends(get_queue),
    ):
        """Enqueue a job; reports queued=false when the queue is unavailable."""
        try:
            job = await queue.enqueue(
                request.idempotency_key,
                request.trigger_type,
                request.payload,
                stage=request.stage,
                context=request.context,
                scheduled_at=request.scheduled_at,
                max_attempts=request.max_attempts,
                initial_error=request.initial_error,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        except TransientStoreError as e:
            logger.exception("Error enqueueing job")
            raise HTTPException(status_code=503, detail="Job store unavailable") from e

        if job is None:
            return EnqueueJobResponse(queued=False)
        return EnqueueJobResponse(queued=True, job=JobResponse(**job.to_dict()))

    @router.get("/jobs/status")
    async def jobs_status(
        limit: int = Query(10, ge=1, le=100),
        queue: JobQueue = Depends(get_queue),
    ) -> Dict[str, Any]:
        """Counts per status, stuck jobs and recent activity."""
        try:
            return await queue.status_summary(limit=limit)
        except (TransientStoreError, StoreUnavailableError) as e:
            logger.exception("Error getting job status")
            raise HTTPException(status_code=503, detail=str(e)) from e

    @router.get("/jobs/{job_id}", response_model=JobResponse)
    async def get_job(
        job_id: str,
        queue: JobQueue = Depends(get_queue),
    ):
        """Get job details by ID."""
        try:
            job_uuid = UUID(job_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail="Invalid job ID format") from e

        try:
            job = await queue.get_job(job_uuid)
            return JobResponse(**job.to_dict())
        except JobNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e
        except (TransientStoreError, StoreUnavailableError) as e:
            logger.exception("Error getting job")
            raise HTTPException(status_code=503, detail="Job store unavailable") from e

    @router.get("/jobs", response_model=List[JobResponse])
    async def list_jobs(
        status: Optional[str] = Query(None),
        trigger_type: Optional[str] = Query(None),
        stage: Optional[str] = Query(None),
        limit: int = Query(50, ge=1, le=1000),
        queue: JobQueue = Depends(get_queue),
    ):
        """List jobs with optional filters."""
        try:
            jobs = await queue.list_jobs(
                status=status, trigger_type=trigger_type, stage=stage, limit=limit
            )
            return [JobResponse(**job.to_dict()) for job in jobs]
        except (TransientStoreError, StoreUnavailableError) as e:
            logger.exception("Error listing jobs")
            raise HTTPException(status_code=503, detail="Job store unavailable") from e

    if runner_factory is not None:

        @router.api_route(
            "/cron/jobs",
            methods=["GET", "POST"],
            response_model=DrainResponse,
            dependencies=[Depends(verify_cron_secret)],
        )
        async def drain_jobs(
            max_jobs: Optional[int] = Query(None, ge=1, le=100),
        ):
            """Process a budget of jobs; meant to be hit by a periodic trigger."""
            runner = runner_factory()
            try:
                result = await runner.drain(cron_worker_id, max_jobs=max_jobs)
            except Exception as e:
                logger.exception("Cron drain failed")
                raise HTTPException(
                    status_code=500, detail=f"Job processing failed: {e}"
                ) from e
            return DrainResponse(**result.to_dict())

    return router
