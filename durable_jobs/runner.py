"""Worker logic for durable jobs."""

import asyncio
import logging
import time
from typing import Iterable, Optional

from durable_jobs.errors import HandlerError, UnknownJobTypeError
from durable_jobs.models import DrainResult, RunResult
from durable_jobs.queue import JobQueue
from durable_jobs.registry import HandlerRegistry


class JobRunner:
    """Leases jobs one at a time and dispatches them to registered handlers."""

    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        exclude_stages: Optional[Iterable[str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        if not registry.frozen:
            registry.validate()
        self.queue = queue
        self.registry = registry
        self.exclude_stages = list(exclude_stages or [])
        self.logger = logger or logging.getLogger(__name__)

    async def run_once(self, worker_id: str) -> RunResult:
        """
        Lease and process a single job.

        Returns:
            RunResult with processed=False when no job was available

        Raises:
            HandlerError: the handler failed (or no handler exists); the
                failure has already been recorded on the job
        """
        job = await self.queue.lease(worker_id, self.exclude_stages)
        if job is None:
            return RunResult(processed=False)

        self.logger.info(
            f"Executing job {job.id} (type={job.trigger_type}, "
            f"attempt={job.attempts}/{job.max_attempts})"
        )

        try:
            handler = self.registry.get_handler(job.trigger_type)
            if handler is None:
                raise UnknownJobTypeError(job.trigger_type)
            await handler(job.payload, job.id, job.created_at)
        except Exception as e:
            self.logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            await self.queue.fail(job.id, e, leased=job)
            raise HandlerError(job.id, job.trigger_type, e) from e

        await self.queue.complete(job.id, leased=job)
        self.logger.info(f"Job {job.id} completed successfully")
        return RunResult(processed=True, job_id=job.id, event_type=job.trigger_type)

    async def drain(
        self,
        worker_id: str,
        max_jobs: Optional[int] = None,
        max_errors: Optional[int] = None,
    ) -> DrainResult:
        """
        Process jobs until the queue is empty or a budget is spent.

        Stops when no job is available, when processed + errors reaches
        ``max_jobs``, or when errors reach ``max_errors``.
        """
        if max_jobs is None:
            max_jobs = self.queue.config.max_jobs_per_run
        if max_errors is None:
            max_errors = self.queue.config.max_errors_per_run

        started = time.monotonic()
        result = DrainResult()

        while result.processed + result.errors < max_jobs:
            try:
                run = await self.run_once(worker_id)
            except Exception as e:
                result.errors += 1
                self.logger.error(f"Error processing job ({result.errors} so far): {e}")
                if result.errors >= max_errors:
                    self.logger.error(f"Too many errors ({result.errors}), stopping")
                    break
                continue

            if not run.processed:
                self.logger.debug(f"No more jobs available after processing {result.processed}")
                break

            result.processed += 1
            result.jobs.append(run)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.logger.info(
            f"Drain finished: processed {result.processed} job(s), "
            f"{result.errors} error(s) in {result.duration_ms}ms"
        )
        return result


async def run_worker_loop(
    runner: JobRunner,
    worker_id: str,
    logger: Optional[logging.Logger] = None,
    poll_interval_seconds: float = 5,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Keep draining the queue until shutdown is requested.

    Args:
        runner: Job runner
        worker_id: Lock owner recorded on leased jobs
        logger: Logger instance
        poll_interval_seconds: Sleep between drains when the queue is idle
        shutdown_event: Optional event to signal shutdown
    """
    logger = logger or logging.getLogger(__name__)
    shutdown_event = shutdown_event or asyncio.Event()

    logger.info(f"Starting worker loop as {worker_id}")

    while not shutdown_event.is_set():
        try:
            result = await runner.drain(worker_id)
            busy = result.processed > 0 and result.errors == 0
        except Exception as e:
            logger.error(f"Error in worker loop: {e}", exc_info=True)
            busy = False

        if busy:
            continue

        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=poll_interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("Shutdown signal received, exiting worker loop")
