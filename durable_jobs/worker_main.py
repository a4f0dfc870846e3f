"""CLI entrypoint and programmatic interface for worker."""

import argparse
import asyncio
import importlib
import logging
import os
import signal
import socket
import sys
from typing import Optional

import asyncpg

from durable_jobs.config import DurableJobsConfig
from durable_jobs.errors import RegistryError
from durable_jobs.queue import JobQueue
from durable_jobs.registry import HandlerRegistry
from durable_jobs.runner import JobRunner, run_worker_loop


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: DurableJobsConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=1, max_size=5)


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def load_registry(handlers_module: Optional[str]) -> HandlerRegistry:
    """
    Import the module that declares the handlers.

    The module must expose a ``registry`` attribute holding a HandlerRegistry.
    """
    if not handlers_module:
        raise RegistryError("DURABLE_JOBS_HANDLERS_MODULE is not set, no handlers available")

    module = importlib.import_module(handlers_module)
    registry = getattr(module, "registry", None)
    if not isinstance(registry, HandlerRegistry):
        raise RegistryError(f"{handlers_module} does not define a HandlerRegistry named registry")

    logging.info(f"Loaded handlers for {', '.join(registry.job_types)} from {handlers_module}")
    return registry


async def run_worker(
    worker_id: Optional[str] = None,
    config: Optional[DurableJobsConfig] = None,
    db_pool=None,
    registry: Optional[HandlerRegistry] = None,
    logger: Optional[logging.Logger] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    once: bool = False,
    max_jobs: Optional[int] = None,
    max_errors: Optional[int] = None,
    poll_interval_seconds: float = 5,
    exclude_stages: Optional[list[str]] = None,
):
    """
    Run the worker programmatically.

    Args:
        worker_id: Lock owner for leased jobs. Defaults to hostname-pid.
        config: DurableJobsConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        registry: HandlerRegistry. If None, loaded from config.handlers_module.
        logger: Logger instance. If None, will create default logger.
        shutdown_event: Optional asyncio.Event for graceful shutdown.
        once: Drain a single budget and return (cron/serverless style).
        max_jobs: Per-drain job budget.
        max_errors: Per-drain error threshold.
        poll_interval_seconds: Idle sleep for the long-running loop.
        exclude_stages: Stages this worker never leases.

    Returns:
        DrainResult when ``once`` is set, otherwise None.

    Example:
        ```python
        from durable_jobs.worker_main import run_worker

        asyncio.run(run_worker(worker_id="worker-1", registry=my_registry))
        ```
    """
    if config is None:
        config = DurableJobsConfig.from_env()

    if logger is None:
        logger = logging.getLogger(__name__)

    if registry is None:
        registry = load_registry(config.handlers_module)

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    worker_id = worker_id or default_worker_id()

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    try:
        queue = JobQueue(config, db_pool, logger=logger)
        runner = JobRunner(queue, registry, exclude_stages=exclude_stages, logger=logger)

        if once:
            return await runner.drain(worker_id, max_jobs=max_jobs, max_errors=max_errors)

        await run_worker_loop(
            runner,
            worker_id,
            logger=logger,
            poll_interval_seconds=poll_interval_seconds,
            shutdown_event=shutdown_event,
        )
        return None
    finally:
        if not db_pool_provided and db_pool:
            await db_pool.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Durable Jobs Worker")
    parser.add_argument(
        "--worker-id",
        default=None,
        help="Lock owner recorded on leased jobs (default: hostname-pid)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain one budget of jobs and exit",
    )
    parser.add_argument(
        "--max-jobs",
        type=int,
        default=None,
        help="Max jobs per drain (default: DURABLE_JOBS_MAX_JOBS_PER_RUN or 10)",
    )
    parser.add_argument(
        "--max-errors",
        type=int,
        default=None,
        help="Stop a drain after this many errors (default: 3)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=5.0,
        help="Seconds to sleep when the queue is idle (default: 5)",
    )
    parser.add_argument(
        "--exclude-stage",
        action="append",
        default=[],
        help="Stage to skip when leasing; may be repeated",
    )
    return parser


def main(argv: Optional[list[str]] = None):
    """Main entrypoint for worker."""
    setup_logging()
    logger = logging.getLogger(__name__)

    args = build_parser().parse_args(argv)

    try:
        config = DurableJobsConfig.from_env()
        registry = load_registry(config.handlers_module)
    except (ValueError, ImportError, RegistryError) as e:
        logger.error(f"Failed to start worker: {e}")
        sys.exit(1)

    # Setup shutdown event
    shutdown_event = asyncio.Event()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    async def run():
        """Async main function."""
        result = await run_worker(
            worker_id=args.worker_id,
            config=config,
            registry=registry,
            logger=logger,
            shutdown_event=shutdown_event,
            once=args.once,
            max_jobs=args.max_jobs,
            max_errors=args.max_errors,
            poll_interval_seconds=args.poll_interval,
            exclude_stages=args.exclude_stage,
        )
        if result is not None:
            logger.info(result.message)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
