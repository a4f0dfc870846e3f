"""Durable PostgreSQL-backed job queue."""

from durable_jobs.availability import AvailabilityProbe, CircuitBreaker, TTLCache
from durable_jobs.backoff import (
    BackoffPolicy,
    HardErrorStrategy,
    LongDelayRequeueStrategy,
    TerminalFailureStrategy,
)
from durable_jobs.config import DurableJobsConfig
from durable_jobs.ddl import JOBS_TABLE_DDL, jobs_table_ddl
from durable_jobs.errors import (
    AuthTokenError,
    DurableJobsError,
    HandlerError,
    JobNotFoundError,
    RegistryError,
    StoreUnavailableError,
    TransientStoreError,
    UnknownJobTypeError,
)
from durable_jobs.keys import EVENT_KEY, LIFECYCLE_KEY, KeySchema
from durable_jobs.models import DrainResult, Job, JobStatus, RunResult
from durable_jobs.queue import JobQueue
from durable_jobs.registry import HandlerRegistry
from durable_jobs.runner import JobRunner, run_worker_loop
from durable_jobs.store import JobStore

__version__ = "0.1.0"

__all__ = [
    "AvailabilityProbe",
    "CircuitBreaker",
    "TTLCache",
    "BackoffPolicy",
    "HardErrorStrategy",
    "LongDelayRequeueStrategy",
    "TerminalFailureStrategy",
    "DurableJobsConfig",
    "JOBS_TABLE_DDL",
    "jobs_table_ddl",
    "AuthTokenError",
    "DurableJobsError",
    "HandlerError",
    "JobNotFoundError",
    "RegistryError",
    "StoreUnavailableError",
    "TransientStoreError",
    "UnknownJobTypeError",
    "EVENT_KEY",
    "LIFECYCLE_KEY",
    "KeySchema",
    "DrainResult",
    "Job",
    "JobStatus",
    "RunResult",
    "JobQueue",
    "HandlerRegistry",
    "JobRunner",
    "run_worker_loop",
    "JobStore",
]
