"""Data models for jobs."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID


class JobStatus(str, Enum):
    """Job status values."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


class Job:
    """Represents a job record."""

    def __init__(
        self,
        id: UUID,
        idempotency_key: str,
        trigger_type: str,
        status: JobStatus,
        payload: Any,
        attempts: int,
        max_attempts: int,
        scheduled_at: datetime,
        stage: Optional[str] = None,
        context: Any = None,
        lock_owner: Optional[str] = None,
        locked_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        attempt_budget: Optional[int] = None,
    ):
        self.id = id
        self.idempotency_key = idempotency_key
        self.trigger_type = trigger_type
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.payload = payload
        self.attempts = attempts
        self.max_attempts = max_attempts
        self.attempt_budget = attempt_budget if attempt_budget is not None else max_attempts
        self.scheduled_at = scheduled_at
        self.stage = stage
        self.context = context
        self.lock_owner = lock_owner
        self.locked_at = locked_at
        self.last_error = last_error
        self.created_at = created_at
        self.updated_at = updated_at

    @property
    def retries_exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        return {
            "id": str(self.id),
            "idempotency_key": self.idempotency_key,
            "trigger_type": self.trigger_type,
            "stage": self.stage,
            "status": self.status.value,
            "payload": self.payload,
            "context": self.context,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "attempt_budget": self.attempt_budget,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "lock_owner": self.lock_owner,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, key={self.idempotency_key!r}, "
            f"type={self.trigger_type!r}, status={self.status.value})"
        )


class RunResult:
    """Outcome of a single runner iteration."""

    def __init__(
        self,
        processed: bool,
        job_id: Optional[UUID] = None,
        event_type: Optional[str] = None,
    ):
        self.processed = processed
        self.job_id = job_id
        self.event_type = event_type

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "job_id": str(self.job_id) if self.job_id else None,
            "event_type": self.event_type,
        }


class DrainResult:
    """Aggregate outcome of draining the queue within a budget."""

    def __init__(
        self,
        processed: int = 0,
        errors: int = 0,
        jobs: Optional[List[RunResult]] = None,
        duration_ms: int = 0,
    ):
        self.processed = processed
        self.errors = errors
        self.jobs = jobs or []
        self.duration_ms = duration_ms

    @property
    def message(self) -> str:
        if self.processed > 0:
            return f"Processed {self.processed} job(s)"
        if self.errors > 0:
            return f"No jobs processed ({self.errors} error(s))"
        return "No jobs available"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "errors": self.errors,
            "jobs": [job.to_dict() for job in self.jobs],
            "duration_ms": self.duration_ms,
            "message": self.message,
        }
