"""Exception types for the durable jobs library."""

from typing import Optional


class DurableJobsError(Exception):
    """Base exception for all durable jobs errors."""

    pass


class StoreUnavailableError(DurableJobsError):
    """Raised when the backing jobs table does not exist."""

    def __init__(self, table: str, message: str = None):
        self.table = table
        if message is None:
            message = f"Jobs table {table} is not available"
        super().__init__(message)


class TransientStoreError(DurableJobsError):
    """Raised when a store operation fails for any reason other than a missing table."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Store operation {operation} failed{detail}")


class JobNotFoundError(DurableJobsError):
    """Raised when a job is not found."""

    def __init__(self, job_id, message: str = None):
        self.job_id = job_id
        if message is None:
            message = f"Job {job_id} not found"
        super().__init__(message)


class HandlerError(DurableJobsError):
    """Raised by the runner after a handler failure has been recorded on the job."""

    def __init__(self, job_id, job_type: str, cause: Optional[BaseException] = None):
        self.job_id = job_id
        self.job_type = job_type
        self.cause = cause
        super().__init__(f"Handler for {job_type} failed on job {job_id}: {cause}")


class UnknownJobTypeError(DurableJobsError):
    """Raised when no handler is registered for a job type."""

    def __init__(self, job_type: str):
        self.job_type = job_type
        super().__init__(f"No handler registered for job type {job_type}")


class RegistryError(DurableJobsError):
    """Raised when the handler registry is declared or used incorrectly."""

    pass


class AuthTokenError(DurableJobsError):
    """Raised when the cron secret is missing or invalid."""

    pass
