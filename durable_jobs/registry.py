"""Job handler registry."""

from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from durable_jobs.errors import RegistryError

# async def handler(payload, job_id, created_at) -> None
Handler = Callable[[Any, UUID, Optional[datetime]], Awaitable[Any]]


class HandlerRegistry:
    """
    Closed set of job types and their handlers.

    Every job type is declared when the registry is created. Handlers are
    attached with the decorator, and ``validate()`` checks that each declared
    type has one before the registry is frozen.

    Usage:
        registry = HandlerRegistry(["booking.created", "reward_friend"])

        @registry.handler("booking.created")
        async def booking_created(payload, job_id, created_at):
            ...

        registry.validate()
    """

    def __init__(self, job_types: Iterable[str]):
        declared = []
        for job_type in job_types:
            if not isinstance(job_type, str) or not job_type.strip():
                raise RegistryError(f"Invalid job type: {job_type!r}")
            if job_type in declared:
                raise RegistryError(f"Job type {job_type} declared twice")
            declared.append(job_type)
        if not declared:
            raise RegistryError("A registry needs at least one job type")

        self._job_types = tuple(declared)
        self._handlers: dict[str, Handler] = {}
        self._frozen = False

    @property
    def job_types(self) -> tuple[str, ...]:
        return self._job_types

    @property
    def frozen(self) -> bool:
        return self._frozen

    def handler(self, job_type: str):
        """Decorator to register the handler for a declared job type."""

        def decorator(func: Handler) -> Handler:
            self.register(job_type, func)
            return func

        return decorator

    def register(self, job_type: str, func: Handler) -> None:
        if self._frozen:
            raise RegistryError(f"Registry is frozen, cannot register {job_type}")
        if job_type not in self._job_types:
            raise RegistryError(f"Job type {job_type} was not declared")
        if job_type in self._handlers:
            raise RegistryError(f"Job type {job_type} already has a handler")
        if not callable(func):
            raise RegistryError(f"Handler for {job_type} is not callable")
        self._handlers[job_type] = func

    def validate(self) -> None:
        """Fail if any declared type lacks a handler, then freeze."""
        missing = [job_type for job_type in self._job_types if job_type not in self._handlers]
        if missing:
            raise RegistryError(f"No handler registered for: {', '.join(missing)}")
        self._frozen = True

    def get_handler(self, job_type: str) -> Optional[Handler]:
        """Get a handler by job type."""
        return self._handlers.get(job_type)

    def all_handlers(self) -> dict[str, Handler]:
        """Get all registered handlers."""
        return self._handlers.copy()
