"""Job handler registry."""

from collections.abc import Callable, Iterable
from typing import Optional

from hydration_jobs.models import JobType


class HandlerRegistry:
    """Registry of handlers keyed by job type."""

    def __init__(self):
        self._handlers: dict[JobType, Callable] = {}

    def handler(self, job_type: JobType):
        """
        Decorator to register a job handler.

        Usage:
            @registry.handler(JobType.NOTES)
            async def handle_notes(ctx, job):
                ...
        """
        job_type = JobType(job_type)

        def decorator(func: Callable):
            self._handlers[job_type] = func
            return func

        return decorator

    def get_handler(self, job_type: JobType) -> Optional[Callable]:
        """Get the handler for a job type."""
        try:
            return self._handlers.get(JobType(job_type))
        except ValueError:
            return None

    def all_handlers(self) -> dict[JobType, Callable]:
        """Get all registered handlers."""
        return self._handlers.copy()

    def verify_complete(self, job_types: Iterable[JobType] = JobType) -> None:
        """
        Check that every job type has a handler.

        Raises:
            ValueError: Listing the job types without a handler
        """
        missing = [jt.value for jt in job_types if jt not in self._handlers]
        if missing:
            raise ValueError(f"No handler registered for job types: {', '.join(missing)}")


# Global registry instance
handler_registry = HandlerRegistry()
