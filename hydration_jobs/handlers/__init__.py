"""Built-in handlers; importing this package registers them."""

from hydration_jobs.handlers import assemble, notes, questions, syllabus, topics  # noqa: F401
from hydration_jobs.handlers.base import HandlerContext

__all__ = ["HandlerContext"]
