"""Content hydration job engine for curriculum generation."""

from hydration_jobs.config import HydrationConfig
from hydration_jobs.ddl import ALL_DDL
from hydration_jobs.errors import (
    DependencyMissingError,
    EntityNotFoundError,
    HydrationDisabledError,
    HydrationError,
    InvalidTransitionError,
    JobNotFoundError,
    JobValidationError,
)
from hydration_jobs.failures import FailureCode
from hydration_jobs.generation import GenerationHttpClient, GenerationResult
from hydration_jobs.metrics import HydrationMetrics, hydration_metrics
from hydration_jobs.models import (
    Difficulty,
    EntityType,
    Job,
    JobStatus,
    JobType,
    SubmitResult,
)
from hydration_jobs.reconciler import HydrationReconciler
from hydration_jobs.registry import HandlerRegistry, handler_registry
from hydration_jobs.scheduler import run_scheduler_loop
from hydration_jobs.service import HydrationJobService
from hydration_jobs.settings import SettingsCache
from hydration_jobs.store import JobStore
from hydration_jobs.worker import JobProcessor, run_worker_loop
from hydration_jobs.worker_main import run_worker

__version__ = "0.1.0"

__all__ = [
    "HydrationConfig",
    "ALL_DDL",
    "DependencyMissingError",
    "EntityNotFoundError",
    "HydrationDisabledError",
    "HydrationError",
    "InvalidTransitionError",
    "JobNotFoundError",
    "JobValidationError",
    "FailureCode",
    "GenerationHttpClient",
    "GenerationResult",
    "HydrationMetrics",
    "hydration_metrics",
    "Difficulty",
    "EntityType",
    "Job",
    "JobStatus",
    "JobType",
    "SubmitResult",
    "HydrationReconciler",
    "HandlerRegistry",
    "handler_registry",
    "run_scheduler_loop",
    "HydrationJobService",
    "SettingsCache",
    "JobStore",
    "JobProcessor",
    "run_worker_loop",
    "run_worker",
]
