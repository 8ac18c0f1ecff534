"""Prometheus metrics for hydration jobs."""

import logging
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

from hydration_jobs.models import JobType

DURATION_BUCKETS = (1, 5, 15, 30, 60, 120, 300, 600, 1200, float("inf"))


class HydrationMetrics:
    """
    Job lifecycle counters and handler timing, labelled by job type.

    Every process builds one instance on the default registry; tests pass
    their own CollectorRegistry.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry
        self.created = Counter(
            "hydrate_jobs_created",
            "Total hydrate jobs created",
            ["target"],
            registry=registry,
        )
        self.claimed = Counter(
            "hydrate_jobs_claimed",
            "Total hydrate jobs claimed by workers",
            ["target"],
            registry=registry,
        )
        self.completed = Counter(
            "hydrate_jobs_completed",
            "Total hydrate jobs completed",
            ["target"],
            registry=registry,
        )
        self.failed = Counter(
            "hydrate_jobs_failed",
            "Total hydrate jobs failed",
            ["target"],
            registry=registry,
        )
        self.duration = Histogram(
            "hydrate_job_duration_seconds",
            "Duration of hydrate job handlers in seconds",
            ["target"],
            buckets=DURATION_BUCKETS,
            registry=registry,
        )

    def job_created(self, job_type: JobType) -> None:
        self.created.labels(target=job_type.value).inc()

    def job_claimed(self, job_type: JobType) -> None:
        self.claimed.labels(target=job_type.value).inc()

    def job_completed(self, job_type: JobType) -> None:
        self.completed.labels(target=job_type.value).inc()

    def job_failed(self, job_type: JobType) -> None:
        self.failed.labels(target=job_type.value).inc()

    def time_job(self, job_type: JobType):
        """Context manager observing the elapsed time of one handler run."""
        return self.duration.labels(target=job_type.value).time()


hydration_metrics = HydrationMetrics()


def start_metrics_server(port: Optional[int], logger: logging.Logger) -> None:
    """Expose the default registry over HTTP when a port is configured."""
    if not port:
        return
    start_http_server(port)
    logger.info(f"Serving Prometheus metrics on port {port}")
