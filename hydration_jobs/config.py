"""Configuration for the hydration job engine."""

import json
import os
from typing import Any, Dict, List, Optional

from hydration_jobs.models import Difficulty, JobType


DEFAULT_GENERATION_TIMEOUTS_MS: Dict[str, int] = {
    JobType.SYLLABUS.value: 20_000,
    JobType.TOPICS.value: 20_000,
    JobType.NOTES.value: 30_000,
    JobType.QUESTIONS.value: 30_000,
    JobType.ASSEMBLE.value: 10_000,
}

DEFAULT_DIFFICULTIES = [d.value for d in Difficulty]


class HydrationConfig:
    """Configuration object for hydration jobs."""

    def __init__(
        self,
        db_dsn: str,
        sqs_queue_url: str,
        queue_name: str = "content-hydration",
        worker_concurrency: int = 3,
        default_max_attempts: int = 5,
        child_max_attempts: int = 3,
        generation_timeouts_ms: Optional[Dict[str, int]] = None,
        generation_url: Optional[str] = None,
        generation_token: Optional[str] = None,
        difficulties: Optional[List[str]] = None,
        reconcile_interval_seconds: int = 300,
        reconciler_lock_ttl_seconds: int = 300,
        reconciler_batch_size: int = 100,
        outbox_poll_seconds: float = 1.0,
        outbox_batch_size: int = 10,
        claim_ttl_seconds: int = 900,
        settings_ttl_seconds: float = 5.0,
        evidence_attempts: int = 5,
        metrics_port: Optional[int] = None,
    ):
        self.db_dsn = db_dsn
        self.sqs_queue_url = sqs_queue_url
        self.queue_name = queue_name
        self.worker_concurrency = worker_concurrency
        self.default_max_attempts = default_max_attempts
        self.child_max_attempts = child_max_attempts
        self.generation_timeouts_ms = dict(DEFAULT_GENERATION_TIMEOUTS_MS)
        if generation_timeouts_ms:
            self.generation_timeouts_ms.update(generation_timeouts_ms)
        self.generation_url = generation_url
        self.generation_token = generation_token
        self.difficulties = list(difficulties or DEFAULT_DIFFICULTIES)
        self.reconcile_interval_seconds = reconcile_interval_seconds
        self.reconciler_lock_ttl_seconds = reconciler_lock_ttl_seconds
        self.reconciler_batch_size = reconciler_batch_size
        self.outbox_poll_seconds = outbox_poll_seconds
        self.outbox_batch_size = outbox_batch_size
        self.claim_ttl_seconds = claim_ttl_seconds
        self.settings_ttl_seconds = settings_ttl_seconds
        self.evidence_attempts = evidence_attempts
        self.metrics_port = metrics_port

        for difficulty in self.difficulties:
            if difficulty not in DEFAULT_DIFFICULTIES:
                raise ValueError(f"Unknown difficulty: {difficulty}")

    @classmethod
    def from_env(cls) -> "HydrationConfig":
        """Create config from environment variables."""
        db_dsn = os.getenv("HYDRATION_DB_DSN")
        if not db_dsn:
            raise ValueError("HYDRATION_DB_DSN environment variable is required")

        sqs_queue_url = os.getenv("HYDRATION_SQS_QUEUE_URL")
        if not sqs_queue_url:
            raise ValueError("HYDRATION_SQS_QUEUE_URL environment variable is required")

        timeouts_str = os.getenv("HYDRATION_GENERATION_TIMEOUTS_MS")
        generation_timeouts_ms = None
        if timeouts_str:
            try:
                generation_timeouts_ms = {
                    key: int(value) for key, value in json.loads(timeouts_str).items()
                }
            except (json.JSONDecodeError, AttributeError, TypeError, ValueError) as e:
                raise ValueError(
                    f"Invalid JSON in HYDRATION_GENERATION_TIMEOUTS_MS: {e}"
                ) from e

        difficulties_str = os.getenv("HYDRATION_DIFFICULTIES")
        difficulties = None
        if difficulties_str:
            difficulties = [
                d.strip().lower() for d in difficulties_str.split(",") if d.strip()
            ]

        return cls(
            db_dsn=db_dsn,
            sqs_queue_url=sqs_queue_url,
            queue_name=os.getenv("HYDRATION_QUEUE_NAME", "content-hydration"),
            worker_concurrency=_int_env("HYDRATION_WORKER_CONCURRENCY", 3),
            default_max_attempts=_int_env("HYDRATION_DEFAULT_MAX_ATTEMPTS", 5),
            child_max_attempts=_int_env("HYDRATION_CHILD_MAX_ATTEMPTS", 3),
            generation_timeouts_ms=generation_timeouts_ms,
            generation_url=os.getenv("HYDRATION_GENERATION_URL"),
            generation_token=os.getenv("HYDRATION_GENERATION_TOKEN"),
            difficulties=difficulties,
            reconcile_interval_seconds=_int_env(
                "HYDRATION_RECONCILE_INTERVAL_SECONDS", 300
            ),
            reconciler_lock_ttl_seconds=_int_env(
                "HYDRATION_RECONCILER_LOCK_TTL_SECONDS", 300
            ),
            reconciler_batch_size=_int_env("HYDRATION_RECONCILER_BATCH_SIZE", 100),
            outbox_poll_seconds=_float_env("HYDRATION_OUTBOX_POLL_SECONDS", 1.0),
            outbox_batch_size=_int_env("HYDRATION_OUTBOX_BATCH_SIZE", 10),
            claim_ttl_seconds=_int_env("HYDRATION_CLAIM_TTL_SECONDS", 900),
            settings_ttl_seconds=_float_env("HYDRATION_SETTINGS_TTL_SECONDS", 5.0),
            evidence_attempts=_int_env("HYDRATION_EVIDENCE_ATTEMPTS", 5),
            metrics_port=_int_env("HYDRATION_METRICS_PORT", 0) or None,
        )

    def get_generation_timeout_ms(self, job_type: Any) -> int:
        """Get the generation timeout for a job type."""
        key = job_type.value if isinstance(job_type, JobType) else str(job_type)
        return self.generation_timeouts_ms.get(key, 30_000)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e
