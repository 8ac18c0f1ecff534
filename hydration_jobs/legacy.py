"""Adapter that maps queue messages carrying legacy job ids onto hydration jobs."""

import json
import logging
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

import asyncpg

from hydration_jobs.audit import AuditLog
from hydration_jobs.errors import LegacyPayloadError
from hydration_jobs.metrics import HydrationMetrics, hydration_metrics
from hydration_jobs.models import (
    AuditEvent,
    EntityType,
    JOB_ENTITY_SCOPES,
    JobStatus,
    normalize_job_type,
)
from hydration_jobs.store import JobStore

_ID_KEYS = ("job_id", "jobId", "executionJobId")


def extract_job_id(body: Dict[str, Any]) -> str:
    """Find the job id in a message body of either the current or legacy shape."""
    if not isinstance(body, dict):
        raise LegacyPayloadError("message body is not an object")
    if body.get("job_id"):
        return str(body["job_id"])
    inner = body.get("payload")
    if isinstance(inner, dict):
        for key in _ID_KEYS:
            if inner.get(key):
                return str(inner[key])
    raise LegacyPayloadError("message carries no job id")


class LegacyJobAdapter:
    """Resolves message job ids, translating external job records when needed."""

    def __init__(
        self,
        db_pool: asyncpg.Pool,
        default_max_attempts: int = 5,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[HydrationMetrics] = None,
    ):
        self.db_pool = db_pool
        self.default_max_attempts = default_max_attempts
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = metrics or hydration_metrics
        self.store = JobStore(db_pool)
        self.audit = AuditLog(db_pool, self.logger)

    async def resolve(self, body: Dict[str, Any]) -> UUID:
        """
        Return the hydration job id a message refers to.

        Raises:
            LegacyPayloadError: If the id is malformed or matches no job
        """
        raw_id = extract_job_id(body)
        try:
            job_id = UUID(raw_id)
        except ValueError as e:
            raise LegacyPayloadError(f"malformed job id {raw_id!r}") from e

        if await self.store.find_job(job_id):
            return job_id

        return await self.translate_external_job(job_id)

    async def translate_external_job(self, external_id: UUID) -> UUID:
        """Create (or reuse) the hydration job behind an external job record."""
        created = None
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    "SELECT * FROM hydration_external_jobs WHERE id = $1 FOR UPDATE",
                    external_id,
                )
                if not row:
                    raise LegacyPayloadError(f"unknown job id {external_id}")

                payload = (
                    json.loads(row["payload"])
                    if isinstance(row["payload"], str)
                    else dict(row["payload"] or {})
                )
                linked = payload.get("hydration_job_id")
                if linked:
                    return UUID(linked)

                job_type = normalize_job_type(row["job_type"])
                try:
                    entity_type = EntityType(str(row["entity_type"]).upper())
                except ValueError:
                    entity_type = None
                if job_type is None or JOB_ENTITY_SCOPES[job_type] is not entity_type:
                    raise LegacyPayloadError(
                        f"external job {external_id} has unsupported target "
                        f"{row['job_type']}/{row['entity_type']}"
                    )

                difficulty = payload.get("difficulty")
                existing = await self.store.find_active_job(
                    job_type, entity_type, row["entity_id"], difficulty
                )
                if existing:
                    job_id = existing.id
                else:
                    job = await self.store.insert_root_job(
                        conn,
                        id=uuid4(),
                        job_type=job_type,
                        entity_type=entity_type,
                        entity_id=row["entity_id"],
                        payload={**payload, "external_job_id": str(external_id)},
                        max_attempts=self.default_max_attempts,
                        language=payload.get("language"),
                        difficulty=difficulty,
                    )
                    job_id = job.id
                    created = job
                    await self.audit.record(
                        job_id,
                        AuditEvent.CREATED,
                        new_status=JobStatus.PENDING,
                        message="translated from external job",
                        meta={"external_job_id": str(external_id)},
                        conn=conn,
                    )

                await conn.execute(
                    """
                    UPDATE hydration_external_jobs
                    SET payload = payload || jsonb_build_object('hydration_job_id', $2::text)
                    WHERE id = $1
                    """,
                    external_id,
                    str(job_id),
                )

        if created is not None:
            self.metrics.job_created(created.job_type)
        self.logger.warning(
            f"Translated legacy job {external_id} to hydration job {job_id}"
        )
        return job_id
