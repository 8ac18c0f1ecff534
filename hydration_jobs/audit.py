"""Append-only audit log of job lifecycle events."""

import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

import asyncpg

from hydration_jobs.models import AuditEntry, AuditEvent


class AuditLog:
    """Writes and reads hydration_job_audit_log rows. There is no update or delete."""

    def __init__(self, db_pool: asyncpg.Pool, logger: Optional[logging.Logger] = None):
        self.db_pool = db_pool
        self.logger = logger or logging.getLogger(__name__)

    async def record(
        self,
        job_id: UUID,
        event: AuditEvent,
        prev_status: Optional[str] = None,
        new_status: Optional[str] = None,
        message: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        conn: Optional[asyncpg.Connection] = None,
    ) -> None:
        """Append one entry, on conn when given so it joins the caller's transaction."""
        query = """
            INSERT INTO hydration_job_audit_log (
                job_id, event, prev_status, new_status, message, meta
            ) VALUES ($1, $2, $3, $4, $5, $6)
        """
        args = (
            job_id,
            AuditEvent(event).value,
            _status_value(prev_status),
            _status_value(new_status),
            message,
            json.dumps(meta or {}, default=str),
        )
        if conn is not None:
            await conn.execute(query, *args)
            return
        async with self.db_pool.acquire() as pooled:
            await pooled.execute(query, *args)

    async def record_safely(self, job_id: UUID, event: AuditEvent, **kwargs) -> None:
        """Append an entry outside any transaction; a write failure is only logged."""
        try:
            await self.record(job_id, event, **kwargs)
        except Exception as e:
            self.logger.error(
                f"Failed to write {AuditEvent(event).value} audit entry for job {job_id}: {e}"
            )

    async def list_for_job(self, job_id: UUID) -> List[AuditEntry]:
        """All entries of a job in insertion order."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM hydration_job_audit_log
                WHERE job_id = $1
                ORDER BY id ASC
                """,
                job_id,
            )
        return [
            AuditEntry(
                id=row["id"],
                job_id=row["job_id"],
                event=row["event"],
                prev_status=row["prev_status"],
                new_status=row["new_status"],
                message=row["message"],
                meta=json.loads(row["meta"]) if isinstance(row["meta"], str) else row["meta"],
                created_at=row["created_at"],
            )
            for row in rows
        ]


def _status_value(status: Any) -> Optional[str]:
    if status is None:
        return None
    return getattr(status, "value", status)
