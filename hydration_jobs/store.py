"""Database store layer for hydration jobs."""

import json
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

import asyncpg

from hydration_jobs.errors import JobNotFoundError
from hydration_jobs.failures import FailureCode, format_last_error
from hydration_jobs.models import EntityType, Job, JobStatus, JobType

_ACTIVE = [JobStatus.PENDING.value, JobStatus.RUNNING.value]


class JobStore:
    """Database layer for job operations."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_root_job(
        self,
        conn: asyncpg.Connection,
        id: UUID,
        job_type: JobType,
        entity_type: EntityType,
        entity_id: str,
        payload: Dict[str, Any],
        max_attempts: int,
        language: Optional[str] = None,
        difficulty: Optional[str] = None,
    ) -> Job:
        """Insert a level-1 job that is its own root. Must run inside a transaction."""
        row = await conn.fetchrow(
            """
            INSERT INTO hydration_jobs (
                id, root_id, parent_id, job_type, hierarchy_level, entity_type,
                entity_id, language, difficulty, payload, status, max_attempts
            ) VALUES ($1, $1, NULL, $2, 1, $3, $4, $5, $6, $7, $8, $9)
            RETURNING *
            """,
            id,
            JobType(job_type).value,
            EntityType(entity_type).value,
            entity_id,
            language,
            difficulty,
            json.dumps(payload),
            JobStatus.PENDING.value,
            max_attempts,
        )
        return self._row_to_job(row)

    async def insert_child_job_if_absent(
        self,
        conn: asyncpg.Connection,
        id: UUID,
        root_id: UUID,
        parent_id: UUID,
        job_type: JobType,
        hierarchy_level: int,
        entity_type: EntityType,
        entity_id: str,
        payload: Dict[str, Any],
        max_attempts: int,
        language: Optional[str] = None,
        difficulty: Optional[str] = None,
    ) -> Optional[Job]:
        """
        Insert a cascade child unless one already exists for the same
        (root, level, entity, difficulty).

        Returns:
            The new job, or None when the child already existed
        """
        row = await conn.fetchrow(
            """
            INSERT INTO hydration_jobs (
                id, root_id, parent_id, job_type, hierarchy_level, entity_type,
                entity_id, language, difficulty, payload, status, max_attempts
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
            ON CONFLICT (root_id, hierarchy_level, entity_id, (COALESCE(difficulty, '')))
                WHERE parent_id IS NOT NULL
            DO NOTHING
            RETURNING *
            """,
            id,
            root_id,
            parent_id,
            JobType(job_type).value,
            hierarchy_level,
            EntityType(entity_type).value,
            entity_id,
            language,
            difficulty,
            json.dumps(payload),
            JobStatus.PENDING.value,
            max_attempts,
        )
        return self._row_to_job(row) if row else None

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        job = await self.find_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def find_job(self, job_id: UUID) -> Optional[Job]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM hydration_jobs WHERE id = $1", job_id)
        return self._row_to_job(row) if row else None

    async def find_active_job(
        self,
        job_type: JobType,
        entity_type: EntityType,
        entity_id: str,
        difficulty: Optional[str] = None,
    ) -> Optional[Job]:
        """Find a pending or running job for the same target, oldest first."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM hydration_jobs
                WHERE job_type = $1
                  AND entity_type = $2
                  AND entity_id = $3
                  AND COALESCE(difficulty, '') = COALESCE($4, '')
                  AND status = ANY($5::text[])
                ORDER BY created_at ASC
                LIMIT 1
                """,
                JobType(job_type).value,
                EntityType(entity_type).value,
                entity_id,
                difficulty,
                _ACTIVE,
            )
        return self._row_to_job(row) if row else None

    async def list_jobs(
        self,
        root_id: Optional[UUID] = None,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs with optional filters."""
        query = "SELECT * FROM hydration_jobs WHERE 1=1"
        params = []
        param_idx = 1

        if root_id:
            query += f" AND root_id = ${param_idx}"
            params.append(root_id)
            param_idx += 1

        if status:
            query += f" AND status = ${param_idx}"
            params.append(status)
            param_idx += 1

        if job_type:
            query += f" AND job_type = ${param_idx}"
            params.append(job_type)
            param_idx += 1

        query += f" ORDER BY hierarchy_level ASC, created_at ASC LIMIT ${param_idx}"
        params.append(limit)

        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(query, *params)

        return [self._row_to_job(row) for row in rows]

    async def claim_job(self, job_id: UUID) -> Optional[Job]:
        """
        Atomically move a pending job to running.

        Returns None when the job is not pending, which means another worker
        already owns it or it is terminal.
        """
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE hydration_jobs
                SET status = $2,
                    attempts = attempts + 1,
                    locked_at = now(),
                    updated_at = now()
                WHERE id = $1 AND status = $3
                RETURNING *
                """,
                job_id,
                JobStatus.RUNNING.value,
                JobStatus.PENDING.value,
            )
        return self._row_to_job(row) if row else None

    async def complete_job(
        self, conn: asyncpg.Connection, job_id: UUID, await_children: bool = False
    ) -> Optional[Job]:
        """
        Record that a running job produced its content.

        Jobs that await children stay running with content_ready set; others
        become completed. Returns None when the job is no longer running.
        """
        if await_children:
            row = await conn.fetchrow(
                """
                UPDATE hydration_jobs
                SET content_ready = TRUE,
                    locked_at = NULL,
                    last_error = NULL,
                    updated_at = now()
                WHERE id = $1 AND status = $2
                RETURNING *
                """,
                job_id,
                JobStatus.RUNNING.value,
            )
        else:
            row = await conn.fetchrow(
                """
                UPDATE hydration_jobs
                SET status = $3,
                    content_ready = TRUE,
                    locked_at = NULL,
                    last_error = NULL,
                    completed_at = now(),
                    updated_at = now()
                WHERE id = $1 AND status = $2
                RETURNING *
                """,
                job_id,
                JobStatus.RUNNING.value,
                JobStatus.COMPLETED.value,
            )
        return self._row_to_job(row) if row else None

    async def fail_job(
        self, job_id: UUID, last_error: str, conn: Optional[asyncpg.Connection] = None
    ) -> Optional[Job]:
        """Mark a non-terminal job as failed. Returns None if it was already terminal."""
        query = """
            UPDATE hydration_jobs
            SET status = $2,
                last_error = $3,
                locked_at = NULL,
                completed_at = now(),
                updated_at = now()
            WHERE id = $1 AND status = ANY($4::text[])
            RETURNING *
        """
        args = (job_id, JobStatus.FAILED.value, last_error, _ACTIVE)
        if conn is not None:
            row = await conn.fetchrow(query, *args)
        else:
            async with self.db_pool.acquire() as pooled:
                row = await pooled.fetchrow(query, *args)
        return self._row_to_job(row) if row else None

    async def revoke_completion(self, job_id: UUID, last_error: str) -> Optional[Job]:
        """Fail a job whose reported completion has no generated content behind it."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE hydration_jobs
                SET status = $2,
                    content_ready = FALSE,
                    last_error = $3,
                    locked_at = NULL,
                    completed_at = now(),
                    updated_at = now()
                WHERE id = $1
                  AND (status = $4 OR (status = $5 AND content_ready))
                RETURNING *
                """,
                job_id,
                JobStatus.FAILED.value,
                last_error,
                JobStatus.COMPLETED.value,
                JobStatus.RUNNING.value,
            )
        return self._row_to_job(row) if row else None

    async def cancel_job(self, conn: asyncpg.Connection, job_id: UUID) -> Optional[Job]:
        """Cancel a non-terminal job. Returns None if it was already terminal."""
        row = await conn.fetchrow(
            """
            UPDATE hydration_jobs
            SET status = $2,
                locked_at = NULL,
                completed_at = now(),
                updated_at = now()
            WHERE id = $1 AND status = ANY($3::text[])
            RETURNING *
            """,
            job_id,
            JobStatus.CANCELLED.value,
            _ACTIVE,
        )
        return self._row_to_job(row) if row else None

    async def requeue_failed_job(
        self, conn: asyncpg.Connection, job_id: UUID, reset_attempts: bool = False
    ) -> Optional[Job]:
        """
        Move a failed job back to pending.

        Without reset_attempts only jobs with attempts left are moved; with it
        the attempt counter starts over at zero.
        """
        row = await conn.fetchrow(
            """
            UPDATE hydration_jobs
            SET status = $2,
                attempts = CASE WHEN $4 THEN 0 ELSE attempts END,
                last_error = NULL,
                locked_at = NULL,
                completed_at = NULL,
                updated_at = now()
            WHERE id = $1 AND status = $3 AND ($4 OR attempts < max_attempts)
            RETURNING *
            """,
            job_id,
            JobStatus.PENDING.value,
            JobStatus.FAILED.value,
            reset_attempts,
        )
        return self._row_to_job(row) if row else None

    async def reopen_root(
        self, conn: asyncpg.Connection, root_id: UUID, level: int
    ) -> Optional[Job]:
        """
        Put a root back to running with its frontier no deeper than level.

        A failed root is reopened; a running root only has its frontier moved
        back. Returns None if the root is completed or cancelled.
        """
        row = await conn.fetchrow(
            """
            UPDATE hydration_jobs
            SET status = $3,
                frontier_level = LEAST(frontier_level, $2),
                last_error = CASE WHEN status = $4 THEN NULL ELSE last_error END,
                completed_at = NULL,
                updated_at = now()
            WHERE id = $1
              AND parent_id IS NULL
              AND status = ANY($5::text[])
            RETURNING *
            """,
            root_id,
            level,
            JobStatus.RUNNING.value,
            JobStatus.FAILED.value,
            [JobStatus.RUNNING.value, JobStatus.FAILED.value],
        )
        return self._row_to_job(row) if row else None

    async def revert_stale_claims(
        self, conn: asyncpg.Connection, ttl_seconds: float
    ) -> Tuple[List[Job], List[Job]]:
        """
        Release running jobs claimed more than ttl_seconds ago.

        Jobs with attempts left go back to pending, the rest are failed.
        Roots waiting on children (content_ready) are not claims and are
        left alone.

        Returns:
            (requeued jobs, failed jobs)
        """
        requeued = await conn.fetch(
            """
            UPDATE hydration_jobs
            SET status = $1,
                locked_at = NULL,
                updated_at = now()
            WHERE status = $2
              AND content_ready = FALSE
              AND locked_at < now() - make_interval(secs => $3)
              AND attempts < max_attempts
            RETURNING *
            """,
            JobStatus.PENDING.value,
            JobStatus.RUNNING.value,
            float(ttl_seconds),
        )
        failed = await conn.fetch(
            """
            UPDATE hydration_jobs
            SET status = $1,
                locked_at = NULL,
                last_error = $4,
                completed_at = now(),
                updated_at = now()
            WHERE status = $2
              AND content_ready = FALSE
              AND locked_at < now() - make_interval(secs => $3)
              AND attempts >= max_attempts
            RETURNING *
            """,
            JobStatus.FAILED.value,
            JobStatus.RUNNING.value,
            float(ttl_seconds),
            format_last_error(FailureCode.TIMEOUT, "claim expired"),
        )
        return (
            [self._row_to_job(row) for row in requeued],
            [self._row_to_job(row) for row in failed],
        )

    async def list_running_roots(self, limit: int) -> List[Job]:
        """Running cascade roots, oldest first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM hydration_jobs
                WHERE parent_id IS NULL
                  AND root_id = id
                  AND status = $1
                  AND job_type = $2
                ORDER BY created_at ASC
                LIMIT $3
                """,
                JobStatus.RUNNING.value,
                JobType.SYLLABUS.value,
                limit,
            )
        return [self._row_to_job(row) for row in rows]

    async def count_level_statuses(
        self, root_id: UUID, level: int
    ) -> Dict[str, Tuple[int, int]]:
        """
        Count jobs of one cascade level grouped by status.

        Returns:
            status -> (total, content_ready count)
        """
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT status,
                       COUNT(*) AS total,
                       COUNT(*) FILTER (WHERE content_ready) AS ready
                FROM hydration_jobs
                WHERE root_id = $1 AND hierarchy_level = $2
                GROUP BY status
                """,
                root_id,
                level,
            )
        return {row["status"]: (row["total"], row["ready"]) for row in rows}

    async def list_level_jobs(self, root_id: UUID, level: int) -> List[Job]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM hydration_jobs
                WHERE root_id = $1 AND hierarchy_level = $2
                ORDER BY created_at ASC
                """,
                root_id,
                level,
            )
        return [self._row_to_job(row) for row in rows]

    async def count_level_jobs(self, root_id: UUID, level: int) -> int:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT COUNT(*) FROM hydration_jobs
                WHERE root_id = $1 AND hierarchy_level = $2
                """,
                root_id,
                level,
            )

    async def advance_frontier(self, root_id: UUID, from_level: int, to_level: int) -> bool:
        """Compare-and-swap the root's frontier level."""
        async with self.db_pool.acquire() as conn:
            result = await conn.execute(
                """
                UPDATE hydration_jobs
                SET frontier_level = $3, updated_at = now()
                WHERE id = $1 AND frontier_level = $2 AND status = $4
                """,
                root_id,
                from_level,
                to_level,
                JobStatus.RUNNING.value,
            )
        return affected_rows(result) == 1

    async def count_failed_descendants(self, root_id: UUID) -> int:
        """Count failed or cancelled jobs under a root, excluding the root."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT COUNT(*) FROM hydration_jobs
                WHERE root_id = $1
                  AND id <> $1
                  AND status = ANY($2::text[])
                """,
                root_id,
                [JobStatus.FAILED.value, JobStatus.CANCELLED.value],
            )

    async def count_active_descendants(self, root_id: UUID) -> int:
        """Count pending or running jobs under a root at any level."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT COUNT(*) FROM hydration_jobs
                WHERE root_id = $1
                  AND id <> $1
                  AND status = ANY($2::text[])
                """,
                root_id,
                _ACTIVE,
            )

    async def lowest_active_level(self, root_id: UUID) -> Optional[int]:
        """Shallowest level with a pending or running descendant, if any."""
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                """
                SELECT MIN(hierarchy_level) FROM hydration_jobs
                WHERE root_id = $1
                  AND id <> $1
                  AND status = ANY($2::text[])
                """,
                root_id,
                _ACTIVE,
            )

    async def finalize_root(
        self,
        conn: asyncpg.Connection,
        root_id: UUID,
        status: JobStatus,
        last_error: Optional[str] = None,
    ) -> Optional[Job]:
        """Move a running root to a terminal status. None if it was not running."""
        row = await conn.fetchrow(
            """
            UPDATE hydration_jobs
            SET status = $2,
                last_error = $3,
                locked_at = NULL,
                completed_at = now(),
                updated_at = now()
            WHERE id = $1 AND status = $4 AND parent_id IS NULL
            RETURNING *
            """,
            root_id,
            JobStatus(status).value,
            last_error,
            JobStatus.RUNNING.value,
        )
        return self._row_to_job(row) if row else None

    async def update_root_progress(self, root_id: UUID, counters: Dict[str, int]) -> None:
        """Write progress counters onto a root job."""
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE hydration_jobs
                SET chapters_expected = $2,
                    chapters_completed = $3,
                    topics_expected = $4,
                    topics_completed = $5,
                    notes_expected = $6,
                    notes_completed = $7,
                    questions_expected = $8,
                    questions_completed = $9,
                    updated_at = now()
                WHERE id = $1
                """,
                root_id,
                counters.get("chapters_expected", 0),
                counters.get("chapters_completed", 0),
                counters.get("topics_expected", 0),
                counters.get("topics_completed", 0),
                counters.get("notes_expected", 0),
                counters.get("notes_completed", 0),
                counters.get("questions_expected", 0),
                counters.get("questions_completed", 0),
            )

    def _row_to_job(self, row: asyncpg.Record) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            root_id=row["root_id"],
            parent_id=row["parent_id"],
            job_type=JobType(row["job_type"]),
            hierarchy_level=row["hierarchy_level"],
            entity_type=EntityType(row["entity_type"]),
            entity_id=row["entity_id"],
            status=JobStatus(row["status"]),
            payload=json.loads(row["payload"])
            if isinstance(row["payload"], str)
            else row["payload"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            language=row["language"],
            difficulty=row["difficulty"],
            locked_at=row["locked_at"],
            last_error=row["last_error"],
            content_ready=row["content_ready"],
            frontier_level=row["frontier_level"],
            chapters_expected=row["chapters_expected"],
            chapters_completed=row["chapters_completed"],
            topics_expected=row["topics_expected"],
            topics_completed=row["topics_completed"],
            notes_expected=row["notes_expected"],
            notes_completed=row["notes_completed"],
            questions_expected=row["questions_expected"],
            questions_completed=row["questions_completed"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            completed_at=row["completed_at"],
        )


def affected_rows(status: str) -> int:
    # asyncpg returns command tags like "UPDATE 1"
    return int(status.split()[-1]) if status else 0
