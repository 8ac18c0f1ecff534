"""Level-by-level reconciliation of cascade roots."""

import logging
import socket
from typing import Dict, List, NamedTuple, Optional, Tuple
from uuid import UUID, uuid4

import asyncpg

from hydration_jobs.audit import AuditLog
from hydration_jobs.config import HydrationConfig
from hydration_jobs.content import CurriculumStore
from hydration_jobs.failures import FailureCode, format_last_error
from hydration_jobs.metrics import HydrationMetrics, hydration_metrics
from hydration_jobs.models import (
    ACTIVE_STATUSES,
    AuditEvent,
    Difficulty,
    EntityType,
    Job,
    JobStatus,
    JobType,
)
from hydration_jobs.outbox import OutboxStore
from hydration_jobs.retry import run_with_retry
from hydration_jobs.store import JobStore

LOCK_NAME = "hydration_reconciler"


class CascadeLevel(NamedTuple):
    level: int
    job_type: JobType
    entity_type: EntityType


CASCADE = (
    CascadeLevel(1, JobType.SYLLABUS, EntityType.SUBJECT),
    CascadeLevel(2, JobType.TOPICS, EntityType.CHAPTER),
    CascadeLevel(3, JobType.NOTES, EntityType.TOPIC),
    CascadeLevel(4, JobType.QUESTIONS, EntityType.TOPIC),
)
MAX_LEVEL = CASCADE[-1].level

# (entity_id, parent entity_id, difficulty)
ChildTarget = Tuple[str, str, Optional[str]]


class ReconcileReport:
    """Summary of one reconciliation pass."""

    def __init__(self, skipped: bool = False):
        self.skipped = skipped
        self.roots_seen = 0
        self.children_created = 0
        self.levels_advanced = 0
        self.frontiers_rewound = 0
        self.roots_completed = 0
        self.roots_failed = 0
        self.errors = 0

    def __repr__(self) -> str:
        return (
            f"ReconcileReport(skipped={self.skipped}, roots_seen={self.roots_seen}, "
            f"children_created={self.children_created}, levels_advanced={self.levels_advanced}, "
            f"frontiers_rewound={self.frontiers_rewound}, "
            f"roots_completed={self.roots_completed}, roots_failed={self.roots_failed}, "
            f"errors={self.errors})"
        )


class HydrationReconciler:
    """Advances running roots through the cascade and finalizes them."""

    def __init__(
        self,
        config: HydrationConfig,
        db_pool: asyncpg.Pool,
        logger: Optional[logging.Logger] = None,
        holder_id: Optional[str] = None,
        metrics: Optional[HydrationMetrics] = None,
    ):
        self.config = config
        self.db_pool = db_pool
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = metrics or hydration_metrics
        self.holder_id = holder_id or f"{socket.gethostname()}:{uuid4()}"
        self.store = JobStore(db_pool)
        self.content = CurriculumStore(db_pool)
        self.outbox = OutboxStore(db_pool)
        self.audit = AuditLog(db_pool, self.logger)

    async def reconcile(self) -> ReconcileReport:
        """Run one pass; returns a skipped report if another holder has the lock."""
        if not await self.acquire_lock():
            self.logger.info("Reconciler lock held elsewhere, skipping pass")
            return ReconcileReport(skipped=True)

        report = ReconcileReport()
        try:
            roots = await self.store.list_running_roots(self.config.reconciler_batch_size)
            for root in roots:
                report.roots_seen += 1
                try:
                    await self.reconcile_root(root, report)
                except Exception as e:
                    report.errors += 1
                    self.logger.error(
                        f"Error reconciling root {root.id}: {str(e)}", exc_info=True
                    )
        finally:
            await self.release_lock()

        self.logger.info(f"Reconciliation pass finished: {report!r}")
        return report

    async def acquire_lock(self) -> bool:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO hydration_reconciler_lock (name, holder, locked_until)
                VALUES ($1, $2, now() + make_interval(secs => $3))
                ON CONFLICT (name) DO UPDATE
                SET holder = EXCLUDED.holder,
                    locked_until = EXCLUDED.locked_until,
                    created_at = now()
                WHERE hydration_reconciler_lock.locked_until < now()
                RETURNING holder
                """,
                LOCK_NAME,
                self.holder_id,
                float(self.config.reconciler_lock_ttl_seconds),
            )
        return row is not None

    async def release_lock(self) -> None:
        try:
            async with self.db_pool.acquire() as conn:
                await conn.execute(
                    "DELETE FROM hydration_reconciler_lock WHERE name = $1 AND holder = $2",
                    LOCK_NAME,
                    self.holder_id,
                )
        except Exception as e:
            # The lock expires on its own after the TTL.
            self.logger.error(f"Failed to release reconciler lock: {e}")

    async def reconcile_root(self, root: Job, report: ReconcileReport) -> None:
        level = await self.rewind_frontier(root, report)
        while await self.level_resolved(root, level):
            if level >= MAX_LEVEL:
                await self.finalize(root, report)
                break

            next_level = level + 1
            report.children_created += await self.fan_out(root, next_level)
            if not await self.store.advance_frontier(root.id, level, next_level):
                self.logger.warning(f"Root {root.id} frontier moved concurrently")
                break
            report.levels_advanced += 1
            self.logger.info(f"Root {root.id} advanced to level {next_level}")
            level = next_level

        await self.update_progress(root)

    async def rewind_frontier(self, root: Job, report: ReconcileReport) -> int:
        """
        Move the frontier back to the shallowest level with active jobs.

        A resubmitted child below the frontier has to finish, and its own
        children have to be fanned out, before deeper levels count as done.
        """
        level = root.frontier_level
        active_level = await self.store.lowest_active_level(root.id)
        if active_level is None or active_level >= level:
            return level

        async with self.db_pool.acquire() as conn:
            reopened = await self.store.reopen_root(conn, root.id, active_level)
        if reopened is None:
            return level

        report.frontiers_rewound += 1
        self.logger.info(
            f"Root {root.id} frontier moved back from level {level} to {reopened.frontier_level}"
        )
        return reopened.frontier_level

    async def level_resolved(self, root: Job, level: int) -> bool:
        """Every job of the level is terminal or has its content ready."""
        if level == 1:
            return root.content_ready

        counts = await self.store.count_level_statuses(root.id, level)
        unresolved = sum(
            total - ready
            for status, (total, ready) in counts.items()
            if JobStatus(status) in ACTIVE_STATUSES
        )
        return unresolved == 0

    async def fan_out(self, root: Job, level: int) -> int:
        """Create the jobs of one level. Safe to repeat; returns jobs created."""
        cascade_level = CASCADE[level - 1]
        children = await self._child_targets(root, level)
        if level == 2:
            parents = {root.entity_id: root.id}
        else:
            parents = {
                job.entity_id: job.id
                for job in await self.store.list_level_jobs(root.id, level - 1)
            }

        created = 0
        for entity_id, parent_entity_id, difficulty in children:
            parent_id = parents.get(parent_entity_id)
            if parent_id is None:
                self.logger.warning(
                    f"Root {root.id}: no level {level - 1} job for {parent_entity_id}, "
                    f"skipping child {entity_id}"
                )
                continue
            if await self._insert_child(root, cascade_level, parent_id, entity_id, difficulty):
                created += 1

        if created:
            self.logger.info(f"Root {root.id}: created {created} level {level} jobs")
        return created

    async def _child_targets(self, root: Job, level: int) -> List[ChildTarget]:
        if level == 2:
            chapters = await self.content.list_chapters(root.entity_id)
            return [(chapter["id"], root.entity_id, None) for chapter in chapters]

        topics = await self.content.list_subject_topics(root.entity_id)
        if level == 3:
            return [(topic["id"], topic["chapter_id"], None) for topic in topics]

        return [
            (topic["id"], topic["id"], difficulty)
            for topic in topics
            for difficulty in self._difficulties(root)
        ]

    def _difficulties(self, root: Job) -> List[str]:
        requested = root.payload.get("difficulties") or self.config.difficulties
        allowed = {d.value for d in Difficulty}
        return [d for d in requested if d in allowed]

    async def _insert_child(
        self,
        root: Job,
        cascade_level: CascadeLevel,
        parent_id: UUID,
        entity_id: str,
        difficulty: Optional[str],
    ) -> bool:
        async def _transaction() -> bool:
            async with self.db_pool.acquire() as conn:
                async with conn.transaction():
                    job = await self.store.insert_child_job_if_absent(
                        conn,
                        id=uuid4(),
                        root_id=root.id,
                        parent_id=parent_id,
                        job_type=cascade_level.job_type,
                        hierarchy_level=cascade_level.level,
                        entity_type=cascade_level.entity_type,
                        entity_id=entity_id,
                        payload={},
                        max_attempts=self.config.child_max_attempts,
                        language=root.language,
                        difficulty=difficulty,
                    )
                    if job is None:
                        return False
                    await self.outbox.insert_for_job(conn, self.config.queue_name, job)
                    await self.audit.record(
                        job.id,
                        AuditEvent.CREATED,
                        new_status=JobStatus.PENDING,
                        meta={"root_id": str(root.id), "level": cascade_level.level},
                        conn=conn,
                    )
                    return True

        inserted = await run_with_retry(_transaction, logger=self.logger)
        if inserted:
            self.metrics.job_created(cascade_level.job_type)
        return inserted

    async def finalize(self, root: Job, report: ReconcileReport) -> None:
        """Complete the root, or fail it if any descendant failed or was cancelled."""
        active = await self.store.count_active_descendants(root.id)
        if active:
            self.logger.info(f"Root {root.id} still has {active} active jobs, not finalizing")
            return

        failed = await self.store.count_failed_descendants(root.id)
        if failed == 0:
            status, last_error, event = JobStatus.COMPLETED, None, AuditEvent.COMPLETED
        else:
            status = JobStatus.FAILED
            last_error = format_last_error(
                FailureCode.CHILD_FAILED, f"{failed} descendant job(s) failed"
            )
            event = AuditEvent.FAILED

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                done = await self.store.finalize_root(conn, root.id, status, last_error)
                if done is None:
                    return
                await self.audit.record(
                    root.id,
                    event,
                    prev_status=JobStatus.RUNNING,
                    new_status=status,
                    message=last_error,
                    meta={"failed_descendants": failed},
                    conn=conn,
                )

        if status is JobStatus.COMPLETED:
            report.roots_completed += 1
            self.metrics.job_completed(root.job_type)
            self.logger.info(f"Root {root.id} completed")
        else:
            report.roots_failed += 1
            self.metrics.job_failed(root.job_type)
            self.logger.warning(f"Root {root.id} failed: {last_error}")

    async def update_progress(self, root: Job) -> Dict[str, int]:
        """Recount progress from generated records and write it to the root."""
        counts = await self.content.count_subject_progress(root.entity_id)
        counters = {
            "chapters_expected": counts["chapters"],
            "chapters_completed": counts["chapters"],
            "topics_expected": counts["topics"],
            "topics_completed": counts["topics"],
            "notes_expected": await self.store.count_level_jobs(root.id, 3),
            "notes_completed": counts["notes"],
            "questions_expected": await self.store.count_level_jobs(root.id, 4),
            "questions_completed": counts["question_sets"],
        }
        await self.store.update_root_progress(root.id, counters)
        return counters
