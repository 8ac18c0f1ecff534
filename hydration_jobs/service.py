"""High-level service layer for hydration job operations."""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import asyncpg

from hydration_jobs.audit import AuditLog
from hydration_jobs.config import HydrationConfig
from hydration_jobs.content import CurriculumStore
from hydration_jobs.errors import (
    DispatchError,
    DispatchResolutionError,
    EntityNotFoundError,
    InvalidTransitionError,
    JobValidationError,
)
from hydration_jobs.failures import FailureCode, is_retryable, parse_last_error
from hydration_jobs.metrics import HydrationMetrics, hydration_metrics
from hydration_jobs.models import (
    CONTENT_JOB_TYPES,
    JOB_ENTITY_SCOPES,
    AuditEntry,
    AuditEvent,
    Difficulty,
    EntityType,
    Job,
    JobStatus,
    JobType,
    OutboxEntry,
    SubmitResult,
    normalize_job_type,
)
from hydration_jobs.outbox import OutboxDispatcher, OutboxStore
from hydration_jobs.settings import SettingsCache
from hydration_jobs.store import JobStore

_DIFFICULTIES = {d.value for d in Difficulty}


class HydrationJobService:
    """High-level API for submitting and managing hydration jobs."""

    def __init__(
        self,
        config: HydrationConfig,
        db_pool: asyncpg.Pool,
        dispatcher: Optional[OutboxDispatcher] = None,
        settings: Optional[SettingsCache] = None,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[HydrationMetrics] = None,
    ):
        self.config = config
        self.db_pool = db_pool
        self.dispatcher = dispatcher
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = metrics or hydration_metrics
        self.store = JobStore(db_pool)
        self.outbox = OutboxStore(db_pool)
        self.content = CurriculumStore(db_pool)
        self.audit = AuditLog(db_pool, self.logger)
        self.settings = settings or SettingsCache(
            db_pool, config.settings_ttl_seconds, self.logger
        )

    async def submit(
        self,
        job_type: Any,
        entity_type: Any,
        entity_id: str,
        payload: Optional[Dict[str, Any]] = None,
        max_attempts: Optional[int] = None,
    ) -> SubmitResult:
        """
        Submit a hydration job.

        Args:
            job_type: Job type name (case-insensitive; "tests" means assemble)
            entity_type: SUBJECT, CHAPTER or TOPIC
            entity_id: Target entity id
            payload: Job parameters (language, difficulty, difficulties, ...)
            max_attempts: Maximum attempts (defaults to config)

        Returns:
            SubmitResult with the job id and whether it already existed

        Raises:
            JobValidationError: If the request is invalid or the entity is unknown
            HydrationDisabledError: If a kill switch blocks the job type
            DispatchResolutionError: If the job can never be routed to a queue
        """
        normalized = normalize_job_type(job_type)
        if normalized is None:
            self._reject(f"Unknown job type: {job_type!r}")

        try:
            target = EntityType(str(entity_type or "").strip().upper())
        except ValueError:
            self._reject(f"Unknown entity type: {entity_type!r}")
        expected = JOB_ENTITY_SCOPES[normalized]
        if target is not expected:
            self._reject(
                f"{normalized.value} jobs operate on {expected.value} entities, "
                f"not {target.value}"
            )
        if not entity_id:
            self._reject("entity_id is required")

        await self.settings.check_hydration_enabled(normalized)

        payload = dict(payload or {})
        language = payload.get("language")
        if normalized in CONTENT_JOB_TYPES and not language:
            self._reject(f"language is required for {normalized.value} jobs")

        difficulty = payload.get("difficulty")
        if normalized is JobType.QUESTIONS and not difficulty:
            self._reject("difficulty is required for questions jobs")
        if difficulty is not None and difficulty not in _DIFFICULTIES:
            self._reject(f"Unknown difficulty: {difficulty!r}")
        if normalized not in (JobType.QUESTIONS, JobType.ASSEMBLE):
            difficulty = None
        for requested in payload.get("difficulties") or []:
            if requested not in _DIFFICULTIES:
                self._reject(f"Unknown difficulty in difficulties: {requested!r}")

        context = await self.content.get_entity_context(target, entity_id)
        if context is None:
            self.logger.warning(f"Rejected {normalized.value} job: {target.value} {entity_id} not found")
            raise EntityNotFoundError(target.value, entity_id)
        if normalized is JobType.SYLLABUS and (
            not context.get("board_id") or context.get("grade") is None
        ):
            self._reject(f"Subject {entity_id} has no board and grade")

        existing = await self.store.find_active_job(normalized, target, entity_id, difficulty)
        if existing:
            self.logger.info(
                f"Active {normalized.value} job {existing.id} exists for {target.value} {entity_id}"
            )
            return SubmitResult(existing.id, existing=True)

        payload["resolved_meta"] = context
        try:
            job, entry = await self._create_job(
                normalized,
                target,
                entity_id,
                payload,
                max_attempts or self.config.default_max_attempts,
                language,
                difficulty,
            )
        except asyncpg.UniqueViolationError:
            existing = await self.store.find_active_job(
                normalized, target, entity_id, difficulty
            )
            if existing is None:
                raise
            self.logger.info(f"Concurrent submission resolved to job {existing.id}")
            return SubmitResult(existing.id, existing=True)

        self.logger.info(
            f"Submitted {normalized.value} job {job.id} for {target.value} {entity_id}"
        )
        await self._dispatch(job, entry)
        return SubmitResult(job.id, existing=False)

    async def cancel(self, job_id: UUID, reason: Optional[str] = None) -> Job:
        """
        Cancel a pending or running job.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is already terminal
        """
        job = await self.store.get_job(job_id)
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                cancelled = await self.store.cancel_job(conn, job_id)
                if cancelled is None:
                    current = await self.store.get_job(job_id)
                    raise InvalidTransitionError(
                        job_id, current.status.value, JobStatus.CANCELLED.value
                    )
                await self.audit.record(
                    job_id,
                    AuditEvent.CANCELLED,
                    prev_status=job.status,
                    new_status=JobStatus.CANCELLED,
                    message=reason,
                    conn=conn,
                )
        self.logger.info(f"Job {job_id} cancelled")
        return cancelled

    async def get_job(self, job_id: UUID) -> Job:
        """Get a job by ID."""
        return await self.store.get_job(job_id)

    async def get_audit_trail(self, job_id: UUID) -> List[AuditEntry]:
        """Audit entries of a job, oldest first."""
        return await self.audit.list_for_job(job_id)

    async def list_jobs(
        self,
        *,
        root_id: Optional[UUID] = None,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Job]:
        """List jobs with optional filters."""
        return await self.store.list_jobs(
            root_id=root_id, status=status, job_type=job_type, limit=limit
        )

    async def resubmit_failed(self, job_id: UUID, reset_attempts: bool = False) -> Job:
        """
        Put a failed job back in the queue.

        Any failure code may be resubmitted. Resubmitting a child reopens its
        root in the same transaction: a failed root goes back to running and
        its frontier moves back to the child's level, so the reconciler fans
        out the child's descendants and finalizes the root again.

        Args:
            job_id: Failed job to resubmit
            reset_attempts: Start the job's attempt counter over at zero

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidTransitionError: If the job is not failed
            JobValidationError: If no attempts are left and reset_attempts is
                not set, the job's root is completed or cancelled, or the job
                is a root that already wrote its content
        """
        job = await self.store.get_job(job_id)
        if job.status != JobStatus.FAILED:
            raise InvalidTransitionError(job_id, job.status.value, JobStatus.PENDING.value)

        code, _ = parse_last_error(job.last_error)
        code = code or FailureCode.UNKNOWN
        if job.attempts >= job.max_attempts and not reset_attempts:
            raise JobValidationError(
                f"Job {job_id} has used all {job.max_attempts} attempts, "
                f"resubmit with reset_attempts to run it again"
            )

        root = None
        if not job.is_root:
            root = await self.store.get_job(job.root_id)
            if root.status not in (JobStatus.RUNNING, JobStatus.FAILED):
                raise JobValidationError(
                    f"Root job {root.id} is already {root.status.value}"
                )
        elif job.content_ready:
            raise JobValidationError(
                f"Root job {job_id} already wrote its content, resubmit its failed children"
            )

        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                requeued = await self.store.requeue_failed_job(conn, job_id, reset_attempts)
                if requeued is None:
                    current = await self.store.get_job(job_id)
                    raise InvalidTransitionError(
                        job_id, current.status.value, JobStatus.PENDING.value
                    )
                if root is not None:
                    reopened = await self.store.reopen_root(conn, root.id, job.hierarchy_level)
                    if reopened is None:
                        raise JobValidationError(f"Root job {root.id} finished concurrently")
                    if root.status == JobStatus.FAILED:
                        await self.audit.record(
                            root.id,
                            AuditEvent.REQUEUED,
                            prev_status=JobStatus.FAILED,
                            new_status=JobStatus.RUNNING,
                            message=f"reopened for resubmitted job {job_id}",
                            conn=conn,
                        )
                entry = await self.outbox.insert_for_job(conn, self.config.queue_name, requeued)
                await self.audit.record(
                    job_id,
                    AuditEvent.REQUEUED,
                    prev_status=JobStatus.FAILED,
                    new_status=JobStatus.PENDING,
                    message=job.last_error,
                    meta={
                        "failure_code": code.value,
                        "retryable": is_retryable(code),
                        "reset_attempts": reset_attempts,
                    },
                    conn=conn,
                )

        self.logger.info(f"Job {job_id} resubmitted after {code.value}")
        await self._dispatch(requeued, entry)
        return requeued

    async def reap_stale_claims(self) -> int:
        """
        Release jobs whose worker stopped without finishing them.

        Returns the number of jobs requeued or failed.
        """
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                requeued, failed = await self.store.revert_stale_claims(
                    conn, self.config.claim_ttl_seconds
                )
                for job in requeued:
                    await self.outbox.insert_for_job(conn, self.config.queue_name, job)
                    await self.audit.record(
                        job.id,
                        AuditEvent.REQUEUED,
                        prev_status=JobStatus.RUNNING,
                        new_status=JobStatus.PENDING,
                        message="claim expired",
                        conn=conn,
                    )
                for job in failed:
                    await self.audit.record(
                        job.id,
                        AuditEvent.FAILED,
                        prev_status=JobStatus.RUNNING,
                        new_status=JobStatus.FAILED,
                        message=job.last_error,
                        conn=conn,
                    )

        for job in failed:
            self.metrics.job_failed(job.job_type)
        count = len(requeued) + len(failed)
        if count > 0:
            self.logger.info(
                f"Reaped {count} stale claims ({len(requeued)} requeued, {len(failed)} failed)"
            )
        return count

    async def _create_job(
        self,
        job_type: JobType,
        entity_type: EntityType,
        entity_id: str,
        payload: Dict[str, Any],
        max_attempts: int,
        language: Optional[str],
        difficulty: Optional[str],
    ):
        async with self.db_pool.acquire() as conn:
            async with conn.transaction():
                job = await self.store.insert_root_job(
                    conn,
                    id=uuid4(),
                    job_type=job_type,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    payload=payload,
                    max_attempts=max_attempts,
                    language=language,
                    difficulty=difficulty,
                )
                entry = await self.outbox.insert_for_job(conn, self.config.queue_name, job)
                await self.audit.record(
                    job.id,
                    AuditEvent.CREATED,
                    new_status=JobStatus.PENDING,
                    meta={"outbox_id": str(entry.id)},
                    conn=conn,
                )
        self.metrics.job_created(job.job_type)
        return job, entry

    async def _dispatch(self, job: Job, entry: OutboxEntry) -> None:
        """Best-effort immediate delivery; the outbox drain loop covers failures."""
        if self.dispatcher is None:
            return
        try:
            message_id = await self.dispatcher.dispatch_entry(entry)
        except DispatchResolutionError as e:
            await self.audit.record_safely(
                job.id,
                AuditEvent.ENQUEUE_FAILED,
                message=str(e),
                meta={"outbox_id": str(entry.id)},
            )
            await self.dispatcher.fail_unroutable(entry, str(e))
            self.logger.error(f"Job {job.id} cannot be routed: {e}")
            raise
        except DispatchError as e:
            await self.audit.record_safely(
                job.id,
                AuditEvent.ENQUEUE_FAILED,
                message=str(e),
                meta={"outbox_id": str(entry.id)},
            )
            self.logger.warning(f"Job {job.id} left in outbox for retry: {e}")
            return

        await self.audit.record_safely(
            job.id,
            AuditEvent.ENQUEUED,
            meta={"outbox_id": str(entry.id), "message_id": message_id},
        )

    def _reject(self, reason: str) -> None:
        self.logger.warning(f"Rejected job submission: {reason}")
        raise JobValidationError(reason)
