"""Worker logic for hydration jobs."""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Optional, Set
from uuid import UUID

import asyncpg

from hydration_jobs.audit import AuditLog
from hydration_jobs.config import HydrationConfig
from hydration_jobs.errors import HydrationError, LegacyPayloadError
from hydration_jobs.failures import FailureCode, format_last_error, infer_failure_code
from hydration_jobs.generation import GenerationBackend
from hydration_jobs.handlers.base import HandlerContext
from hydration_jobs.legacy import LegacyJobAdapter
from hydration_jobs.metrics import HydrationMetrics, hydration_metrics
from hydration_jobs.models import AuditEvent, Job, JobStatus, JobType
from hydration_jobs.registry import HandlerRegistry
from hydration_jobs.retry import calculate_backoff
from hydration_jobs.settings import SettingsCache

EVIDENCE_BACKOFF_POLICY = {"type": "exponential", "base_seconds": 0.1, "max_seconds": 2.0}


class ProcessOutcome(str, Enum):
    """Result of processing one job message."""

    COMPLETED = "completed"
    CONTENT_READY = "content_ready"
    SKIPPED = "skipped"
    DEFERRED = "deferred"
    CANCELLED = "cancelled"
    FAILED = "failed"


class JobProcessor:
    """Claims a job, runs its handler and verifies the result."""

    def __init__(
        self,
        config: HydrationConfig,
        db_pool: asyncpg.Pool,
        registry: HandlerRegistry,
        generator: Optional[GenerationBackend],
        settings: Optional[SettingsCache] = None,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[HydrationMetrics] = None,
    ):
        self.config = config
        self.registry = registry
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = metrics or hydration_metrics
        self.ctx = HandlerContext(config, db_pool, generator, self.logger)
        self.store = self.ctx.store
        self.content = self.ctx.content
        self.audit: AuditLog = self.ctx.audit
        self.settings = settings or SettingsCache(
            db_pool, config.settings_ttl_seconds, self.logger
        )

    async def process(self, job_id: UUID) -> ProcessOutcome:
        """
        Process one job.

        Failures are recorded on the job and returned as an outcome rather
        than raised, so the queue does not redeliver a job that already
        failed.
        """
        job = await self.store.find_job(job_id)
        if job is None:
            self.logger.warning(f"Job {job_id} not found, skipping")
            return ProcessOutcome.SKIPPED
        if job.status != JobStatus.PENDING:
            self.logger.info(f"Job {job_id} is {job.status.value}, skipping")
            return ProcessOutcome.SKIPPED

        switch = await self.settings.disabled_reason(job.job_type, include_pause=True)
        if switch:
            self.logger.info(f"Job {job_id} deferred, {switch} is set")
            await self.audit.record_safely(
                job_id,
                AuditEvent.REQUEUED,
                prev_status=JobStatus.PENDING,
                new_status=JobStatus.PENDING,
                message=f"deferred by {switch}",
            )
            return ProcessOutcome.DEFERRED

        claimed = await self.store.claim_job(job_id)
        if claimed is None:
            self.logger.info(f"Job {job_id} already claimed, skipping")
            return ProcessOutcome.SKIPPED

        self.metrics.job_claimed(claimed.job_type)
        await self.audit.record_safely(
            job_id,
            AuditEvent.STARTED,
            prev_status=JobStatus.PENDING,
            new_status=JobStatus.RUNNING,
            meta={"attempt": claimed.attempts},
        )
        self.logger.info(
            f"Executing job {job_id} (type={claimed.job_type.value}, "
            f"attempt={claimed.attempts}/{claimed.max_attempts})"
        )

        handler = self.registry.get_handler(claimed.job_type)
        if handler is None:
            return await self._fail(
                claimed,
                FailureCode.PROMPT_INVALID,
                f"No handler for job type {claimed.job_type.value}",
            )

        try:
            with self.metrics.time_job(claimed.job_type):
                marked = await handler(self.ctx, claimed)
        except Exception as e:
            code = (
                e.failure_code
                if isinstance(e, HydrationError)
                else infer_failure_code(str(e))
            )
            self.logger.error(f"Job {job_id} failed: {str(e)}", exc_info=True)
            return await self._fail(claimed, code, str(e) or type(e).__name__)

        if not marked:
            return ProcessOutcome.CANCELLED

        if not await self.verify_evidence(claimed):
            await self.audit.record_safely(
                job_id,
                AuditEvent.COMPLETION_SKIPPED,
                message="no generated content found after handler",
            )
            last_error = format_last_error(
                FailureCode.DEPENDENCY_MISSING, "no_generated_content"
            )
            if await self.store.revoke_completion(job_id, last_error):
                self.metrics.job_failed(claimed.job_type)
                await self.audit.record_safely(
                    job_id,
                    AuditEvent.FAILED,
                    prev_status=JobStatus.RUNNING,
                    new_status=JobStatus.FAILED,
                    message=last_error,
                )
            self.logger.error(f"Job {job_id} reported success without content")
            return ProcessOutcome.FAILED

        if claimed.is_root and claimed.job_type is JobType.SYLLABUS:
            return ProcessOutcome.CONTENT_READY
        self.metrics.job_completed(claimed.job_type)
        return ProcessOutcome.COMPLETED

    async def verify_evidence(self, job: Job) -> bool:
        """Poll for the records a handler should have written, with bounded backoff."""
        attempts = max(1, self.config.evidence_attempts)
        for attempt in range(1, attempts + 1):
            if await self._has_evidence(job):
                return True
            if attempt < attempts:
                await asyncio.sleep(calculate_backoff(EVIDENCE_BACKOFF_POLICY, attempt))
        return False

    async def _has_evidence(self, job: Job) -> bool:
        language = job.language or "en"
        if job.job_type is JobType.SYLLABUS:
            return await self.content.count_chapters(job.entity_id) > 0
        if job.job_type is JobType.TOPICS:
            return await self.content.count_topics(job.entity_id) > 0
        if job.job_type is JobType.NOTES:
            return await self.content.get_notes(job.entity_id, language) is not None
        if job.job_type is JobType.QUESTIONS:
            found = await self.content.get_question_set(
                job.entity_id, language, job.difficulty
            )
            return found is not None
        return await self.content.count_question_sets(job.entity_id, status="approved") > 0

    async def _fail(self, job: Job, code: FailureCode, message: str) -> ProcessOutcome:
        last_error = format_last_error(code, message)
        failed = await self.store.fail_job(job.id, last_error)
        if failed is None:
            # Cancelled while running; the cancellation stands.
            return ProcessOutcome.CANCELLED
        await self.audit.record_safely(
            job.id,
            AuditEvent.FAILED,
            prev_status=JobStatus.RUNNING,
            new_status=JobStatus.FAILED,
            message=last_error,
            meta={"code": code.value, "attempt": job.attempts},
        )
        self.metrics.job_failed(job.job_type)
        self.logger.error(f"Job {job.id} marked as failed: {last_error}")
        return ProcessOutcome.FAILED


async def handle_message(
    message: dict,
    processor: JobProcessor,
    adapter: LegacyJobAdapter,
    logger: logging.Logger,
) -> bool:
    """
    Process one SQS message.

    Returns:
        True if the message should be deleted from the queue
    """
    try:
        body = json.loads(message["Body"])
        job_id = await adapter.resolve(body)
    except (json.JSONDecodeError, KeyError, LegacyPayloadError) as e:
        logger.warning(f"Dropping unresolvable message {message.get('MessageId')}: {e}")
        return True

    outcome = await processor.process(job_id)
    logger.debug(f"Job {job_id} outcome: {outcome.value}")
    return outcome != ProcessOutcome.DEFERRED


async def run_worker_loop(
    config: HydrationConfig,
    db_pool: asyncpg.Pool,
    sqs_client: Any,
    processor: JobProcessor,
    logger: logging.Logger,
    adapter: Optional[LegacyJobAdapter] = None,
    max_messages: int = 10,
    wait_time_seconds: int = 20,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Run the worker loop that processes jobs from SQS.

    Args:
        config: Hydration configuration
        db_pool: Database connection pool
        sqs_client: aioboto3 SQS client
        processor: Job processor
        logger: Logger instance
        adapter: Legacy id adapter (created from db_pool if omitted)
        max_messages: Maximum messages to receive per poll
        wait_time_seconds: Long polling wait time
        shutdown_event: Optional event to signal shutdown
    """
    queue_url = config.sqs_queue_url
    adapter = adapter or LegacyJobAdapter(db_pool, config.default_max_attempts, logger)
    semaphore = asyncio.Semaphore(config.worker_concurrency)
    in_flight: Set[asyncio.Task] = set()

    async def _run(message: dict) -> None:
        async with semaphore:
            try:
                if await handle_message(message, processor, adapter, logger):
                    await sqs_client.delete_message(
                        QueueUrl=queue_url, ReceiptHandle=message["ReceiptHandle"]
                    )
            except Exception as e:
                logger.error(f"Error processing message: {str(e)}", exc_info=True)
                # Don't delete message - it will become visible again

    logger.info(
        f"Starting worker loop for queue {queue_url} "
        f"(concurrency={config.worker_concurrency})"
    )

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting worker loop")
            break

        free_slots = config.worker_concurrency - len(in_flight)
        if free_slots <= 0:
            await asyncio.wait(set(in_flight), return_when=asyncio.FIRST_COMPLETED)
            continue

        try:
            response = await sqs_client.receive_message(
                QueueUrl=queue_url,
                MaxNumberOfMessages=min(max_messages, free_slots, 10),
                WaitTimeSeconds=wait_time_seconds,
                AttributeNames=["All"],
            )

            messages = response.get("Messages", [])
            if not messages:
                logger.debug("No messages received from SQS")
                continue

            logger.info(f"Received {len(messages)} messages from SQS")
            for message in messages:
                task = asyncio.create_task(_run(message))
                in_flight.add(task)
                task.add_done_callback(in_flight.discard)

        except Exception as e:
            logger.error(f"Error in worker loop: {str(e)}", exc_info=True)
            await asyncio.sleep(5)

    if in_flight:
        logger.info(f"Waiting for {len(in_flight)} in-flight jobs")
        await asyncio.gather(*in_flight, return_exceptions=True)
