"""Transactional outbox and its dispatcher to SQS."""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import asyncpg

from hydration_jobs.audit import AuditLog
from hydration_jobs.errors import DispatchError, DispatchResolutionError
from hydration_jobs.failures import FailureCode, format_last_error
from hydration_jobs.metrics import HydrationMetrics, hydration_metrics
from hydration_jobs.models import AuditEvent, Job, JobStatus, OutboxEntry
from hydration_jobs.store import JobStore


def build_job_message(job: Job) -> Dict[str, Any]:
    """Queue message body announcing a job."""
    return {"type": job.job_type.value.upper(), "payload": {"job_id": str(job.id)}}


class OutboxStore:
    """Database layer for outbox rows."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def insert_for_job(
        self, conn: asyncpg.Connection, queue: str, job: Job
    ) -> OutboxEntry:
        """Insert the delivery intent for job. Must share the job's transaction."""
        row = await conn.fetchrow(
            """
            INSERT INTO hydration_outbox (id, queue, payload, meta)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            uuid4(),
            queue,
            json.dumps(build_job_message(job)),
            json.dumps(
                {
                    "job_id": str(job.id),
                    "entity_id": job.entity_id,
                    "level": job.hierarchy_level,
                }
            ),
        )
        return self._row_to_entry(row)

    async def get(self, entry_id: UUID) -> Optional[OutboxEntry]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM hydration_outbox WHERE id = $1", entry_id)
        return self._row_to_entry(row) if row else None

    async def fetch_unsent(self, limit: int) -> List[OutboxEntry]:
        """Oldest unsent rows first."""
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT * FROM hydration_outbox
                WHERE sent_at IS NULL
                ORDER BY created_at ASC
                LIMIT $1
                """,
                limit,
            )
        return [self._row_to_entry(row) for row in rows]

    async def mark_sent(self, entry_id: UUID, last_error: Optional[str] = None) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE hydration_outbox
                SET sent_at = now(), attempts = attempts + 1, last_error = $2
                WHERE id = $1 AND sent_at IS NULL
                """,
                entry_id,
                last_error,
            )

    async def mark_attempt_failed(self, entry_id: UUID, error: str) -> None:
        async with self.db_pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE hydration_outbox
                SET attempts = attempts + 1, last_error = $2
                WHERE id = $1
                """,
                entry_id,
                error,
            )

    def _row_to_entry(self, row: asyncpg.Record) -> OutboxEntry:
        return OutboxEntry(
            id=row["id"],
            queue=row["queue"],
            payload=json.loads(row["payload"])
            if isinstance(row["payload"], str)
            else row["payload"],
            meta=json.loads(row["meta"]) if isinstance(row["meta"], str) else row["meta"],
            attempts=row["attempts"],
            sent_at=row["sent_at"],
            last_error=row["last_error"],
            created_at=row["created_at"],
        )


class OutboxDispatcher:
    """Delivers outbox rows to the SQS work queue."""

    def __init__(
        self,
        db_pool: asyncpg.Pool,
        sqs_client: Any,
        queue_url: str,
        queue_name: str,
        logger: Optional[logging.Logger] = None,
        metrics: Optional[HydrationMetrics] = None,
    ):
        self.sqs_client = sqs_client
        self.queue_url = queue_url
        self.queue_name = queue_name
        self.logger = logger or logging.getLogger(__name__)
        self.metrics = metrics or hydration_metrics
        self.outbox = OutboxStore(db_pool)
        self.store = JobStore(db_pool)
        self.audit = AuditLog(db_pool, self.logger)

    async def dispatch_entry(self, entry: OutboxEntry) -> str:
        """
        Send one outbox row to the queue and mark it sent.

        Returns:
            The SQS message id

        Raises:
            DispatchResolutionError: The row can never be routed; it is marked
                sent with the reason so the drain loop stops picking it up
            DispatchError: The send failed, or the row could not be marked
                sent afterwards; either way the row stays unsent
        """
        if entry.sent_at is not None:
            self.logger.debug(f"Outbox entry {entry.id} already sent")
            return ""

        reason = self._unroutable_reason(entry)
        if reason:
            await self.outbox.mark_sent(entry.id, last_error=reason)
            raise DispatchResolutionError(f"Outbox entry {entry.id}: {reason}")

        try:
            response = await self.sqs_client.send_message(
                QueueUrl=self.queue_url,
                MessageBody=json.dumps(entry.payload),
            )
        except Exception as e:
            await self.outbox.mark_attempt_failed(entry.id, str(e))
            raise DispatchError(f"Failed to send outbox entry {entry.id} to SQS: {e}") from e

        message_id = response.get("MessageId", "")
        try:
            await self.outbox.mark_sent(entry.id)
        except Exception as e:
            # The row stays unsent and is sent again; claims make the duplicate a no-op.
            raise DispatchError(
                f"Outbox entry {entry.id} was sent as message {message_id} "
                f"but could not be marked sent: {e}"
            ) from e
        self.logger.debug(f"Dispatched outbox entry {entry.id} as message {message_id}")
        return message_id

    async def dispatch_batch(self, limit: int = 10) -> int:
        """Drain up to limit unsent rows. Returns how many were sent."""
        entries = await self.outbox.fetch_unsent(limit)
        dispatched = 0
        for entry in entries:
            try:
                await self.dispatch_entry(entry)
                dispatched += 1
            except DispatchResolutionError as e:
                self.logger.error(str(e))
                await self.fail_unroutable(entry, str(e))
            except DispatchError as e:
                self.logger.warning(str(e))
        if dispatched:
            self.logger.info(f"Dispatched {dispatched} outbox entries")
        return dispatched

    async def fail_unroutable(self, entry: OutboxEntry, reason: str) -> None:
        """Fail the job behind an outbox row that can never be delivered."""
        if not entry.job_id:
            return
        try:
            job_id = UUID(str(entry.job_id))
        except ValueError:
            return
        failed = await self.store.fail_job(
            job_id, format_last_error(FailureCode.DEPENDENCY_MISSING, reason)
        )
        if failed:
            self.metrics.job_failed(failed.job_type)
            await self.audit.record_safely(
                job_id,
                AuditEvent.FAILED,
                prev_status=JobStatus.PENDING,
                new_status=JobStatus.FAILED,
                message=reason,
                meta={"outbox_id": str(entry.id)},
            )

    def _unroutable_reason(self, entry: OutboxEntry) -> Optional[str]:
        if entry.queue != self.queue_name:
            return f"unknown queue {entry.queue!r}"
        if not entry.payload.get("type"):
            return "missing message type"
        if not entry.job_id:
            return "missing job_id"
        return None


async def run_outbox_dispatcher_loop(
    dispatcher: OutboxDispatcher,
    logger: logging.Logger,
    poll_seconds: float = 1.0,
    batch_size: int = 10,
    shutdown_event: asyncio.Event = None,
) -> None:
    """
    Drain the outbox until shutdown.

    Args:
        dispatcher: Outbox dispatcher
        logger: Logger instance
        poll_seconds: Sleep between empty polls
        batch_size: Rows per poll
        shutdown_event: Optional event to signal shutdown
    """
    logger.info(f"Starting outbox dispatcher (poll={poll_seconds}s, batch={batch_size})")

    while True:
        if shutdown_event and shutdown_event.is_set():
            logger.info("Shutdown signal received, exiting outbox dispatcher")
            break

        try:
            dispatched = await dispatcher.dispatch_batch(batch_size)
        except Exception as e:
            logger.error(f"Error in outbox dispatcher: {str(e)}", exc_info=True)
            dispatched = 0

        if dispatched < batch_size:
            await asyncio.sleep(poll_seconds)
