"""Shared generate, validate and persist flow for job handlers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Dict, Optional

import asyncpg
from pydantic import BaseModel

from hydration_jobs.audit import AuditLog
from hydration_jobs.config import HydrationConfig
from hydration_jobs.content import CurriculumStore
from hydration_jobs.errors import (
    ContentValidationError,
    DependencyMissingError,
    GenerationTimeoutError,
)
from hydration_jobs.generation import GenerationBackend, extract_json
from hydration_jobs.models import AuditEvent, Job, JobStatus, JobType
from hydration_jobs.prompts import build_prompt
from hydration_jobs.retry import run_with_retry
from hydration_jobs.store import JobStore
from hydration_jobs.validation import validate_output


class HandlerContext:
    """Dependencies handed to every handler."""

    def __init__(
        self,
        config: HydrationConfig,
        db_pool: asyncpg.Pool,
        generator: Optional[GenerationBackend],
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config
        self.db_pool = db_pool
        self.generator = generator
        self.logger = logger or logging.getLogger(__name__)
        self.store = JobStore(db_pool)
        self.content = CurriculumStore(db_pool)
        self.audit = AuditLog(db_pool, self.logger)


class _CompletionSkipped(Exception):
    """The job stopped running before its completion write."""


def awaits_children(job: Job) -> bool:
    """Cascade roots stay running after their own content is written."""
    return job.is_root and job.job_type is JobType.SYLLABUS


async def load_context(ctx: HandlerContext, job: Job) -> Dict[str, Any]:
    """Entity context with ancestry; raises DependencyMissingError if the entity is gone."""
    context = await ctx.content.get_entity_context(job.entity_type, job.entity_id)
    if context is None:
        raise DependencyMissingError(
            f"{job.entity_type.value.lower()}_not_found: {job.entity_id}"
        )
    return context


async def generate_validated(
    ctx: HandlerContext, job: Job, context: Dict[str, Any]
) -> BaseModel:
    """
    Build the prompt, call the generation backend and validate the output.

    Writes RESPONSE_RECEIVED and VALIDATION_PASSED/VALIDATION_FAILED entries.

    Raises:
        GenerationError: On timeout or transport failure
        ContentValidationError: When the output breaks its contract
    """
    language = job.language or "en"
    prompt = build_prompt(job.job_type, context, language, job.difficulty)
    timeout_ms = ctx.config.get_generation_timeout_ms(job.job_type)
    meta = {
        "job_id": str(job.id),
        "job_type": job.job_type.value,
        "entity_id": job.entity_id,
        "language": language,
        "difficulty": job.difficulty,
    }

    try:
        result = await asyncio.wait_for(
            ctx.generator.generate(prompt, meta, timeout_ms), timeout=timeout_ms / 1000
        )
    except asyncio.TimeoutError as e:
        raise GenerationTimeoutError(f"Generation timed out after {timeout_ms}ms") from e

    await ctx.audit.record_safely(
        job.id,
        AuditEvent.RESPONSE_RECEIVED,
        message=f"{len(result.content or '')} chars",
        meta={"usage": result.usage, "cost_usd": result.cost_usd},
    )

    try:
        parsed = extract_json(result.content)
        output = validate_output(
            job.job_type, parsed, language=language, difficulty=job.difficulty
        )
    except ContentValidationError as e:
        await ctx.audit.record_safely(
            job.id,
            AuditEvent.VALIDATION_FAILED,
            message=str(e),
            meta={"code": e.failure_code.value, "details": e.details},
        )
        raise

    await ctx.audit.record_safely(job.id, AuditEvent.VALIDATION_PASSED)
    return output


async def persist_and_complete(
    ctx: HandlerContext,
    job: Job,
    write: Optional[Callable[[asyncpg.Connection], Awaitable[Any]]] = None,
) -> bool:
    """
    Write domain records and mark the job in one transaction.

    The completion write only applies while the job is still running; if it
    was cancelled meanwhile the whole transaction is rolled back.

    Returns:
        True if the job was marked, False if completion was skipped
    """
    await_children = awaits_children(job)

    async def _transaction():
        async with ctx.db_pool.acquire() as conn:
            async with conn.transaction():
                if write is not None:
                    await write(conn)
                done = await ctx.store.complete_job(conn, job.id, await_children)
                if done is None:
                    raise _CompletionSkipped()
                if not await_children:
                    await ctx.audit.record(
                        job.id,
                        AuditEvent.COMPLETED,
                        prev_status=JobStatus.RUNNING,
                        new_status=JobStatus.COMPLETED,
                        conn=conn,
                    )

    try:
        await run_with_retry(_transaction, logger=ctx.logger)
    except _CompletionSkipped:
        ctx.logger.warning(f"Job {job.id} is no longer running, completion skipped")
        await ctx.audit.record_safely(
            job.id,
            AuditEvent.COMPLETION_SKIPPED,
            message="job no longer running",
        )
        return False

    if await_children:
        ctx.logger.info(f"Root job {job.id} content ready, awaiting children")
    else:
        ctx.logger.info(f"Job {job.id} completed")
    return True
