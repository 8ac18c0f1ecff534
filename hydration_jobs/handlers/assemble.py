"""Assemble handler: approves a topic's draft question sets as tests."""

from hydration_jobs.errors import DependencyMissingError
from hydration_jobs.handlers.base import HandlerContext, load_context, persist_and_complete
from hydration_jobs.models import Job, JobType
from hydration_jobs.registry import handler_registry


@handler_registry.handler(JobType.ASSEMBLE)
async def handle_assemble(ctx: HandlerContext, job: Job) -> bool:
    await load_context(ctx, job)

    if await ctx.content.count_question_sets(job.entity_id) == 0:
        raise DependencyMissingError(f"no_question_sets: topic {job.entity_id}")

    if await ctx.content.count_question_sets(job.entity_id, status="approved") > 0:
        ctx.logger.info(f"Topic {job.entity_id} already has approved question sets")
        return await persist_and_complete(ctx, job)

    async def write(conn):
        approved = await ctx.content.approve_question_sets(
            conn, job.entity_id, job.language or "en", job.difficulty
        )
        ctx.logger.info(f"Approved {approved} question sets for topic {job.entity_id}")

    return await persist_and_complete(ctx, job, write)
