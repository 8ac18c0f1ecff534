"""Syllabus handler: chapters of a subject."""

from hydration_jobs.handlers.base import (
    HandlerContext,
    generate_validated,
    load_context,
    persist_and_complete,
)
from hydration_jobs.models import Job, JobType
from hydration_jobs.registry import handler_registry


@handler_registry.handler(JobType.SYLLABUS)
async def handle_syllabus(ctx: HandlerContext, job: Job) -> bool:
    context = await load_context(ctx, job)

    if await ctx.content.count_chapters(job.entity_id) > 0:
        ctx.logger.info(f"Subject {job.entity_id} already has chapters, nothing to generate")
        return await persist_and_complete(ctx, job)

    output = await generate_validated(ctx, job, context)
    chapters = [chapter.model_dump() for chapter in output.chapters]

    async def write(conn):
        created = await ctx.content.create_chapters(conn, job.entity_id, chapters)
        ctx.logger.info(f"Created {created} chapters for subject {job.entity_id}")

    return await persist_and_complete(ctx, job, write)
