"""Notes handler: study notes for one topic."""

from hydration_jobs.handlers.base import (
    HandlerContext,
    generate_validated,
    load_context,
    persist_and_complete,
)
from hydration_jobs.models import Job, JobType
from hydration_jobs.registry import handler_registry


@handler_registry.handler(JobType.NOTES)
async def handle_notes(ctx: HandlerContext, job: Job) -> bool:
    context = await load_context(ctx, job)
    language = job.language or "en"

    if await ctx.content.get_notes(job.entity_id, language):
        ctx.logger.info(f"Topic {job.entity_id} already has {language} notes")
        return await persist_and_complete(ctx, job)

    output = await generate_validated(ctx, job, context)
    content = output.content.model_dump()
    if output.summary:
        content["summary"] = output.summary

    async def write(conn):
        await ctx.content.create_notes(
            conn, job.entity_id, language, output.title, content, job.id
        )

    return await persist_and_complete(ctx, job, write)
