"""Topics handler: topics of one chapter."""

from hydration_jobs.handlers.base import (
    HandlerContext,
    generate_validated,
    load_context,
    persist_and_complete,
)
from hydration_jobs.models import Job, JobType
from hydration_jobs.registry import handler_registry


@handler_registry.handler(JobType.TOPICS)
async def handle_topics(ctx: HandlerContext, job: Job) -> bool:
    context = await load_context(ctx, job)

    if await ctx.content.count_topics(job.entity_id) > 0:
        ctx.logger.info(f"Chapter {job.entity_id} already has topics, nothing to generate")
        return await persist_and_complete(ctx, job)

    output = await generate_validated(ctx, job, context)
    topics = [topic.model_dump() for topic in output.topics]

    async def write(conn):
        created = await ctx.content.create_topics(conn, job.entity_id, topics)
        ctx.logger.info(f"Created {created} topics for chapter {job.entity_id}")

    return await persist_and_complete(ctx, job, write)
