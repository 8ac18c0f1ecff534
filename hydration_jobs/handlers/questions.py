"""Questions handler: one question set per topic, language and difficulty."""

from hydration_jobs.errors import DependencyMissingError
from hydration_jobs.handlers.base import (
    HandlerContext,
    generate_validated,
    load_context,
    persist_and_complete,
)
from hydration_jobs.models import Job, JobType
from hydration_jobs.registry import handler_registry


@handler_registry.handler(JobType.QUESTIONS)
async def handle_questions(ctx: HandlerContext, job: Job) -> bool:
    if not job.difficulty:
        raise DependencyMissingError("missing_difficulty")

    context = await load_context(ctx, job)
    language = job.language or "en"

    if await ctx.content.get_question_set(job.entity_id, language, job.difficulty):
        ctx.logger.info(
            f"Topic {job.entity_id} already has a {job.difficulty} question set in {language}"
        )
        return await persist_and_complete(ctx, job)

    output = await generate_validated(ctx, job, context)
    questions = [question.model_dump() for question in output.questions]

    async def write(conn):
        await ctx.content.create_question_set(
            conn, job.entity_id, language, job.difficulty, questions, job.id
        )

    return await persist_and_complete(ctx, job, write)
