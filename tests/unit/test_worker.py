"""Unit tests for the job processor and worker loop."""

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from hydration_jobs.errors import DependencyMissingError, PlaceholderContentError
from hydration_jobs.models import AuditEvent, JobStatus, JobType
from hydration_jobs.registry import HandlerRegistry
from hydration_jobs.worker import (
    JobProcessor,
    ProcessOutcome,
    handle_message,
    run_worker_loop,
)


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def mock_settings():
    settings = MagicMock()
    settings.disabled_reason = AsyncMock(return_value=None)
    return settings


@pytest.fixture
def processor(config, mock_db_pool, registry, mock_settings, logger):
    processor = JobProcessor(
        config, mock_db_pool, registry, generator=MagicMock(), settings=mock_settings, logger=logger
    )
    processor.audit.record_safely = AsyncMock()
    return processor


def _events(processor):
    return [call.args[1] for call in processor.audit.record_safely.await_args_list]


async def test_process_skips_missing_job(processor):
    with patch.object(processor.store, "find_job", AsyncMock(return_value=None)):
        assert await processor.process(uuid4()) is ProcessOutcome.SKIPPED


async def test_process_skips_non_pending_job(processor, job_factory):
    job = job_factory(JobType.NOTES, status=JobStatus.COMPLETED)

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock()
    ) as claim:
        assert await processor.process(job.id) is ProcessOutcome.SKIPPED

    claim.assert_not_called()


async def test_process_skips_when_claim_lost(processor, job_factory):
    """Another worker claimed the job between the read and the claim."""
    job = job_factory(JobType.NOTES)

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=None)
    ):
        assert await processor.process(job.id) is ProcessOutcome.SKIPPED


async def test_process_defers_when_kill_switch_set(processor, mock_settings, job_factory):
    job = job_factory(JobType.NOTES)
    mock_settings.disabled_reason.return_value = "HYDRATION_PAUSED"

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock()
    ) as claim:
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.DEFERRED
    claim.assert_not_called()
    assert _events(processor) == [AuditEvent.REQUEUED]
    mock_settings.disabled_reason.assert_awaited_once_with(JobType.NOTES, include_pause=True)


async def test_process_completes_job(processor, registry, job_factory):
    job = job_factory(JobType.NOTES, entity_id="topic-1")
    running = job_factory(
        JobType.NOTES, id=job.id, entity_id="topic-1", status=JobStatus.RUNNING, attempts=1
    )
    handler = AsyncMock(return_value=True)
    registry.handler(JobType.NOTES)(handler)

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(
        processor.content, "get_notes", AsyncMock(return_value={"id": "notes-1"})
    ):
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.COMPLETED
    handler.assert_awaited_once_with(processor.ctx, running)
    assert _events(processor) == [AuditEvent.STARTED]


async def test_process_syllabus_root_is_content_ready(processor, registry, job_factory):
    job = job_factory(JobType.SYLLABUS)
    running = job_factory(JobType.SYLLABUS, id=job.id, status=JobStatus.RUNNING, attempts=1)
    registry.handler(JobType.SYLLABUS)(AsyncMock(return_value=True))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.content, "count_chapters", AsyncMock(return_value=3)):
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.CONTENT_READY


async def test_process_without_handler_fails_prompt_invalid(processor, job_factory):
    job = job_factory(JobType.NOTES)
    running = job_factory(JobType.NOTES, id=job.id, status=JobStatus.RUNNING, attempts=1)

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.store, "fail_job", AsyncMock(return_value=running)) as fail:
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.FAILED
    assert fail.await_args.args[1].startswith("PROMPT_INVALID::")


async def test_process_records_handler_failure_code(processor, registry, job_factory):
    job = job_factory(JobType.NOTES)
    running = job_factory(JobType.NOTES, id=job.id, status=JobStatus.RUNNING, attempts=1)
    registry.handler(JobType.NOTES)(
        AsyncMock(side_effect=PlaceholderContentError("PLACEHOLDER_CONTENT_DETECTED"))
    )

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.store, "fail_job", AsyncMock(return_value=running)) as fail:
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.FAILED
    assert fail.await_args.args[1] == "PLACEHOLDER_CONTENT::PLACEHOLDER_CONTENT_DETECTED"
    assert _events(processor) == [AuditEvent.STARTED, AuditEvent.FAILED]


async def test_process_infers_code_for_unexpected_errors(processor, registry, job_factory):
    job = job_factory(JobType.TOPICS)
    running = job_factory(JobType.TOPICS, id=job.id, status=JobStatus.RUNNING, attempts=1)
    registry.handler(JobType.TOPICS)(AsyncMock(side_effect=RuntimeError("request timed out")))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.store, "fail_job", AsyncMock(return_value=running)) as fail:
        await processor.process(job.id)

    assert fail.await_args.args[1] == "TIMEOUT::request timed out"


async def test_process_keeps_cancellation_when_handler_fails(processor, registry, job_factory):
    job = job_factory(JobType.ASSEMBLE)
    running = job_factory(JobType.ASSEMBLE, id=job.id, status=JobStatus.RUNNING, attempts=1)
    registry.handler(JobType.ASSEMBLE)(AsyncMock(side_effect=DependencyMissingError("gone")))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.store, "fail_job", AsyncMock(return_value=None)):
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.CANCELLED


async def test_process_handler_skipped_completion(processor, registry, job_factory):
    job = job_factory(JobType.NOTES)
    running = job_factory(JobType.NOTES, id=job.id, status=JobStatus.RUNNING, attempts=1)
    registry.handler(JobType.NOTES)(AsyncMock(return_value=False))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ):
        assert await processor.process(job.id) is ProcessOutcome.CANCELLED


async def test_process_revokes_completion_without_evidence(processor, registry, job_factory):
    job = job_factory(JobType.QUESTIONS, difficulty="easy")
    running = job_factory(
        JobType.QUESTIONS, id=job.id, difficulty="easy", status=JobStatus.RUNNING, attempts=1
    )
    registry.handler(JobType.QUESTIONS)(AsyncMock(return_value=True))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(
        processor.content, "get_question_set", AsyncMock(return_value=None)
    ), patch.object(
        processor.store, "revoke_completion", AsyncMock(return_value=running)
    ) as revoke:
        outcome = await processor.process(job.id)

    assert outcome is ProcessOutcome.FAILED
    assert revoke.await_args.args[1] == "DEPENDENCY_MISSING::no_generated_content"
    assert _events(processor) == [
        AuditEvent.STARTED,
        AuditEvent.COMPLETION_SKIPPED,
        AuditEvent.FAILED,
    ]


async def test_verify_evidence_polls_with_backoff(processor, config, job_factory):
    config.evidence_attempts = 3
    job = job_factory(JobType.TOPICS, entity_id="ch-1")

    with patch.object(
        processor.content, "count_topics", AsyncMock(side_effect=[0, 0, 4])
    ), patch("hydration_jobs.worker.asyncio.sleep", new=AsyncMock()) as sleep:
        assert await processor.verify_evidence(job) is True

    assert [call.args[0] for call in sleep.await_args_list] == [0.1, 0.2]


async def test_handle_message_processes_job():
    job_id = uuid4()
    processor = MagicMock()
    processor.process = AsyncMock(return_value=ProcessOutcome.COMPLETED)
    adapter = MagicMock()
    adapter.resolve = AsyncMock(return_value=job_id)
    message = {"MessageId": "m1", "Body": json.dumps({"job_id": str(job_id)})}

    assert await handle_message(message, processor, adapter, MagicMock()) is True
    processor.process.assert_awaited_once_with(job_id)


async def test_handle_message_keeps_deferred_message():
    processor = MagicMock()
    processor.process = AsyncMock(return_value=ProcessOutcome.DEFERRED)
    adapter = MagicMock()
    adapter.resolve = AsyncMock(return_value=uuid4())
    message = {"MessageId": "m1", "Body": json.dumps({"job_id": "x"})}

    assert await handle_message(message, processor, adapter, MagicMock()) is False


async def test_handle_message_drops_unparseable_body():
    processor = MagicMock()
    processor.process = AsyncMock()
    adapter = MagicMock()
    adapter.resolve = AsyncMock()

    assert await handle_message({"Body": "not json"}, processor, adapter, MagicMock()) is True
    processor.process.assert_not_called()


async def test_worker_loop_processes_and_deletes_messages(config, mock_db_pool, logger):
    job_ids = [uuid4(), uuid4()]
    shutdown_event = asyncio.Event()

    async def receive_message(**kwargs):
        shutdown_event.set()
        return {
            "Messages": [
                {
                    "MessageId": f"m{i}",
                    "ReceiptHandle": f"r{i}",
                    "Body": json.dumps({"type": "NOTES", "payload": {"job_id": str(job_id)}}),
                }
                for i, job_id in enumerate(job_ids)
            ]
        }

    sqs_client = MagicMock()
    sqs_client.receive_message = AsyncMock(side_effect=receive_message)
    sqs_client.delete_message = AsyncMock()
    processor = MagicMock()
    processor.process = AsyncMock(
        side_effect=[ProcessOutcome.COMPLETED, ProcessOutcome.DEFERRED]
    )
    adapter = MagicMock()
    adapter.resolve = AsyncMock(side_effect=job_ids)

    await run_worker_loop(
        config,
        mock_db_pool,
        sqs_client,
        processor,
        logger,
        adapter=adapter,
        wait_time_seconds=0,
        shutdown_event=shutdown_event,
    )

    assert processor.process.await_count == 2
    sqs_client.delete_message.assert_awaited_once_with(
        QueueUrl=config.sqs_queue_url, ReceiptHandle="r0"
    )
    assert sqs_client.receive_message.await_args.kwargs["MaxNumberOfMessages"] == 3
