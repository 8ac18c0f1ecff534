"""Unit tests for job lifecycle metrics."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from prometheus_client import CollectorRegistry

from hydration_jobs.metrics import HydrationMetrics, start_metrics_server
from hydration_jobs.models import JobStatus, JobType
from hydration_jobs.reconciler import CASCADE, HydrationReconciler, ReconcileReport
from hydration_jobs.registry import HandlerRegistry
from hydration_jobs.worker import JobProcessor, ProcessOutcome


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return HydrationMetrics(registry)


def _count(registry, name, target):
    return registry.get_sample_value(f"hydrate_jobs_{name}_total", {"target": target}) or 0


@pytest.fixture
def processor(config, mock_db_pool, metrics, logger):
    settings = MagicMock()
    settings.disabled_reason = AsyncMock(return_value=None)
    processor = JobProcessor(
        config,
        mock_db_pool,
        HandlerRegistry(),
        generator=MagicMock(),
        settings=settings,
        logger=logger,
        metrics=metrics,
    )
    processor.audit.record_safely = AsyncMock()
    return processor


def test_counters_are_labelled_by_job_type(metrics, registry):
    metrics.job_created(JobType.NOTES)
    metrics.job_created(JobType.NOTES)
    metrics.job_failed(JobType.QUESTIONS)

    assert _count(registry, "created", "notes") == 2
    assert _count(registry, "created", "questions") == 0
    assert _count(registry, "failed", "questions") == 1


def test_time_job_observes_duration(metrics, registry):
    with metrics.time_job(JobType.TOPICS):
        pass

    assert registry.get_sample_value(
        "hydrate_job_duration_seconds_count", {"target": "topics"}
    ) == 1


async def test_processed_job_is_claimed_timed_and_completed(processor, registry, job_factory):
    job = job_factory(JobType.NOTES, entity_id="topic-1")
    running = job_factory(
        JobType.NOTES, id=job.id, entity_id="topic-1", status=JobStatus.RUNNING, attempts=1
    )
    processor.registry.handler(JobType.NOTES)(AsyncMock(return_value=True))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(
        processor.content, "get_notes", AsyncMock(return_value={"id": "notes-1"})
    ):
        assert await processor.process(job.id) is ProcessOutcome.COMPLETED

    assert _count(registry, "claimed", "notes") == 1
    assert _count(registry, "completed", "notes") == 1
    assert _count(registry, "failed", "notes") == 0
    assert registry.get_sample_value(
        "hydrate_job_duration_seconds_count", {"target": "notes"}
    ) == 1


async def test_handler_error_counts_failure(processor, registry, job_factory):
    job = job_factory(JobType.QUESTIONS, entity_id="topic-1", difficulty="easy")
    running = job_factory(
        JobType.QUESTIONS,
        id=job.id,
        entity_id="topic-1",
        difficulty="easy",
        status=JobStatus.RUNNING,
        attempts=1,
    )
    failed = job_factory(JobType.QUESTIONS, id=job.id, status=JobStatus.FAILED)
    processor.registry.handler(JobType.QUESTIONS)(
        AsyncMock(side_effect=RuntimeError("upstream timed out"))
    )

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.store, "fail_job", AsyncMock(return_value=failed)):
        assert await processor.process(job.id) is ProcessOutcome.FAILED

    assert _count(registry, "failed", "questions") == 1
    assert _count(registry, "completed", "questions") == 0
    assert registry.get_sample_value(
        "hydrate_job_duration_seconds_count", {"target": "questions"}
    ) == 1


async def test_content_ready_root_is_not_counted_completed(processor, registry, job_factory):
    job = job_factory(JobType.SYLLABUS)
    running = job_factory(JobType.SYLLABUS, id=job.id, status=JobStatus.RUNNING, attempts=1)
    processor.registry.handler(JobType.SYLLABUS)(AsyncMock(return_value=True))

    with patch.object(processor.store, "find_job", AsyncMock(return_value=job)), patch.object(
        processor.store, "claim_job", AsyncMock(return_value=running)
    ), patch.object(processor.content, "count_chapters", AsyncMock(return_value=3)):
        assert await processor.process(job.id) is ProcessOutcome.CONTENT_READY

    assert _count(registry, "claimed", "syllabus") == 1
    assert _count(registry, "completed", "syllabus") == 0


async def test_reconciler_counts_children_and_root_outcome(
    config, mock_db_pool, logger, metrics, registry, job_factory
):
    reconciler = HydrationReconciler(config, mock_db_pool, logger, metrics=metrics)
    root = job_factory(
        JobType.SYLLABUS, status=JobStatus.RUNNING, entity_id="math-9", content_ready=True
    )
    child = job_factory(
        JobType.TOPICS, entity_id="ch-1", root_id=root.id, parent_id=root.id, hierarchy_level=2
    )

    with patch.object(
        reconciler.store, "insert_child_job_if_absent", AsyncMock(return_value=child)
    ), patch.object(reconciler.outbox, "insert_for_job", AsyncMock()), patch.object(
        reconciler.audit, "record", AsyncMock()
    ):
        await reconciler._insert_child(root, CASCADE[1], root.id, "ch-1", None)

    with patch.object(
        reconciler.store, "count_failed_descendants", AsyncMock(return_value=1)
    ), patch.object(
        reconciler.store, "finalize_root", AsyncMock(return_value=root)
    ), patch.object(
        reconciler.audit, "record", AsyncMock()
    ):
        await reconciler.finalize(root, ReconcileReport())

    assert _count(registry, "created", "topics") == 1
    assert _count(registry, "failed", "syllabus") == 1
    assert _count(registry, "completed", "syllabus") == 0


def test_metrics_server_is_optional(logger):
    with patch("hydration_jobs.metrics.start_http_server") as start:
        start_metrics_server(None, logger)
        start.assert_not_called()

        start_metrics_server(9108, logger)
        start.assert_called_once_with(9108)
