"""Unit tests for models module."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from hydration_jobs.models import (
    AuditEntry,
    AuditEvent,
    EntityType,
    Job,
    JobStatus,
    JobType,
    OutboxEntry,
    normalize_job_type,
)


def test_job_status_enum():
    """Test JobStatus enum values."""
    assert JobStatus.PENDING.value == "pending"
    assert JobStatus.RUNNING.value == "running"
    assert JobStatus.COMPLETED.value == "completed"
    assert JobStatus.FAILED.value == "failed"
    assert JobStatus.CANCELLED.value == "cancelled"


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("notes", JobType.NOTES),
        ("  NOTES ", JobType.NOTES),
        ("tests", JobType.ASSEMBLE),
        ("assemble", JobType.ASSEMBLE),
        (JobType.QUESTIONS, JobType.QUESTIONS),
        ("quiz", None),
        (None, None),
    ],
)
def test_normalize_job_type(raw, expected):
    assert normalize_job_type(raw) is expected


def test_job_to_dict():
    """Test converting job to dictionary."""
    job_id = uuid4()
    created = datetime(2024, 5, 1, tzinfo=timezone.utc)
    job = Job(
        id=job_id,
        root_id=job_id,
        job_type="syllabus",
        hierarchy_level=1,
        entity_type="SUBJECT",
        entity_id="math-9",
        status="running",
        payload={"language": "en"},
        language="en",
        content_ready=True,
        frontier_level=2,
        chapters_expected=3,
        chapters_completed=3,
        created_at=created,
    )

    job_dict = job.to_dict()

    assert job_dict["id"] == str(job_id)
    assert job_dict["parent_id"] is None
    assert job_dict["job_type"] == "syllabus"
    assert job_dict["entity_type"] == "SUBJECT"
    assert job_dict["status"] == "running"
    assert job_dict["content_ready"] is True
    assert job_dict["progress"]["chapters"] == [3, 3]
    assert job_dict["created_at"] == created.isoformat()
    assert job_dict["completed_at"] is None


def test_job_root_and_terminal_flags():
    root_id = uuid4()
    root = Job(
        id=root_id,
        root_id=root_id,
        job_type=JobType.SYLLABUS,
        hierarchy_level=1,
        entity_type=EntityType.SUBJECT,
        entity_id="math-9",
        status=JobStatus.RUNNING,
        payload={},
    )
    child = Job(
        id=uuid4(),
        root_id=root_id,
        parent_id=root_id,
        job_type=JobType.TOPICS,
        hierarchy_level=2,
        entity_type=EntityType.CHAPTER,
        entity_id="ch-1",
        status=JobStatus.CANCELLED,
        payload=None,
    )

    assert root.is_root
    assert not root.is_terminal
    assert not child.is_root
    assert child.is_terminal
    assert child.payload == {}


def test_outbox_entry_job_id():
    entry = OutboxEntry(
        id=uuid4(),
        queue="content-hydration",
        payload={"type": "NOTES", "payload": {"job_id": "abc"}},
    )
    assert entry.job_id == "abc"

    from_meta = OutboxEntry(
        id=uuid4(), queue="content-hydration", payload={}, meta={"job_id": "def"}
    )
    assert from_meta.job_id == "def"


def test_audit_entry_to_dict():
    job_id = uuid4()
    entry = AuditEntry(
        id=7,
        job_id=job_id,
        event="STARTED",
        prev_status="pending",
        new_status="running",
    )

    assert entry.event is AuditEvent.STARTED
    assert entry.to_dict()["job_id"] == str(job_id)
    assert entry.to_dict()["meta"] == {}
