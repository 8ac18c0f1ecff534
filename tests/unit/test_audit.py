"""Unit tests for the audit log."""

import json
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from hydration_jobs.audit import AuditLog
from hydration_jobs.models import AuditEvent, JobStatus


@pytest.fixture
def audit(mock_db_pool, logger):
    return AuditLog(mock_db_pool, logger)


async def test_record_uses_pool_connection(audit, mock_db_pool):
    job_id = uuid4()

    await audit.record(
        job_id,
        AuditEvent.STARTED,
        prev_status=JobStatus.PENDING,
        new_status=JobStatus.RUNNING,
        meta={"attempt": 1},
    )

    args = mock_db_pool.conn.execute.await_args.args
    assert "INSERT INTO hydration_job_audit_log" in args[0]
    assert args[1:] == (job_id, "STARTED", "pending", "running", None, '{"attempt": 1}')


async def test_record_joins_callers_transaction(audit, mock_db_pool):
    conn = MagicMock()
    conn.execute = AsyncMock()

    await audit.record(uuid4(), AuditEvent.CREATED, new_status="pending", conn=conn)

    conn.execute.assert_awaited_once()
    mock_db_pool.acquire.assert_not_called()


async def test_record_safely_logs_write_failures(audit, mock_db_pool, logger):
    mock_db_pool.conn.execute.side_effect = RuntimeError("connection reset")

    await audit.record_safely(uuid4(), AuditEvent.ENQUEUED)

    logger.error.assert_called_once()
    assert "ENQUEUED" in logger.error.call_args.args[0]


async def test_list_for_job_parses_rows(audit, mock_db_pool):
    job_id = uuid4()
    mock_db_pool.conn.fetch.return_value = [
        {
            "id": 1,
            "job_id": job_id,
            "event": "CREATED",
            "prev_status": None,
            "new_status": "pending",
            "message": None,
            "meta": json.dumps({"outbox_id": "o-1"}),
            "created_at": None,
        }
    ]

    entries = await audit.list_for_job(job_id)

    assert len(entries) == 1
    assert entries[0].event is AuditEvent.CREATED
    assert entries[0].meta == {"outbox_id": "o-1"}
