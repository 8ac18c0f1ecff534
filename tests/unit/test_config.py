"""Unit tests for configuration module."""

import json

import pytest

from hydration_jobs.config import HydrationConfig
from hydration_jobs.models import JobType


def test_config_from_env_minimal(monkeypatch):
    """Test creating config from minimal environment variables."""
    monkeypatch.setenv("HYDRATION_DB_DSN", "postgresql://localhost/test")
    monkeypatch.setenv(
        "HYDRATION_SQS_QUEUE_URL", "https://sqs.us-east-1.amazonaws.com/123/hydration"
    )
    monkeypatch.delenv("HYDRATION_WORKER_CONCURRENCY", raising=False)
    monkeypatch.delenv("HYDRATION_DIFFICULTIES", raising=False)
    monkeypatch.delenv("HYDRATION_GENERATION_TIMEOUTS_MS", raising=False)

    config = HydrationConfig.from_env()

    assert config.db_dsn == "postgresql://localhost/test"
    assert config.sqs_queue_url == "https://sqs.us-east-1.amazonaws.com/123/hydration"
    assert config.queue_name == "content-hydration"
    assert config.worker_concurrency == 3  # default
    assert config.difficulties == ["easy", "medium", "hard"]
    assert config.reconcile_interval_seconds == 300
    assert config.metrics_port is None


def test_config_from_env_with_overrides(monkeypatch):
    """Test creating config with optional environment variables."""
    monkeypatch.setenv("HYDRATION_DB_DSN", "postgresql://localhost/test")
    monkeypatch.setenv(
        "HYDRATION_SQS_QUEUE_URL", "https://sqs.us-east-1.amazonaws.com/123/hydration"
    )
    monkeypatch.setenv("HYDRATION_WORKER_CONCURRENCY", "8")
    monkeypatch.setenv("HYDRATION_DIFFICULTIES", "Easy, hard")
    monkeypatch.setenv("HYDRATION_GENERATION_URL", "https://gen.example.com")
    monkeypatch.setenv("HYDRATION_OUTBOX_POLL_SECONDS", "0.5")
    monkeypatch.setenv("HYDRATION_METRICS_PORT", "9108")
    monkeypatch.setenv(
        "HYDRATION_GENERATION_TIMEOUTS_MS", json.dumps({"notes": 45000})
    )

    config = HydrationConfig.from_env()

    assert config.worker_concurrency == 8
    assert config.difficulties == ["easy", "hard"]
    assert config.generation_url == "https://gen.example.com"
    assert config.outbox_poll_seconds == 0.5
    assert config.metrics_port == 9108
    assert config.get_generation_timeout_ms(JobType.NOTES) == 45000
    # Unlisted types keep their defaults
    assert config.get_generation_timeout_ms(JobType.SYLLABUS) == 20000


def test_config_missing_db_dsn(monkeypatch):
    """Test that missing DB DSN raises error."""
    monkeypatch.delenv("HYDRATION_DB_DSN", raising=False)

    with pytest.raises(ValueError, match="HYDRATION_DB_DSN"):
        HydrationConfig.from_env()


def test_config_missing_queue_url(monkeypatch):
    """Test that missing queue URL raises error."""
    monkeypatch.setenv("HYDRATION_DB_DSN", "postgresql://localhost/test")
    monkeypatch.delenv("HYDRATION_SQS_QUEUE_URL", raising=False)

    with pytest.raises(ValueError, match="HYDRATION_SQS_QUEUE_URL"):
        HydrationConfig.from_env()


def test_config_invalid_timeouts_json(monkeypatch):
    """Test that invalid JSON in timeouts raises error."""
    monkeypatch.setenv("HYDRATION_DB_DSN", "postgresql://localhost/test")
    monkeypatch.setenv(
        "HYDRATION_SQS_QUEUE_URL", "https://sqs.us-east-1.amazonaws.com/123/hydration"
    )
    monkeypatch.setenv("HYDRATION_GENERATION_TIMEOUTS_MS", "not json")

    with pytest.raises(ValueError, match="Invalid JSON"):
        HydrationConfig.from_env()


def test_config_invalid_integer(monkeypatch):
    monkeypatch.setenv("HYDRATION_DB_DSN", "postgresql://localhost/test")
    monkeypatch.setenv(
        "HYDRATION_SQS_QUEUE_URL", "https://sqs.us-east-1.amazonaws.com/123/hydration"
    )
    monkeypatch.setenv("HYDRATION_WORKER_CONCURRENCY", "many")

    with pytest.raises(ValueError, match="HYDRATION_WORKER_CONCURRENCY"):
        HydrationConfig.from_env()


def test_config_rejects_unknown_difficulty():
    with pytest.raises(ValueError, match="Unknown difficulty"):
        HydrationConfig(db_dsn="postgresql://x", sqs_queue_url="q", difficulties=["extreme"])


def test_generation_timeout_fallback():
    config = HydrationConfig(db_dsn="postgresql://x", sqs_queue_url="q")

    assert config.get_generation_timeout_ms(JobType.QUESTIONS) == 30000
    assert config.get_generation_timeout_ms("unknown") == 30000
