"""Fixtures for integration tests against a real Postgres."""

import json
import logging
import os

import asyncpg
import pytest

from hydration_jobs.config import HydrationConfig
from hydration_jobs.ddl import ALL_DDL
from hydration_jobs.generation import GenerationResult

QUEUE_URL = "https://sqs.us-east-1.amazonaws.com/123/content-hydration"


def use_external_services():
    """Check if we should use an externally provided database (CI mode)."""
    return os.getenv("USE_EXTERNAL_SERVICES", "false").lower() == "true"


class MockSQSClient:
    """Mock SQS client for testing."""

    def __init__(self):
        self.messages: dict[str, list[dict]] = {}
        self.deleted_messages: list[str] = []
        self._sent = 0

    async def send_message(self, QueueUrl: str, MessageBody: str):
        """Mock send_message."""
        self._sent += 1
        message = {
            "MessageId": f"msg-{self._sent}",
            "ReceiptHandle": f"receipt-{self._sent}",
            "Body": MessageBody,
        }
        self.messages.setdefault(QueueUrl, []).append(message)
        return {"MessageId": message["MessageId"]}

    async def receive_message(
        self,
        QueueUrl: str,
        MaxNumberOfMessages: int = 1,
        WaitTimeSeconds: int = 0,
        AttributeNames: list[str] = None,
    ):
        """Mock receive_message."""
        messages = self.messages.get(QueueUrl, [])[:MaxNumberOfMessages]
        return {"Messages": messages} if messages else {}

    async def delete_message(self, QueueUrl: str, ReceiptHandle: str):
        """Mock delete_message."""
        self.deleted_messages.append(ReceiptHandle)
        self.messages[QueueUrl] = [
            m for m in self.messages.get(QueueUrl, []) if m["ReceiptHandle"] != ReceiptHandle
        ]
        return {}

    def drain(self, QueueUrl: str) -> list[dict]:
        """Pop every queued message."""
        return self.messages.pop(QueueUrl, [])


class FakeGenerator:
    """Generation backend returning well-formed content for every job type."""

    def __init__(self, chapters=3, topics_per_chapter=3, questions=5):
        self.chapters = chapters
        self.topics_per_chapter = topics_per_chapter
        self.questions = questions
        self.calls: list[dict] = []

    async def generate(self, prompt, meta, timeout_ms):
        self.calls.append(meta)
        job_type = meta["job_type"]
        language = meta.get("language") or "en"

        if job_type == "syllabus":
            output = {
                "chapters": [
                    {"title": f"Chapter {i}", "order": i} for i in range(1, self.chapters + 1)
                ]
            }
        elif job_type == "topics":
            output = {
                "topics": [
                    {"title": f"Topic {i}", "order": i}
                    for i in range(1, self.topics_per_chapter + 1)
                ]
            }
        elif job_type == "notes":
            output = {
                "title": "Study notes",
                "content": {
                    "sections": [
                        {
                            "heading": "Overview",
                            "body": (
                                "This section introduces the core idea of the topic, works "
                                "through two short examples and lists the common mistakes "
                                "students make when applying it."
                            ),
                        }
                    ]
                },
                "language": language,
            }
        else:
            output = {
                "difficulty": meta["difficulty"],
                "language": language,
                "questions": [
                    {
                        "question": f"What is {n} + {n}?",
                        "answer": str(n + n),
                        "explanation": f"Adding {n} to itself doubles it, giving {n + n}.",
                    }
                    for n in range(1, self.questions + 1)
                ],
            }
        return GenerationResult(json.dumps(output), {"tokens": 42}, 0.0)


@pytest.fixture(scope="session")
def postgres_container():
    """Provide a PostgreSQL container for local testing."""
    if use_external_services():
        yield None
        return

    pytest.importorskip("testcontainers")
    from testcontainers.postgres import PostgresContainer

    try:
        container = PostgresContainer("postgres:15")
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        yield container
    finally:
        container.stop()


@pytest.fixture
def config(postgres_container):
    """Create test configuration."""
    if use_external_services():
        return HydrationConfig.from_env()

    dsn = postgres_container.get_connection_url().replace(
        "postgresql+psycopg2://", "postgresql://"
    )
    return HydrationConfig(
        db_dsn=dsn,
        sqs_queue_url=QUEUE_URL,
        evidence_attempts=1,
        reconciler_lock_ttl_seconds=30,
    )


@pytest.fixture
async def db_pool(config):
    """Create a database pool on a freshly created schema."""
    pool = await asyncpg.create_pool(config.db_dsn, min_size=2, max_size=10)

    async with pool.acquire() as conn:
        await conn.execute("DROP SCHEMA public CASCADE; CREATE SCHEMA public;")
        await conn.execute(ALL_DDL)

    yield pool

    await pool.close()


@pytest.fixture
async def subject(db_pool):
    """Seed a board, class level and subject; returns the subject id."""
    async with db_pool.acquire() as conn:
        await conn.execute("INSERT INTO boards (id, name) VALUES ('cbse', 'CBSE')")
        await conn.execute(
            "INSERT INTO class_levels (id, board_id, grade) VALUES ('cbse-9', 'cbse', 9)"
        )
        await conn.execute(
            "INSERT INTO subjects (id, class_id, name) VALUES ('math-9', 'cbse-9', 'Mathematics')"
        )
    return "math-9"


@pytest.fixture
def mock_sqs():
    """Provide mock SQS client."""
    return MockSQSClient()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def logger():
    return logging.getLogger("hydration_jobs.tests")
