"""Data models for hydration jobs."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from uuid import UUID


class JobStatus(str, Enum):
    """Job status values."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.RUNNING)
TERMINAL_STATUSES = (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class JobType(str, Enum):
    """Hydration job types."""

    SYLLABUS = "syllabus"
    TOPICS = "topics"
    NOTES = "notes"
    QUESTIONS = "questions"
    ASSEMBLE = "assemble"


class EntityType(str, Enum):
    """Curriculum node types a job can operate on."""

    SUBJECT = "SUBJECT"
    CHAPTER = "CHAPTER"
    TOPIC = "TOPIC"


class Difficulty(str, Enum):
    """Question difficulty levels."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AuditEvent(str, Enum):
    """Events recorded in the job audit log."""

    CREATED = "CREATED"
    ENQUEUED = "ENQUEUED"
    ENQUEUE_FAILED = "ENQUEUE_FAILED"
    STARTED = "STARTED"
    RESPONSE_RECEIVED = "RESPONSE_RECEIVED"
    VALIDATION_PASSED = "VALIDATION_PASSED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    COMPLETION_SKIPPED = "COMPLETION_SKIPPED"
    CANCELLED = "CANCELLED"
    REQUEUED = "REQUEUED"


# Each job type operates on exactly one entity scope.
JOB_ENTITY_SCOPES: Dict[JobType, EntityType] = {
    JobType.SYLLABUS: EntityType.SUBJECT,
    JobType.TOPICS: EntityType.CHAPTER,
    JobType.NOTES: EntityType.TOPIC,
    JobType.QUESTIONS: EntityType.TOPIC,
    JobType.ASSEMBLE: EntityType.TOPIC,
}

# Job types that produce generated content and therefore need a language.
CONTENT_JOB_TYPES = frozenset(
    {JobType.SYLLABUS, JobType.TOPICS, JobType.NOTES, JobType.QUESTIONS}
)

JOB_TYPE_ALIASES = {"tests": JobType.ASSEMBLE}


def normalize_job_type(value: Any) -> Optional[JobType]:
    """Map a raw job type value to a JobType, or None if unknown."""
    if isinstance(value, JobType):
        return value
    raw = str(value or "").strip().lower()
    if raw in JOB_TYPE_ALIASES:
        return JOB_TYPE_ALIASES[raw]
    try:
        return JobType(raw)
    except ValueError:
        return None


class Job:
    """Represents a hydration job record."""

    def __init__(
        self,
        id: UUID,
        root_id: UUID,
        job_type: JobType,
        hierarchy_level: int,
        entity_type: EntityType,
        entity_id: str,
        status: JobStatus,
        payload: Dict[str, Any],
        attempts: int = 0,
        max_attempts: int = 5,
        parent_id: Optional[UUID] = None,
        language: Optional[str] = None,
        difficulty: Optional[str] = None,
        locked_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
        content_ready: bool = False,
        frontier_level: int = 1,
        chapters_expected: int = 0,
        chapters_completed: int = 0,
        topics_expected: int = 0,
        topics_completed: int = 0,
        notes_expected: int = 0,
        notes_completed: int = 0,
        questions_expected: int = 0,
        questions_completed: int = 0,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None,
    ):
        self.id = id
        self.root_id = root_id
        self.parent_id = parent_id
        self.job_type = JobType(job_type) if isinstance(job_type, str) else job_type
        self.hierarchy_level = hierarchy_level
        self.entity_type = (
            EntityType(entity_type) if isinstance(entity_type, str) else entity_type
        )
        self.entity_id = entity_id
        self.status = JobStatus(status) if isinstance(status, str) else status
        self.payload = payload or {}
        self.attempts = attempts
        self.max_attempts = max_attempts
        self.language = language
        self.difficulty = difficulty
        self.locked_at = locked_at
        self.last_error = last_error
        self.content_ready = content_ready
        self.frontier_level = frontier_level
        self.chapters_expected = chapters_expected
        self.chapters_completed = chapters_completed
        self.topics_expected = topics_expected
        self.topics_completed = topics_completed
        self.notes_expected = notes_expected
        self.notes_completed = notes_completed
        self.questions_expected = questions_expected
        self.questions_completed = questions_completed
        self.created_at = created_at
        self.updated_at = updated_at
        self.completed_at = completed_at

    @property
    def is_root(self) -> bool:
        return self.root_id == self.id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Convert job to dictionary for JSON serialization."""
        return {
            "id": str(self.id),
            "root_id": str(self.root_id),
            "parent_id": str(self.parent_id) if self.parent_id else None,
            "job_type": self.job_type.value,
            "hierarchy_level": self.hierarchy_level,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "status": self.status.value,
            "payload": self.payload,
            "language": self.language,
            "difficulty": self.difficulty,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "locked_at": self.locked_at.isoformat() if self.locked_at else None,
            "last_error": self.last_error,
            "content_ready": self.content_ready,
            "frontier_level": self.frontier_level,
            "progress": {
                "chapters": [self.chapters_completed, self.chapters_expected],
                "topics": [self.topics_completed, self.topics_expected],
                "notes": [self.notes_completed, self.notes_expected],
                "questions": [self.questions_completed, self.questions_expected],
            },
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
        }


class OutboxEntry:
    """A delivery intent written alongside a job."""

    def __init__(
        self,
        id: UUID,
        queue: str,
        payload: Dict[str, Any],
        meta: Optional[Dict[str, Any]] = None,
        attempts: int = 0,
        sent_at: Optional[datetime] = None,
        last_error: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.queue = queue
        self.payload = payload
        self.meta = meta or {}
        self.attempts = attempts
        self.sent_at = sent_at
        self.last_error = last_error
        self.created_at = created_at

    @property
    def job_id(self) -> Optional[str]:
        inner = self.payload.get("payload") or {}
        return inner.get("job_id") or self.meta.get("job_id")


class AuditEntry:
    """An immutable audit log row."""

    def __init__(
        self,
        id: int,
        job_id: UUID,
        event: AuditEvent,
        prev_status: Optional[str] = None,
        new_status: Optional[str] = None,
        message: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None,
    ):
        self.id = id
        self.job_id = job_id
        self.event = AuditEvent(event) if isinstance(event, str) else event
        self.prev_status = prev_status
        self.new_status = new_status
        self.message = message
        self.meta = meta or {}
        self.created_at = created_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "job_id": str(self.job_id),
            "event": self.event.value,
            "prev_status": self.prev_status,
            "new_status": self.new_status,
            "message": self.message,
            "meta": self.meta,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SubmitResult:
    """Result of a job submission."""

    def __init__(self, job_id: UUID, existing: bool):
        self.job_id = job_id
        self.existing = existing

    def __repr__(self) -> str:
        return f"SubmitResult(job_id={self.job_id!r}, existing={self.existing!r})"
