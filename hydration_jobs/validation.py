"""Output contracts for generated content."""

import re
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from hydration_jobs.errors import (
    ContextMismatchError,
    PlaceholderContentError,
    SchemaInvalidError,
    SemanticWeaknessError,
)
from hydration_jobs.models import JobType, normalize_job_type

MIN_NOTES_LENGTH = 100
MIN_EXPLANATION_LENGTH = 20

# Stub markers and deferrals to a later lesson; ordinary teaching phrases
# such as "students will learn" must not match.
PLACEHOLDER_PATTERNS = [
    re.compile(r"content coming soon", re.I),
    re.compile(r"\bcoming soon\b", re.I),
    re.compile(r"to be added later", re.I),
    re.compile(r"\bplaceholder (text|content|section|copy|here)\b", re.I),
    re.compile(r"[\[<(]\s*placeholder\s*[\]>)]", re.I),
    re.compile(r"lorem ipsum", re.I),
    re.compile(r"\[insert .+\]", re.I),
    re.compile(r"\bTBD\b"),
    re.compile(
        r"will be (discussed|covered|explained|taught|introduced)\b[^.]*"
        r"\b(future|next|upcoming|later|subsequent)\b",
        re.I,
    ),
    re.compile(
        r"\b(in|during) (the |a )?(next|upcoming|future|later) "
        r"(class|classes|session|sessions|lesson|lessons|chapter|chapters)\b",
        re.I,
    ),
]


class _Titled(BaseModel):
    title: str
    order: Optional[int] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v.strip()


class ChapterItem(_Titled):
    pass


class TopicItem(_Titled):
    pass


class SyllabusOutput(BaseModel):
    chapters: List[ChapterItem]
    language: Optional[str] = None


class TopicsOutput(BaseModel):
    topics: List[TopicItem]
    language: Optional[str] = None


class NoteSection(BaseModel):
    heading: str
    body: str


class NotesContent(BaseModel):
    sections: List[NoteSection]


class NotesOutput(BaseModel):
    title: str = Field(min_length=1)
    content: NotesContent
    summary: Optional[str] = None
    audience: Optional[str] = None
    language: Optional[str] = None

    @property
    def text_length(self) -> int:
        return sum(len(section.body.strip()) for section in self.content.sections)


class QuestionItem(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)
    explanation: Optional[str] = None
    options: Optional[List[str]] = None
    type: Optional[str] = None


class QuestionSetOutput(BaseModel):
    questions: List[QuestionItem]
    difficulty: Optional[str] = None
    language: Optional[str] = None


OUTPUT_MODELS = {
    JobType.SYLLABUS: SyllabusOutput,
    JobType.TOPICS: TopicsOutput,
    JobType.NOTES: NotesOutput,
    JobType.QUESTIONS: QuestionSetOutput,
}


def find_placeholder(value: Any) -> Optional[str]:
    """Return the first string inside value that looks like a placeholder."""
    if isinstance(value, str):
        for pattern in PLACEHOLDER_PATTERNS:
            if pattern.search(value):
                return value
        return None
    if isinstance(value, dict):
        items = value.values()
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return None
    for item in items:
        found = find_placeholder(item)
        if found:
            return found
    return None


def validate_output(
    job_type: Any,
    parsed: Dict[str, Any],
    language: Optional[str] = None,
    difficulty: Optional[str] = None,
) -> BaseModel:
    """
    Validate parsed model output for a job type.

    Checks run in order: schema, placeholders, semantic strength, context.

    Returns:
        The validated output model

    Raises:
        SchemaInvalidError, PlaceholderContentError, SemanticWeaknessError,
        ContextMismatchError
    """
    if not parsed:
        raise SchemaInvalidError("empty_response")

    normalized = normalize_job_type(job_type)
    model = OUTPUT_MODELS.get(normalized)
    if model is None:
        raise SchemaInvalidError("jobtype_unknown", {"job_type": str(job_type)})

    try:
        output = model.model_validate(parsed)
    except ValidationError as e:
        raise SchemaInvalidError(
            f"{normalized.value}_schema_invalid", e.errors(include_url=False)
        ) from e

    snippet = find_placeholder(parsed)
    if snippet:
        raise PlaceholderContentError(
            "PLACEHOLDER_CONTENT_DETECTED", {"snippet": snippet[:200]}
        )

    _check_semantics(normalized, output)
    _check_context(output, language, difficulty)
    return output


def _check_semantics(job_type: JobType, output: BaseModel) -> None:
    if job_type is JobType.SYLLABUS and not output.chapters:
        raise SemanticWeaknessError("no_chapters")
    if job_type is JobType.TOPICS and not output.topics:
        raise SemanticWeaknessError("no_topics")
    if job_type is JobType.NOTES:
        if not output.content.sections:
            raise SemanticWeaknessError("no_sections")
        if output.text_length < MIN_NOTES_LENGTH:
            raise SemanticWeaknessError("notes_too_short", {"length": output.text_length})
    if job_type is JobType.QUESTIONS:
        if not output.questions:
            raise SemanticWeaknessError("no_questions")
        for question in output.questions:
            if len((question.explanation or "").strip()) < MIN_EXPLANATION_LENGTH:
                raise SemanticWeaknessError(
                    "missing_question_explanation", {"question": question.question}
                )


def _check_context(
    output: BaseModel, language: Optional[str], difficulty: Optional[str]
) -> None:
    produced_difficulty = getattr(output, "difficulty", None)
    if difficulty and produced_difficulty and produced_difficulty.lower() != difficulty.lower():
        raise ContextMismatchError(
            "difficulty_mismatch", {"expected": difficulty, "got": produced_difficulty}
        )

    produced_language = getattr(output, "language", None)
    if language and produced_language and produced_language.lower() != language.lower():
        raise ContextMismatchError(
            "language_mismatch", {"expected": language, "got": produced_language}
        )
