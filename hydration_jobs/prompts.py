"""Prompt builders for each generating job type."""

import json
from typing import Any, Dict, Optional

from hydration_jobs.errors import PromptInvalidError
from hydration_jobs.models import JobType

_SHAPES = {
    JobType.SYLLABUS: {"chapters": [{"title": "string", "order": 1}]},
    JobType.TOPICS: {"topics": [{"title": "string", "order": 1}]},
    JobType.NOTES: {
        "title": "string",
        "content": {"sections": [{"heading": "string", "body": "string"}]},
        "summary": "string",
        "language": "string",
    },
    JobType.QUESTIONS: {
        "difficulty": "easy|medium|hard",
        "language": "string",
        "questions": [
            {
                "type": "mcq",
                "question": "string",
                "options": ["string", "string", "string", "string"],
                "answer": "string",
                "explanation": "string",
            }
        ],
    },
}

_TASKS = {
    JobType.SYLLABUS: (
        "List the chapters of the {subject_name} syllabus for grade {grade} "
        "of the {board_name} board, in teaching order."
    ),
    JobType.TOPICS: (
        "List the topics of the chapter \"{chapter_name}\" in {subject_name} "
        "(grade {grade}), in teaching order."
    ),
    JobType.NOTES: (
        "Write complete study notes on \"{topic_name}\" from the chapter "
        "\"{chapter_name}\" in {subject_name} (grade {grade}). Every section "
        "must teach the material now; do not defer anything to a later class."
    ),
    JobType.QUESTIONS: (
        "Write at least 5 {difficulty} practice questions on \"{topic_name}\" "
        "from the chapter \"{chapter_name}\" in {subject_name} (grade {grade}). "
        "Each question needs the correct answer and an explanation."
    ),
}


def build_prompt(
    job_type: JobType,
    context: Dict[str, Any],
    language: str,
    difficulty: Optional[str] = None,
) -> str:
    """Render the generation prompt for a job."""
    job_type = JobType(job_type)
    if job_type not in _TASKS:
        raise PromptInvalidError(f"No prompt for job type {job_type.value}")

    values = {key: value for key, value in context.items() if value is not None}
    values.setdefault("grade", "unspecified")
    values.setdefault("board_name", "unspecified")
    values["difficulty"] = difficulty or "medium"
    try:
        task = _TASKS[job_type].format(**values)
    except KeyError as e:
        raise PromptInvalidError(f"Missing prompt context {e} for {job_type.value}") from e

    return "\n\n".join(
        [
            task,
            f"Write in language: {language}.",
            "Respond with a single JSON object of this shape and nothing else:",
            json.dumps(_SHAPES[job_type], indent=2),
        ]
    )
