"""Curriculum record persistence used by handlers and the reconciler."""

import json
import re
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import asyncpg

from hydration_jobs.models import EntityType
from hydration_jobs.store import affected_rows

MIN_QUESTIONS_FOR_APPROVAL = 5


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", str(value).lower()).strip("-")
    return slug or "untitled"


class CurriculumStore:
    """Reads and writes boards, subjects, chapters, topics, notes and question sets."""

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    async def get_entity_context(
        self, entity_type: EntityType, entity_id: str
    ) -> Optional[Dict[str, Any]]:
        """
        Resolve an entity and its ancestry.

        Returns:
            Dict with the entity name plus subject/board/grade (and chapter for
            topics), or None if the entity does not exist
        """
        entity_type = EntityType(entity_type)
        async with self.db_pool.acquire() as conn:
            if entity_type is EntityType.SUBJECT:
                row = await conn.fetchrow(
                    """
                    SELECT s.id AS subject_id, s.name AS subject_name,
                           c.grade, b.id AS board_id, b.name AS board_name
                    FROM subjects s
                    LEFT JOIN class_levels c ON c.id = s.class_id
                    LEFT JOIN boards b ON b.id = c.board_id
                    WHERE s.id = $1
                    """,
                    entity_id,
                )
                name_key = "subject_name"
            elif entity_type is EntityType.CHAPTER:
                row = await conn.fetchrow(
                    """
                    SELECT ch.id AS chapter_id, ch.name AS chapter_name,
                           s.id AS subject_id, s.name AS subject_name,
                           c.grade, b.id AS board_id, b.name AS board_name
                    FROM chapters ch
                    JOIN subjects s ON s.id = ch.subject_id
                    LEFT JOIN class_levels c ON c.id = s.class_id
                    LEFT JOIN boards b ON b.id = c.board_id
                    WHERE ch.id = $1
                    """,
                    entity_id,
                )
                name_key = "chapter_name"
            else:
                row = await conn.fetchrow(
                    """
                    SELECT t.id AS topic_id, t.name AS topic_name,
                           ch.id AS chapter_id, ch.name AS chapter_name,
                           s.id AS subject_id, s.name AS subject_name,
                           c.grade, b.id AS board_id, b.name AS board_name
                    FROM topics t
                    JOIN chapters ch ON ch.id = t.chapter_id
                    JOIN subjects s ON s.id = ch.subject_id
                    LEFT JOIN class_levels c ON c.id = s.class_id
                    LEFT JOIN boards b ON b.id = c.board_id
                    WHERE t.id = $1
                    """,
                    entity_id,
                )
                name_key = "topic_name"

        if not row:
            return None
        context = dict(row)
        context["entity_type"] = entity_type.value
        context["entity_id"] = entity_id
        context["name"] = context[name_key]
        return context

    # Existing output lookups

    async def count_chapters(self, subject_id: str) -> int:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM chapters WHERE subject_id = $1", subject_id
            )

    async def count_topics(self, chapter_id: str) -> int:
        async with self.db_pool.acquire() as conn:
            return await conn.fetchval(
                "SELECT COUNT(*) FROM topics WHERE chapter_id = $1", chapter_id
            )

    async def get_notes(self, topic_id: str, language: str) -> Optional[Dict[str, Any]]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM topic_notes
                WHERE topic_id = $1 AND language = $2
                ORDER BY version DESC
                LIMIT 1
                """,
                topic_id,
                language,
            )
        return dict(row) if row else None

    async def get_question_set(
        self, topic_id: str, language: str, difficulty: str
    ) -> Optional[Dict[str, Any]]:
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM question_sets
                WHERE topic_id = $1 AND language = $2 AND difficulty = $3
                """,
                topic_id,
                language,
                difficulty,
            )
        return dict(row) if row else None

    async def count_question_sets(
        self, topic_id: str, status: Optional[str] = None
    ) -> int:
        async with self.db_pool.acquire() as conn:
            if status:
                return await conn.fetchval(
                    "SELECT COUNT(*) FROM question_sets WHERE topic_id = $1 AND status = $2",
                    topic_id,
                    status,
                )
            return await conn.fetchval(
                "SELECT COUNT(*) FROM question_sets WHERE topic_id = $1", topic_id
            )

    # Transactional creation; conn must be the caller's transaction

    async def create_chapters(
        self, conn: asyncpg.Connection, subject_id: str, chapters: List[Dict[str, Any]]
    ) -> int:
        """Insert chapters, skipping slugs that already exist. Returns rows inserted."""
        created = 0
        for position, chapter in enumerate(chapters, start=1):
            result = await conn.execute(
                """
                INSERT INTO chapters (id, subject_id, name, slug, position)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (subject_id, slug) DO NOTHING
                """,
                str(uuid4()),
                subject_id,
                chapter["title"],
                slugify(chapter["title"]),
                chapter.get("order") or position,
            )
            created += affected_rows(result)
        return created

    async def create_topics(
        self, conn: asyncpg.Connection, chapter_id: str, topics: List[Dict[str, Any]]
    ) -> int:
        """Insert topics, skipping slugs that already exist. Returns rows inserted."""
        created = 0
        for position, topic in enumerate(topics, start=1):
            result = await conn.execute(
                """
                INSERT INTO topics (id, chapter_id, name, slug, position)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (chapter_id, slug) DO NOTHING
                """,
                str(uuid4()),
                chapter_id,
                topic["title"],
                slugify(topic["title"]),
                topic.get("order") or position,
            )
            created += affected_rows(result)
        return created

    async def create_notes(
        self,
        conn: asyncpg.Connection,
        topic_id: str,
        language: str,
        title: str,
        content: Dict[str, Any],
        job_id: UUID,
    ) -> bool:
        """Insert version 1 notes for a topic. False if they already existed."""
        result = await conn.execute(
            """
            INSERT INTO topic_notes (id, topic_id, language, version, title, content, job_id)
            VALUES ($1, $2, $3, 1, $4, $5, $6)
            ON CONFLICT (topic_id, language, version) DO NOTHING
            """,
            str(uuid4()),
            topic_id,
            language,
            title,
            json.dumps(content),
            job_id,
        )
        return affected_rows(result) == 1

    async def create_question_set(
        self,
        conn: asyncpg.Connection,
        topic_id: str,
        language: str,
        difficulty: str,
        questions: List[Dict[str, Any]],
        job_id: UUID,
    ) -> Optional[str]:
        """
        Insert a draft question set with its questions.

        Returns:
            The question set id, or None if the set already existed
        """
        set_id = await conn.fetchval(
            """
            INSERT INTO question_sets (id, topic_id, language, difficulty, job_id)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (topic_id, language, difficulty) DO NOTHING
            RETURNING id
            """,
            str(uuid4()),
            topic_id,
            language,
            difficulty,
            job_id,
        )
        if set_id is None:
            return None

        await conn.executemany(
            """
            INSERT INTO questions (
                id, question_set_id, position, prompt, answer, explanation, options
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            [
                (
                    str(uuid4()),
                    set_id,
                    position,
                    question["question"],
                    question["answer"],
                    question.get("explanation"),
                    json.dumps(question["options"]) if question.get("options") else None,
                )
                for position, question in enumerate(questions, start=1)
            ],
        )
        return set_id

    async def approve_question_sets(
        self,
        conn: asyncpg.Connection,
        topic_id: str,
        language: str,
        difficulty: Optional[str] = None,
        min_questions: int = MIN_QUESTIONS_FOR_APPROVAL,
    ) -> int:
        """Approve draft question sets that hold at least min_questions. Returns sets approved."""
        result = await conn.execute(
            """
            UPDATE question_sets qs
            SET status = 'approved'
            WHERE qs.topic_id = $1
              AND qs.language = $2
              AND ($3::text IS NULL OR qs.difficulty = $3)
              AND qs.status = 'draft'
              AND (SELECT COUNT(*) FROM questions q WHERE q.question_set_id = qs.id) >= $4
            """,
            topic_id,
            language,
            difficulty,
            min_questions,
        )
        return affected_rows(result)

    # Child enumeration

    async def list_chapters(self, subject_id: str) -> List[Dict[str, Any]]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, name FROM chapters
                WHERE subject_id = $1
                ORDER BY position ASC, name ASC
                """,
                subject_id,
            )
        return [dict(row) for row in rows]

    async def list_subject_topics(self, subject_id: str) -> List[Dict[str, Any]]:
        async with self.db_pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT t.id, t.name, t.chapter_id
                FROM topics t
                JOIN chapters ch ON ch.id = t.chapter_id
                WHERE ch.subject_id = $1
                ORDER BY ch.position ASC, t.position ASC, t.name ASC
                """,
                subject_id,
            )
        return [dict(row) for row in rows]

    async def count_subject_progress(self, subject_id: str) -> Dict[str, int]:
        """Counts of generated records under a subject."""
        async with self.db_pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                  (SELECT COUNT(*) FROM chapters ch WHERE ch.subject_id = $1) AS chapters,
                  (SELECT COUNT(*) FROM topics t
                     JOIN chapters ch ON ch.id = t.chapter_id
                     WHERE ch.subject_id = $1) AS topics,
                  (SELECT COUNT(*) FROM topic_notes n
                     JOIN topics t ON t.id = n.topic_id
                     JOIN chapters ch ON ch.id = t.chapter_id
                     WHERE ch.subject_id = $1) AS notes,
                  (SELECT COUNT(*) FROM question_sets qs
                     JOIN topics t ON t.id = qs.topic_id
                     JOIN chapters ch ON ch.id = t.chapter_id
                     WHERE ch.subject_id = $1) AS question_sets
                """,
                subject_id,
            )
        return dict(row)
