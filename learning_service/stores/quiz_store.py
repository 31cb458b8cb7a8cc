"""CRUD for generated quizzes (table ``quizzes``).

Questions are stored as one JSONB array of normalized question dicts; the
pool's jsonb codec handles (de)serialization. Listings leave out the
questions and the source text preview.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from learning_service.db import connection

logger = logging.getLogger(__name__)

SOURCE_TEXT_PREVIEW_CHARS = 500

_UPDATABLE_FIELDS = frozenset(
    {"title", "description", "questions", "time_limit", "passing_score", "subject", "tags"}
)

_LIST_COLUMNS = """
    id, title, description, source_resource_id, total_questions, total_points,
    time_limit, passing_score, generated_by, created_by, subject, tags,
    is_published, published_at, created_at, updated_at
"""


def source_text_preview(text: str) -> str:
    return text[:SOURCE_TEXT_PREVIEW_CHARS] + "..."


def total_points(questions: list[dict[str, Any]]) -> int:
    return sum(int(q.get("points", 1)) for q in questions)


@dataclass(frozen=True)
class QuizQuery:
    is_published: bool | None = None
    subject: str | None = None


def _parse_uuid(quiz_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(quiz_id))
    except (TypeError, ValueError):
        return None


def _where(query: QuizQuery) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    args: list[Any] = []
    for column, value in (("is_published", query.is_published), ("subject", query.subject)):
        if value is not None:
            args.append(value)
            clauses.append(f"{column} = ${len(args)}")
    sql = " WHERE " + " AND ".join(clauses) if clauses else ""
    return sql, args


class PgQuizStore:
    """Stateless data-access object for quizzes."""

    async def create_quiz(
        self,
        *,
        title: str,
        questions: list[dict[str, Any]],
        created_by: str,
        source_resource_id: str | None = None,
        source_text: str | None = None,
        description: str | None = None,
        time_limit: int | None = None,
        passing_score: int = 70,
        generated_by: str | None = None,
        subject: str | None = None,
        tags: list[str] | None = None,
        is_published: bool = False,
    ) -> dict[str, Any]:
        async with connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO quizzes
                    (id, title, description, source_resource_id, source_text,
                     questions, total_questions, total_points, time_limit,
                     passing_score, generated_by, created_by, subject, tags,
                     is_published)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9, $10, $11, $12, $13, $14, $15)
                RETURNING *
                """,
                uuid.uuid4(),
                title,
                description,
                uuid.UUID(source_resource_id) if source_resource_id else None,
                source_text,
                questions,
                len(questions),
                total_points(questions),
                time_limit,
                passing_score,
                generated_by,
                created_by,
                subject,
                list(tags or []),
                is_published,
            )
        logger.info("Stored quiz %s with %d questions", row["id"], len(questions))
        return _row_to_dict(row)

    async def get_quiz(self, quiz_id: str) -> dict[str, Any] | None:
        qid = _parse_uuid(quiz_id)
        if qid is None:
            return None
        async with connection() as conn:
            row = await conn.fetchrow("SELECT * FROM quizzes WHERE id = $1", qid)
        return _row_to_dict(row) if row is not None else None

    async def list_quizzes(self, query: QuizQuery, *, limit: int = 10, skip: int = 0) -> list[dict[str, Any]]:
        where, args = _where(query)
        args.extend([limit, skip])
        async with connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_LIST_COLUMNS} FROM quizzes{where} "
                f"ORDER BY created_at DESC LIMIT ${len(args) - 1} OFFSET ${len(args)}",
                *args,
            )
        return [_row_to_dict(r) for r in rows]

    async def count_quizzes(self, query: QuizQuery) -> int:
        where, args = _where(query)
        async with connection() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM quizzes{where}", *args)
        return int(total or 0)

    async def update_quiz(self, quiz_id: str, fields: Mapping[str, Any]) -> dict[str, Any] | None:
        """Apply ``fields`` and return the updated quiz, or None when it does not exist.

        Replacing ``questions`` also refreshes the question and point totals.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")
        qid = _parse_uuid(quiz_id)
        if qid is None:
            return None

        values = dict(fields)
        if "questions" in values:
            values["total_questions"] = len(values["questions"])
            values["total_points"] = total_points(values["questions"])

        assignments: list[str] = []
        args: list[Any] = [qid]
        for name, value in values.items():
            args.append(value)
            cast = "::jsonb" if name == "questions" else ""
            assignments.append(f"{name} = ${len(args)}{cast}")

        async with connection() as conn:
            row = await conn.fetchrow(
                f"UPDATE quizzes SET {', '.join(assignments + ['updated_at = NOW()'])} WHERE id = $1 RETURNING *",
                *args,
            )
        return _row_to_dict(row) if row is not None else None

    async def toggle_publish(self, quiz_id: str) -> dict[str, Any] | None:
        qid = _parse_uuid(quiz_id)
        if qid is None:
            return None
        async with connection() as conn:
            # Right-hand sides see the pre-update row.
            row = await conn.fetchrow(
                """
                UPDATE quizzes
                SET is_published = NOT is_published,
                    published_at = CASE WHEN is_published THEN NULL ELSE NOW() END,
                    updated_at = NOW()
                WHERE id = $1
                RETURNING *
                """,
                qid,
            )
        if row is None:
            return None
        logger.info("Quiz %s %s", qid, "published" if row["is_published"] else "unpublished")
        return _row_to_dict(row)

    async def delete_quiz(self, quiz_id: str) -> bool:
        """Delete a quiz and unlink it from the resource it was generated from."""
        qid = _parse_uuid(quiz_id)
        if qid is None:
            return False
        async with connection() as conn:
            await conn.execute(
                """
                UPDATE resources
                SET generated_quiz_ids = array_remove(generated_quiz_ids, $1),
                    quiz_generated = cardinality(array_remove(generated_quiz_ids, $1)) > 0,
                    updated_at = NOW()
                WHERE $1 = ANY(generated_quiz_ids)
                """,
                qid,
            )
            tag = await conn.execute("DELETE FROM quizzes WHERE id = $1", qid)
        return tag == "DELETE 1"


def _row_to_dict(row: Any) -> dict[str, Any]:
    d = dict(row)
    d["id"] = str(d["id"])
    if d.get("source_resource_id") is not None:
        d["source_resource_id"] = str(d["source_resource_id"])
    if "questions" in d:
        d["questions"] = list(d["questions"] or [])
    d["tags"] = list(d.get("tags") or [])
    return d
