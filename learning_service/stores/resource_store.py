"""Persistence for uploaded resources (table ``resources``).

`ResourceRepository` is the narrow interface the ingestion runner and the
HTTP layer depend on; `PgResourceStore` implements it over asyncpg. Every
write is a single-statement update by id, so concurrent ingestion runs on
different resources never read-modify-write each other's rows.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from learning_service.db import connection
from learning_service.ingestion.types import FileKind, OcrStatus, Resource

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "subject",
        "tags",
        "storage_key",
        "url",
        "extracted_text",
        "ocr_status",
        "ocr_error",
        "is_processed",
        "is_deleted",
        "deleted_at",
    }
)

_SORTS = {
    "-created_at": "created_at DESC",
    "created_at": "created_at ASC",
    "-title": "title DESC",
    "title": "title ASC",
}

# Listing projection: everything but the (large) extracted text.
_LIST_COLUMNS = """
    id, title, description, original_file_name, storage_key, url,
    declared_mime_type, file_size_bytes, file_kind, ocr_status, ocr_error,
    is_processed, is_deleted, deleted_at, uploaded_by, subject, tags,
    quiz_generated, generated_quiz_ids, created_at, updated_at
"""


@dataclass(frozen=True)
class NewResource:
    title: str
    original_file_name: str
    storage_key: str
    declared_mime_type: str
    file_size_bytes: int
    file_kind: FileKind
    uploaded_by: str
    description: str | None = None
    url: str | None = None
    subject: str | None = None
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ResourceQuery:
    uploaded_by: str | None = None
    subject: str | None = None
    file_kind: FileKind | None = None
    ocr_status: OcrStatus | None = None
    include_deleted: bool = False


class ResourceRepository(Protocol):
    async def create(self, new: NewResource) -> Resource: ...

    async def find_by_id(self, resource_id: str, *, include_deleted: bool = False) -> Resource | None: ...

    async def update_by_id(self, resource_id: str, fields: Mapping[str, Any]) -> bool: ...

    async def claim_for_processing(self, resource_id: str, allowed_from: Iterable[OcrStatus]) -> bool: ...

    async def find_many(
        self, query: ResourceQuery, *, sort: str = "-created_at", limit: int = 20, skip: int = 0
    ) -> list[Resource]: ...

    async def count_documents(self, query: ResourceQuery) -> int: ...

    async def append_quiz(self, resource_id: str, quiz_id: str) -> None: ...

    async def delete_by_id(self, resource_id: str) -> bool: ...


def _parse_uuid(resource_id: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(resource_id))
    except (TypeError, ValueError):
        return None


def row_to_resource(row: Mapping[str, Any]) -> Resource:
    return Resource(
        id=str(row["id"]),
        title=row["title"],
        description=row.get("description"),
        original_file_name=row["original_file_name"],
        storage_key=row["storage_key"],
        url=row.get("url"),
        declared_mime_type=row["declared_mime_type"],
        file_size_bytes=row["file_size_bytes"],
        file_kind=FileKind(row["file_kind"]),
        extracted_text=row.get("extracted_text"),
        ocr_status=OcrStatus(row["ocr_status"]),
        ocr_error=row.get("ocr_error"),
        is_processed=bool(row.get("is_processed")),
        is_deleted=bool(row.get("is_deleted")),
        deleted_at=row.get("deleted_at"),
        uploaded_by=row["uploaded_by"],
        subject=row.get("subject"),
        tags=list(row.get("tags") or []),
        quiz_generated=bool(row.get("quiz_generated")),
        generated_quiz_ids=[str(q) for q in (row.get("generated_quiz_ids") or [])],
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


def _where(query: ResourceQuery) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    args: list[Any] = []
    if not query.include_deleted:
        clauses.append("is_deleted = FALSE")
    for column, value in (
        ("uploaded_by", query.uploaded_by),
        ("subject", query.subject),
        ("file_kind", query.file_kind.value if query.file_kind else None),
        ("ocr_status", query.ocr_status.value if query.ocr_status else None),
    ):
        if value is not None:
            args.append(value)
            clauses.append(f"{column} = ${len(args)}")
    sql = " WHERE " + " AND ".join(clauses) if clauses else ""
    return sql, args


class PgResourceStore:
    """asyncpg-backed `ResourceRepository`."""

    async def create(self, new: NewResource) -> Resource:
        async with connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO resources
                    (id, title, description, original_file_name, storage_key, url,
                     declared_mime_type, file_size_bytes, file_kind, uploaded_by,
                     subject, tags, ocr_status)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, 'pending')
                RETURNING *
                """,
                uuid.uuid4(),
                new.title,
                new.description,
                new.original_file_name,
                new.storage_key,
                new.url,
                new.declared_mime_type,
                new.file_size_bytes,
                new.file_kind.value,
                new.uploaded_by,
                new.subject,
                list(new.tags),
            )
        return row_to_resource(dict(row))  # type: ignore[arg-type]

    async def find_by_id(self, resource_id: str, *, include_deleted: bool = False) -> Resource | None:
        rid = _parse_uuid(resource_id)
        if rid is None:
            return None
        async with connection() as conn:
            row = await conn.fetchrow("SELECT * FROM resources WHERE id = $1", rid)
        if row is None:
            return None
        resource = row_to_resource(dict(row))
        if resource.is_deleted and not include_deleted:
            return None
        return resource

    async def update_by_id(self, resource_id: str, fields: Mapping[str, Any]) -> bool:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")
        rid = _parse_uuid(resource_id)
        if rid is None or not fields:
            return False

        assignments: list[str] = []
        args: list[Any] = [rid]
        for name, value in fields.items():
            if isinstance(value, (OcrStatus, FileKind)):
                value = value.value
            args.append(value)
            assignments.append(f"{name} = ${len(args)}")

        async with connection() as conn:
            tag = await conn.execute(
                f"UPDATE resources SET {', '.join(assignments)}, updated_at = NOW() WHERE id = $1",
                *args,
            )
        return tag == "UPDATE 1"

    async def claim_for_processing(self, resource_id: str, allowed_from: Iterable[OcrStatus]) -> bool:
        """Atomically move a live resource into ``processing``.

        Returns False when the row is missing, soft-deleted, or in a status
        outside ``allowed_from``; the caller decides which rejection applies.
        """
        rid = _parse_uuid(resource_id)
        if rid is None:
            return False
        async with connection() as conn:
            tag = await conn.execute(
                """
                UPDATE resources
                SET ocr_status = 'processing', ocr_error = NULL, updated_at = NOW()
                WHERE id = $1
                  AND is_deleted = FALSE
                  AND ocr_status = ANY($2::text[])
                """,
                rid,
                [s.value for s in allowed_from],
            )
        return tag == "UPDATE 1"

    async def find_many(
        self, query: ResourceQuery, *, sort: str = "-created_at", limit: int = 20, skip: int = 0
    ) -> list[Resource]:
        order = _SORTS.get(sort)
        if order is None:
            raise ValueError(f"Unsupported sort: {sort}")
        where, args = _where(query)
        args.extend([limit, skip])
        async with connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_LIST_COLUMNS} FROM resources{where} "
                f"ORDER BY {order} LIMIT ${len(args) - 1} OFFSET ${len(args)}",
                *args,
            )
        return [row_to_resource(dict(r)) for r in rows]

    async def count_documents(self, query: ResourceQuery) -> int:
        where, args = _where(query)
        async with connection() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM resources{where}", *args)
        return int(total or 0)

    async def append_quiz(self, resource_id: str, quiz_id: str) -> None:
        async with connection() as conn:
            await conn.execute(
                """
                UPDATE resources
                SET quiz_generated = TRUE,
                    generated_quiz_ids = array_append(generated_quiz_ids, $2::uuid),
                    updated_at = NOW()
                WHERE id = $1
                """,
                uuid.UUID(resource_id),
                uuid.UUID(quiz_id),
            )

    async def delete_by_id(self, resource_id: str) -> bool:
        rid = _parse_uuid(resource_id)
        if rid is None:
            return False
        async with connection() as conn:
            # Quizzes outlive their source document.
            await conn.execute("UPDATE quizzes SET source_resource_id = NULL WHERE source_resource_id = $1", rid)
            tag = await conn.execute("DELETE FROM resources WHERE id = $1", rid)
        return tag == "DELETE 1"
