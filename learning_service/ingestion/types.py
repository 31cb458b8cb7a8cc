from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class OcrStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileKind(str, enum.Enum):
    PDF = "pdf"
    IMAGE = "image"
    DOCUMENT = "document"


class SourceFormat(str, enum.Enum):
    """Extraction variant resolved once from the declared MIME type."""

    PDF = "pdf"
    IMAGE = "image"
    PLAIN_TEXT = "plain_text"
    UNSUPPORTED = "unsupported"


def file_kind_for(mime_type: str) -> FileKind:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime == "application/pdf":
        return FileKind.PDF
    if mime.startswith("image/"):
        return FileKind.IMAGE
    return FileKind.DOCUMENT


@dataclass(frozen=True)
class Resource:
    id: str
    title: str
    original_file_name: str
    storage_key: str  # local path, gs://bucket/name or http(s) URL
    declared_mime_type: str
    file_size_bytes: int
    file_kind: FileKind
    uploaded_by: str
    ocr_status: OcrStatus = OcrStatus.PENDING
    description: str | None = None
    url: str | None = None
    extracted_text: str | None = None
    ocr_error: str | None = None
    is_processed: bool = False
    is_deleted: bool = False
    deleted_at: datetime | None = None
    subject: str | None = None
    tags: list[str] = field(default_factory=list)
    quiz_generated: bool = False
    generated_quiz_ids: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ExtractResult:
    text: str
    source_format: SourceFormat
    confidence: float | None
    pages: int | None
    extraction_meta: dict[str, Any]


@dataclass(frozen=True)
class IngestionOutcome:
    resource_id: str
    status: OcrStatus  # completed|failed
    text_length: int
    error_message: str | None
