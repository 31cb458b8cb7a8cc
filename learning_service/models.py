"""Pydantic request/response schemas for the learning service API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from learning_service.ingestion.types import FileKind, OcrStatus, Resource

QuestionType = Literal["multiple-choice", "true-false", "short-answer"]

# -- Resources ----------------------------------------------------------------


class UploadResponse(BaseModel):
    id: str
    title: str
    file_kind: FileKind
    ocr_status: OcrStatus


class ResourceSummary(BaseModel):
    id: str
    title: str
    description: str | None = None
    original_file_name: str
    url: str | None = None
    declared_mime_type: str
    file_size_bytes: int
    file_kind: FileKind
    ocr_status: OcrStatus
    ocr_error: str | None = None
    is_processed: bool
    uploaded_by: str
    subject: str | None = None
    tags: list[str] = Field(default_factory=list)
    quiz_generated: bool = False
    generated_quiz_ids: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_resource(cls, r: Resource) -> ResourceSummary:
        return cls(
            id=r.id,
            title=r.title,
            description=r.description,
            original_file_name=r.original_file_name,
            url=r.url,
            declared_mime_type=r.declared_mime_type,
            file_size_bytes=r.file_size_bytes,
            file_kind=r.file_kind,
            ocr_status=r.ocr_status,
            ocr_error=r.ocr_error,
            is_processed=r.is_processed,
            uploaded_by=r.uploaded_by,
            subject=r.subject,
            tags=list(r.tags),
            quiz_generated=r.quiz_generated,
            generated_quiz_ids=list(r.generated_quiz_ids),
            created_at=r.created_at,
            updated_at=r.updated_at,
        )


class ResourceDetail(ResourceSummary):
    extracted_text: str | None = None

    @classmethod
    def from_resource(cls, r: Resource) -> ResourceDetail:
        base = ResourceSummary.from_resource(r).model_dump()
        return cls(**base, extracted_text=r.extracted_text)


class ResourceListResponse(BaseModel):
    resources: list[ResourceSummary]
    total_pages: int
    current_page: int
    total: int


class ResourceUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = Field(None, max_length=5000)
    subject: str | None = Field(None, max_length=200)
    tags: list[str] | None = None


class DeleteResponse(BaseModel):
    deleted: bool
    resource_id: str
    permanent: bool


class RetryResponse(BaseModel):
    resource_id: str
    ocr_status: OcrStatus
    message: str


class OcrStatusResponse(BaseModel):
    ocr_status: OcrStatus
    ocr_error: str | None = None
    has_extracted_text: bool
    text_length: int
    sufficient_for_quiz: bool


# -- Quizzes ------------------------------------------------------------------


class QuizGenerateRequest(BaseModel):
    resource_id: str
    title: str | None = Field(None, max_length=500)
    description: str | None = Field(None, max_length=5000)
    num_questions: int = Field(10, ge=1, le=50)
    difficulty: Literal["easy", "medium", "hard", "mixed"] = "mixed"
    question_types: list[QuestionType] = Field(
        default_factory=lambda: ["multiple-choice", "true-false", "short-answer"],
        min_length=1,
    )
    time_limit: int | None = Field(None, ge=1, le=600, description="Minutes")
    passing_score: int = Field(70, ge=0, le=100)
    subject: str | None = None
    tags: list[str] | None = None
    focus: str | None = Field(None, max_length=500)


class QuizSummary(BaseModel):
    id: str
    title: str
    description: str | None = None
    source_resource_id: str | None = None
    total_questions: int
    total_points: int
    time_limit: int | None = None
    passing_score: int
    generated_by: str | None = None
    created_by: str
    subject: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_published: bool
    published_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class QuizResponse(QuizSummary):
    source_text: str | None = None
    questions: list[dict[str, Any]]


class QuizListResponse(BaseModel):
    quizzes: list[QuizSummary]
    total_pages: int
    current_page: int
    total: int


class QuizUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = Field(None, max_length=5000)
    questions: list[dict[str, Any]] | None = Field(None, min_length=1)
    time_limit: int | None = Field(None, ge=1, le=600, description="Minutes")
    passing_score: int | None = Field(None, ge=0, le=100)
    subject: str | None = Field(None, max_length=200)
    tags: list[str] | None = None


class QuizDeleteResponse(BaseModel):
    deleted: bool
    quiz_id: str


# -- Health -------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    error: str | None = None
