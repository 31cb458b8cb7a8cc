"""FastAPI entry point for the learning service.

Endpoints:
- POST   /v1/resources                 — Upload a file and schedule OCR (admin)
- GET    /v1/resources                 — Paged resource listing
- GET    /v1/resources/{id}            — Resource detail incl. extracted text
- PATCH  /v1/resources/{id}            — Update metadata (admin)
- DELETE /v1/resources/{id}            — Soft or permanent delete (admin)
- POST   /v1/resources/{id}/retry-ocr  — Re-schedule OCR for a failed resource (admin)
- GET    /v1/resources/{id}/ocr-status — Poll ingestion status
- POST   /v1/quizzes/generate          — Generate a quiz from extracted text (admin)
- GET    /v1/quizzes                   — Paged quiz listing (students: published only)
- GET    /v1/quizzes/{id}              — Fetch a quiz
- PATCH  /v1/quizzes/{id}              — Edit quiz content and settings (admin)
- PATCH  /v1/quizzes/{id}/publish      — Publish or unpublish a quiz (admin)
- DELETE /v1/quizzes/{id}              — Delete a quiz (admin)
- GET    /liveness, /readiness         — Health checks
"""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from google.cloud import storage as gcs
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from learning_service.auth import (
    Identity,
    current_identity,
    get_identity,
    is_public_path,
    require_admin,
    require_auth_on_cloud_run,
)
from learning_service.config import (
    LEARNING_ALLOWED_UPLOAD_TYPES,
    LEARNING_CORS_ALLOW_CREDENTIALS,
    LEARNING_CORS_ALLOW_HEADERS,
    LEARNING_CORS_ALLOW_METHODS,
    LEARNING_CORS_ALLOW_ORIGINS,
    LEARNING_MAX_UPLOAD_BYTES,
    LEARNING_PUBLIC_BASE_URL,
    LEARNING_UPLOAD_BUCKET,
    LEARNING_UPLOAD_DIR,
    QUIZ_MAX_ATTEMPTS,
    QUIZ_RETRY_BASE_SECONDS,
)
from learning_service.db import check_db_connection, close_pool, get_pool
from learning_service.ingestion.config import IngestConfig
from learning_service.ingestion.errors import (
    AlreadyCompleted,
    AlreadyProcessing,
    IngestionError,
    ResourceNotFound,
    SourceMissing,
)
from learning_service.ingestion.pipeline import IngestionPipeline, build_pipeline
from learning_service.ingestion.router import is_sufficient_for_quiz
from learning_service.ingestion.types import FileKind, OcrStatus, file_kind_for
from learning_service.logging_config import generate_request_id, setup_logging
from learning_service.models import (
    DeleteResponse,
    HealthResponse,
    OcrStatusResponse,
    QuizDeleteResponse,
    QuizGenerateRequest,
    QuizListResponse,
    QuizResponse,
    QuizSummary,
    QuizUpdate,
    ResourceDetail,
    ResourceListResponse,
    ResourceSummary,
    ResourceUpdate,
    RetryResponse,
    UploadResponse,
)
from learning_service.quiz.generator import QuestionGenerator, QuizOptions
from learning_service.quiz.questions import QuestionValidationError, strip_answers, validate_and_normalize_question
from learning_service.quiz.retry import generate_with_retry
from learning_service.storage import BlobStorage, GcsBlobStorage, LocalBlobStorage
from learning_service.stores.quiz_store import PgQuizStore, QuizQuery, source_text_preview
from learning_service.stores.resource_store import NewResource, PgResourceStore, ResourceQuery

logger = logging.getLogger(__name__)

_resource_store = PgResourceStore()
_quiz_store = PgQuizStore()


@dataclass
class Services:
    """Per-process collaborators created in the lifespan and kept on app.state."""

    pipeline: IngestionPipeline
    storage: BlobStorage
    generator: QuestionGenerator


def build_storage() -> BlobStorage:
    if LEARNING_UPLOAD_BUCKET:
        return GcsBlobStorage(gcs.Client(), LEARNING_UPLOAD_BUCKET, public_base_url=LEARNING_PUBLIC_BASE_URL)
    return LocalBlobStorage(LEARNING_UPLOAD_DIR)


def build_services() -> Services:
    return Services(
        pipeline=build_pipeline(IngestConfig.from_env(), store=_resource_store),
        storage=build_storage(),
        generator=QuestionGenerator(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: pool and ingestion pipeline up on startup, down on shutdown."""
    setup_logging()
    require_auth_on_cloud_run()
    await get_pool()
    services = build_services()
    app.state.services = services
    logger.info("Learning service started")
    yield
    await services.pipeline.aclose()
    await close_pool()
    logger.info("Learning service stopped")


app = FastAPI(
    title="Learning Platform API",
    version="0.1.0",
    lifespan=lifespan,
)

# -- Rate limiting ------------------------------------------------------------

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])
app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


if LEARNING_CORS_ALLOW_CREDENTIALS and "*" in LEARNING_CORS_ALLOW_ORIGINS:
    raise RuntimeError("Invalid CORS config: wildcard origin cannot be combined with credentials=true")

app.add_middleware(
    CORSMiddleware,
    allow_origins=LEARNING_CORS_ALLOW_ORIGINS,
    allow_credentials=LEARNING_CORS_ALLOW_CREDENTIALS,
    allow_methods=LEARNING_CORS_ALLOW_METHODS,
    allow_headers=LEARNING_CORS_ALLOW_HEADERS,
)


# -- Body size limit ----------------------------------------------------------

# Upload limit plus headroom for the multipart envelope and form fields.
_MAX_BODY_BYTES = LEARNING_MAX_UPLOAD_BYTES + 1024 * 1024


@app.middleware("http")
async def body_size_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Reject requests with bodies exceeding the size limit."""
    content_length = request.headers.get("content-length")
    if content_length is not None and int(content_length) > _MAX_BODY_BYTES:
        return JSONResponse(status_code=413, content={"detail": "Request body too large"})
    return await call_next(request)


# -- Auth middleware ----------------------------------------------------------


@app.middleware("http")
async def auth_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Enforce authentication on all non-public paths."""
    if request.method == "OPTIONS" or is_public_path(request.url.path):
        return await call_next(request)

    try:
        identity = await get_identity(request)
        request.state.identity = identity
    except HTTPException as exc:
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})
    except Exception as e:
        logger.warning("Auth middleware error: %s", e)
        return JSONResponse(status_code=401, content={"detail": "Authentication failed"})

    return await call_next(request)


# -- Request ID middleware ----------------------------------------------------


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Attach a unique request ID for trace correlation."""
    request_id = request.headers.get("x-request-id") or generate_request_id()
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


def _services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return services


AnyIdentity = Annotated[Identity, Depends(current_identity)]
AdminIdentity = Annotated[Identity, Depends(require_admin)]
ServicesDep = Annotated[Services, Depends(_services)]


# -- Health -------------------------------------------------------------------


@app.get("/liveness", response_model=HealthResponse)
async def liveness() -> HealthResponse:
    return HealthResponse(status="ok")


@app.get("/readiness", response_model=HealthResponse)
async def readiness() -> HealthResponse:
    db_ok = await check_db_connection()
    if not db_ok:
        raise HTTPException(status_code=503, detail="Database unavailable")
    return HealthResponse(status="ok")


# -- Resources ----------------------------------------------------------------


def _split_tags(raw: str | None) -> list[str]:
    return [t.strip() for t in (raw or "").split(",") if t.strip()]


@app.post("/v1/resources", response_model=UploadResponse, status_code=201)
@limiter.limit("10/minute")
async def upload_resource(
    request: Request,
    identity: AdminIdentity,
    services: ServicesDep,
    file: Annotated[UploadFile, File()],
    title: Annotated[str, Form()] = "",
    description: Annotated[str | None, Form()] = None,
    subject: Annotated[str | None, Form()] = None,
    tags: Annotated[str | None, Form()] = None,
) -> UploadResponse:
    """Store the upload, create a pending resource and schedule OCR without waiting for it."""
    title = title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")

    mime_type = (file.content_type or "").split(";", 1)[0].strip().lower()
    if mime_type not in LEARNING_ALLOWED_UPLOAD_TYPES:
        raise HTTPException(
            status_code=400,
            detail="Invalid file type. Only PDF, images, and text files are allowed.",
        )

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="No file uploaded")
    if len(data) > LEARNING_MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")

    filename = file.filename or "upload"
    stored = await services.storage.save(data, filename, mime_type)
    try:
        resource = await _resource_store.create(
            NewResource(
                title=title,
                description=description,
                original_file_name=filename,
                storage_key=stored.storage_key,
                url=stored.url,
                declared_mime_type=mime_type,
                file_size_bytes=len(data),
                file_kind=file_kind_for(mime_type),
                uploaded_by=identity.user_id,
                subject=subject,
                tags=_split_tags(tags),
            )
        )
    except Exception as e:
        logger.exception("Error creating resource for upload %s", filename)
        try:
            await services.storage.delete(stored.storage_key)
        except Exception:
            logger.exception("Could not remove orphaned upload %s", stored.storage_key)
        raise HTTPException(status_code=500, detail="Server error during file upload") from e

    try:
        await services.pipeline.runner.start_ingestion(
            resource.id, resource.storage_key, resource.declared_mime_type
        )
    except Exception:
        # The record and bytes exist; a pending resource can be retried later.
        logger.exception("Could not schedule OCR for resource %s", resource.id)

    return UploadResponse(
        id=resource.id,
        title=resource.title,
        file_kind=resource.file_kind,
        ocr_status=resource.ocr_status,
    )


@app.get("/v1/resources", response_model=ResourceListResponse)
async def list_resources(
    identity: AnyIdentity,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    subject: str | None = None,
    file_kind: FileKind | None = None,
    ocr_status: OcrStatus | None = None,
) -> ResourceListResponse:
    """List live resources, newest first, without extracted text."""
    query = ResourceQuery(subject=subject, file_kind=file_kind, ocr_status=ocr_status)
    resources = await _resource_store.find_many(query, sort="-created_at", limit=limit, skip=(page - 1) * limit)
    total = await _resource_store.count_documents(query)
    return ResourceListResponse(
        resources=[ResourceSummary.from_resource(r) for r in resources],
        total_pages=math.ceil(total / limit),
        current_page=page,
        total=total,
    )


@app.get("/v1/resources/{resource_id}", response_model=ResourceDetail)
async def get_resource(resource_id: str, identity: AnyIdentity) -> ResourceDetail:
    resource = await _resource_store.find_by_id(resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return ResourceDetail.from_resource(resource)


@app.patch("/v1/resources/{resource_id}", response_model=ResourceDetail)
async def update_resource(resource_id: str, body: ResourceUpdate, identity: AdminIdentity) -> ResourceDetail:
    resource = await _resource_store.find_by_id(resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")

    fields = body.model_dump(exclude_unset=True)
    if "title" in fields:
        title = (fields["title"] or "").strip()
        if not title:
            raise HTTPException(status_code=400, detail="Title must not be blank")
        fields["title"] = title
    if "tags" in fields:
        fields["tags"] = [t.strip() for t in fields["tags"] or [] if t.strip()]

    if fields:
        await _resource_store.update_by_id(resource_id, fields)
    updated = await _resource_store.find_by_id(resource_id)
    if updated is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    return ResourceDetail.from_resource(updated)


@app.delete("/v1/resources/{resource_id}", response_model=DeleteResponse)
async def delete_resource(
    resource_id: str,
    identity: AdminIdentity,
    services: ServicesDep,
    permanent: bool = False,
    delete_file: bool = False,
) -> DeleteResponse:
    """Soft delete by default; ``permanent=true`` also removes the row and the bytes."""
    resource = await _resource_store.find_by_id(resource_id, include_deleted=True)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")

    if permanent:
        await _delete_bytes(services.storage, resource.storage_key)
        await _resource_store.delete_by_id(resource_id)
        logger.info("Resource %s permanently deleted by %s", resource_id, identity.principal)
        return DeleteResponse(deleted=True, resource_id=resource_id, permanent=True)

    await _resource_store.update_by_id(resource_id, {"is_deleted": True, "deleted_at": datetime.now(UTC)})
    if delete_file:
        await _delete_bytes(services.storage, resource.storage_key)
    logger.info("Resource %s soft-deleted by %s", resource_id, identity.principal)
    return DeleteResponse(deleted=True, resource_id=resource_id, permanent=False)


async def _delete_bytes(storage: BlobStorage, storage_key: str) -> None:
    try:
        await storage.delete(storage_key)
    except Exception:
        logger.exception("Could not delete stored file %s", storage_key)


@app.post("/v1/resources/{resource_id}/retry-ocr", response_model=RetryResponse, status_code=202)
async def retry_ocr(resource_id: str, identity: AdminIdentity, services: ServicesDep) -> RetryResponse:
    """Schedule another OCR run; the response reports scheduling, not the outcome."""
    try:
        await services.pipeline.runner.retry_ingestion(resource_id)
    except ResourceNotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except (AlreadyProcessing, AlreadyCompleted) as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    except (SourceMissing, IngestionError) as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return RetryResponse(resource_id=resource_id, ocr_status=OcrStatus.PROCESSING, message="OCR retry started")


@app.get("/v1/resources/{resource_id}/ocr-status", response_model=OcrStatusResponse)
async def get_ocr_status(resource_id: str, identity: AnyIdentity) -> OcrStatusResponse:
    resource = await _resource_store.find_by_id(resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    text = resource.extracted_text or ""
    return OcrStatusResponse(
        ocr_status=resource.ocr_status,
        ocr_error=resource.ocr_error,
        has_extracted_text=bool(text),
        text_length=len(text),
        sufficient_for_quiz=is_sufficient_for_quiz(text),
    )


# -- Quizzes ------------------------------------------------------------------


@app.post("/v1/quizzes/generate", response_model=QuizResponse, status_code=201)
@limiter.limit("5/minute")
async def generate_quiz(
    request: Request,
    body: QuizGenerateRequest,
    identity: AdminIdentity,
    services: ServicesDep,
) -> QuizResponse:
    resource = await _resource_store.find_by_id(body.resource_id)
    if resource is None:
        raise HTTPException(status_code=404, detail="Resource not found")
    if resource.ocr_status is not OcrStatus.COMPLETED or not resource.extracted_text:
        raise HTTPException(status_code=400, detail="Resource has not been processed yet or OCR failed")
    if not is_sufficient_for_quiz(resource.extracted_text):
        raise HTTPException(status_code=400, detail="Extracted text is too short to generate meaningful quiz")

    subject = body.subject or resource.subject
    options = QuizOptions(
        num_questions=body.num_questions,
        difficulty=body.difficulty,
        question_types=list(body.question_types),
        subject=subject,
        focus=body.focus,
    )
    logger.info("Generating quiz from resource %s", resource.id)
    try:
        questions = await generate_with_retry(
            services.generator.generate,
            resource.extracted_text,
            options,
            max_attempts=QUIZ_MAX_ATTEMPTS,
            base_delay=QUIZ_RETRY_BASE_SECONDS,
        )
    except Exception as e:
        logger.exception("Quiz generation failed for resource %s", resource.id)
        raise HTTPException(status_code=502, detail=f"Failed to generate quiz: {e}") from e

    quiz = await _quiz_store.create_quiz(
        title=body.title or f"Quiz: {resource.title}",
        description=body.description or f"Auto-generated quiz from {resource.title}",
        source_resource_id=resource.id,
        source_text=source_text_preview(resource.extracted_text),
        questions=questions,
        time_limit=body.time_limit,
        passing_score=body.passing_score,
        generated_by=services.generator.model,
        created_by=identity.user_id,
        subject=subject,
        tags=body.tags if body.tags is not None else list(resource.tags),
    )
    await _resource_store.append_quiz(resource.id, quiz["id"])
    return QuizResponse(**quiz)


@app.get("/v1/quizzes", response_model=QuizListResponse)
async def list_quizzes(
    identity: AnyIdentity,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    is_published: bool | None = None,
    subject: str | None = None,
) -> QuizListResponse:
    """List quizzes newest first, without questions; students only see published ones."""
    query = QuizQuery(is_published=True if identity.is_student else is_published, subject=subject)
    quizzes = await _quiz_store.list_quizzes(query, limit=limit, skip=(page - 1) * limit)
    total = await _quiz_store.count_quizzes(query)
    return QuizListResponse(
        quizzes=[QuizSummary(**q) for q in quizzes],
        total_pages=math.ceil(total / limit),
        current_page=page,
        total=total,
    )


@app.get("/v1/quizzes/{quiz_id}", response_model=QuizResponse)
async def get_quiz(quiz_id: str, identity: AnyIdentity, for_attempt: bool = False) -> QuizResponse:
    quiz = await _quiz_store.get_quiz(quiz_id)
    if quiz is None or (identity.is_student and not quiz.get("is_published")):
        raise HTTPException(status_code=404, detail="Quiz not found")
    if for_attempt and identity.is_student:
        quiz = {**quiz, "questions": [strip_answers(q) for q in quiz["questions"]]}
    return QuizResponse(**quiz)


@app.patch("/v1/quizzes/{quiz_id}", response_model=QuizResponse)
async def update_quiz(quiz_id: str, body: QuizUpdate, identity: AdminIdentity) -> QuizResponse:
    fields = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if "title" in fields:
        fields["title"] = fields["title"].strip()
        if not fields["title"]:
            raise HTTPException(status_code=400, detail="Title must not be blank")
    if "tags" in fields:
        fields["tags"] = [t.strip() for t in fields["tags"] if t.strip()]
    if "questions" in fields:
        try:
            fields["questions"] = [validate_and_normalize_question(q, i) for i, q in enumerate(fields["questions"])]
        except QuestionValidationError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

    if fields:
        quiz = await _quiz_store.update_quiz(quiz_id, fields)
    else:
        quiz = await _quiz_store.get_quiz(quiz_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="Quiz not found")
    logger.info("Quiz %s updated by %s (%s)", quiz_id, identity.principal, ", ".join(sorted(fields)) or "no changes")
    return QuizResponse(**quiz)


@app.patch("/v1/quizzes/{quiz_id}/publish", response_model=QuizResponse)
async def toggle_quiz_publish(quiz_id: str, identity: AdminIdentity) -> QuizResponse:
    """Flip the quiz between published and unpublished."""
    quiz = await _quiz_store.toggle_publish(quiz_id)
    if quiz is None:
        raise HTTPException(status_code=404, detail="Quiz not found")
    return QuizResponse(**quiz)


@app.delete("/v1/quizzes/{quiz_id}", response_model=QuizDeleteResponse)
async def delete_quiz(quiz_id: str, identity: AdminIdentity) -> QuizDeleteResponse:
    if not await _quiz_store.delete_quiz(quiz_id):
        raise HTTPException(status_code=404, detail="Quiz not found")
    logger.info("Quiz %s deleted by %s", quiz_id, identity.principal)
    return QuizDeleteResponse(deleted=True, quiz_id=quiz_id)
