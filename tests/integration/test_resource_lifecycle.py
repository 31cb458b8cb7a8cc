"""Integration tests for resource persistence and the OCR state machine.

Requires a real database — gracefully skips when unavailable. OCR engines
are faked; the text backend, fetcher and all DB operations run for real.
"""

from __future__ import annotations

from pathlib import Path

import asyncpg
import pytest

from learning_service.ingestion.fetcher import SourceFetcher
from learning_service.ingestion.ocr.engine import OcrEngineHandle
from learning_service.ingestion.router import ExtractionRouter
from learning_service.ingestion.runner import IngestionRunner
from learning_service.ingestion.scheduler import BackgroundScheduler
from learning_service.ingestion.types import FileKind, OcrStatus
from learning_service.stores.quiz_store import PgQuizStore, QuizQuery
from learning_service.stores.resource_store import NewResource, PgResourceStore, ResourceQuery

pytestmark = [pytest.mark.integration, pytest.mark.usefixtures("clean_tables")]


def _new_resource(storage_key: str = "/nonexistent/notes.txt", **overrides) -> NewResource:
    fields = {
        "title": "Photosynthesis notes",
        "original_file_name": "notes.txt",
        "storage_key": storage_key,
        "declared_mime_type": "text/plain",
        "file_size_bytes": 1024,
        "file_kind": FileKind.DOCUMENT,
        "uploaded_by": "admin@example.com",
        "tags": ["biology"],
    }
    fields.update(overrides)
    return NewResource(**fields)


class TestResourceStore:
    async def test_create_and_find(self):
        store = PgResourceStore()
        created = await store.create(_new_resource(subject="Biology"))
        assert created.ocr_status is OcrStatus.PENDING
        assert not created.is_processed

        found = await store.find_by_id(created.id)
        assert found is not None
        assert found.tags == ["biology"]
        assert found.subject == "Biology"

    async def test_claim_is_exclusive(self):
        store = PgResourceStore()
        r = await store.create(_new_resource())

        assert await store.claim_for_processing(r.id, (OcrStatus.PENDING, OcrStatus.FAILED))
        assert not await store.claim_for_processing(r.id, (OcrStatus.PENDING, OcrStatus.FAILED))
        assert (await store.find_by_id(r.id)).ocr_status is OcrStatus.PROCESSING

    async def test_soft_deleted_cannot_be_claimed(self):
        store = PgResourceStore()
        r = await store.create(_new_resource())
        await store.update_by_id(r.id, {"is_deleted": True})
        assert not await store.claim_for_processing(r.id, (OcrStatus.PENDING,))
        assert await store.find_by_id(r.id) is None
        assert await store.count_documents(ResourceQuery()) == 0
        assert await store.count_documents(ResourceQuery(include_deleted=True)) == 1

    async def test_failed_requires_error_message(self):
        store = PgResourceStore()
        r = await store.create(_new_resource())
        with pytest.raises(asyncpg.CheckViolationError):
            await store.update_by_id(r.id, {"ocr_status": OcrStatus.FAILED})

    async def test_completed_requires_text(self):
        store = PgResourceStore()
        r = await store.create(_new_resource())
        with pytest.raises(asyncpg.CheckViolationError):
            await store.update_by_id(r.id, {"ocr_status": OcrStatus.COMPLETED, "extracted_text": ""})

    async def test_listing_omits_text(self):
        store = PgResourceStore()
        r = await store.create(_new_resource())
        await store.update_by_id(
            r.id, {"ocr_status": OcrStatus.COMPLETED, "extracted_text": "Cells divide.", "is_processed": True}
        )
        [listed] = await store.find_many(ResourceQuery(ocr_status=OcrStatus.COMPLETED))
        assert listed.extracted_text is None
        assert (await store.find_by_id(r.id)).extracted_text == "Cells divide."

    async def test_quiz_link_and_permanent_delete(self):
        store = PgResourceStore()
        quizzes = PgQuizStore()
        r = await store.create(_new_resource())
        quiz = await quizzes.create_quiz(
            title="Quiz: Photosynthesis notes",
            questions=[{"type": "true-false", "question": "Plants photosynthesize.", "correct_answer": "true"}],
            created_by="admin@example.com",
            source_resource_id=r.id,
        )
        await store.append_quiz(r.id, quiz["id"])

        linked = await store.find_by_id(r.id)
        assert linked.quiz_generated
        assert linked.generated_quiz_ids == [quiz["id"]]

        assert await store.delete_by_id(r.id)
        orphan = await quizzes.get_quiz(quiz["id"])
        assert orphan is not None
        assert orphan["source_resource_id"] is None
        assert orphan["questions"][0]["correct_answer"] == "true"

    async def test_publish_toggle_and_quiz_delete(self):
        store = PgResourceStore()
        quizzes = PgQuizStore()
        r = await store.create(_new_resource())
        quiz = await quizzes.create_quiz(
            title="Quiz: Photosynthesis notes",
            questions=[{"type": "true-false", "question": "Plants photosynthesize.", "correct_answer": "true"}],
            created_by="admin@example.com",
            source_resource_id=r.id,
        )
        await store.append_quiz(r.id, quiz["id"])

        published = await quizzes.toggle_publish(quiz["id"])
        assert published["is_published"]
        assert published["published_at"] is not None
        [listed] = await quizzes.list_quizzes(QuizQuery(is_published=True))
        assert listed["id"] == quiz["id"]

        hidden = await quizzes.toggle_publish(quiz["id"])
        assert not hidden["is_published"]
        assert hidden["published_at"] is None
        assert await quizzes.count_quizzes(QuizQuery(is_published=True)) == 0

        assert await quizzes.delete_quiz(quiz["id"])
        unlinked = await store.find_by_id(r.id)
        assert unlinked.generated_quiz_ids == []
        assert not unlinked.quiz_generated
        assert await quizzes.get_quiz(quiz["id"]) is None


class TestRunnerAgainstDatabase:
    async def test_text_resource_completes(self, tmp_path: Path, lesson_text: str):
        f = tmp_path / "notes.txt"
        f.write_text(lesson_text, encoding="utf-8")

        store = PgResourceStore()
        r = await store.create(_new_resource(storage_key=str(f)))
        scheduler = BackgroundScheduler()
        router = ExtractionRouter.build(fetcher=SourceFetcher(), engine=OcrEngineHandle(lambda: None))
        runner = IngestionRunner(store=store, router=router, scheduler=scheduler)

        await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        await scheduler.drain()

        done = await store.find_by_id(r.id)
        assert done.ocr_status is OcrStatus.COMPLETED
        assert done.extracted_text == lesson_text
        assert done.is_processed
        assert done.ocr_error is None

    async def test_missing_source_fails(self):
        store = PgResourceStore()
        r = await store.create(_new_resource(storage_key="/nonexistent/gone.txt"))
        scheduler = BackgroundScheduler()
        router = ExtractionRouter.build(fetcher=SourceFetcher(), engine=OcrEngineHandle(lambda: None))
        runner = IngestionRunner(store=store, router=router, scheduler=scheduler)

        outcome = await runner.run_now(r.id, r.storage_key, r.declared_mime_type)

        failed = await store.find_by_id(r.id)
        assert outcome.status is OcrStatus.FAILED
        assert failed.ocr_status is OcrStatus.FAILED
        assert failed.ocr_error.startswith("Resource file not found")
