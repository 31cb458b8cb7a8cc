"""Unit tests for the OCR status state machine, using the in-memory store."""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path

import pytest

from learning_service.ingestion.errors import (
    AlreadyCompleted,
    AlreadyProcessing,
    IngestionError,
    ResourceNotFound,
    SourceMissing,
)
from learning_service.ingestion.extractors.base import Extractor
from learning_service.ingestion.extractors.pdf import PdfExtractor
from learning_service.ingestion.extractors.text import TextExtractor
from learning_service.ingestion.fetcher import SourceFetcher
from learning_service.ingestion.router import ExtractionRouter
from learning_service.ingestion.runner import IngestionRunner, error_message
from learning_service.ingestion.scheduler import BackgroundScheduler
from learning_service.ingestion.types import ExtractResult, OcrStatus, SourceFormat


class _SlowPdfExtractor(Extractor):
    def extract(self, *, data: bytes, mime_type: str) -> ExtractResult:
        time.sleep(0.3)
        return ExtractResult(
            text="slow but eventually readable", source_format=SourceFormat.PDF, confidence=None, pages=1,
            extraction_meta={},
        )


@pytest.fixture
def scheduler() -> BackgroundScheduler:
    return BackgroundScheduler()


@pytest.fixture
def router(engine_handle) -> ExtractionRouter:
    return ExtractionRouter.build(fetcher=SourceFetcher(), engine=engine_handle, timeout_s=5.0)


@pytest.fixture
def runner(store, router, scheduler) -> IngestionRunner:
    return IngestionRunner(store=store, router=router, scheduler=scheduler)


@pytest.fixture
def notes_file(tmp_path: Path, lesson_text: str) -> Path:
    f = tmp_path / "notes.txt"
    f.write_text(lesson_text, encoding="utf-8")
    return f


def test_error_message_formats():
    assert error_message(SourceMissing("Resource file not found")) == "Resource file not found"
    assert error_message(SourceMissing()) == "source_missing"
    assert error_message(ValueError("bad xref")) == "ValueError: bad xref"
    assert error_message(KeyError()) == "KeyError"


class TestStartIngestion:
    async def test_pending_to_completed(self, runner, scheduler, store, resource_factory, notes_file, lesson_text):
        r = store.add(resource_factory(storage_key=str(notes_file)))

        task = await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        # Claimed synchronously, before the run is scheduled.
        assert store.rows[r.id].ocr_status is OcrStatus.PROCESSING
        assert runner.is_running(r.id)

        await scheduler.drain()

        saved = store.rows[r.id]
        assert store.status_history[r.id] == [OcrStatus.PENDING, OcrStatus.PROCESSING, OcrStatus.COMPLETED]
        assert saved.extracted_text == lesson_text
        assert saved.is_processed
        assert saved.ocr_error is None
        assert task.result().status is OcrStatus.COMPLETED
        assert task.result().text_length == len(lesson_text)
        assert not runner.is_running(r.id)

    async def test_second_start_while_in_flight(self, runner, scheduler, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file)))
        await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)

        with pytest.raises(AlreadyProcessing, match="OCR is already in processing"):
            await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)

        await scheduler.drain()
        assert store.status_history[r.id].count(OcrStatus.PROCESSING) == 1

    async def test_processing_in_store_is_rejected(self, runner, store, resource_factory, notes_file):
        # Another process holds the claim.
        r = store.add(resource_factory(storage_key=str(notes_file), ocr_status=OcrStatus.PROCESSING))
        with pytest.raises(AlreadyProcessing):
            await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        assert store.status_history[r.id] == [OcrStatus.PROCESSING]
        assert not runner.is_running(r.id)

    async def test_completed_is_rejected(self, runner, store, resource_factory):
        r = store.add(
            resource_factory(ocr_status=OcrStatus.COMPLETED, extracted_text="done already", is_processed=True)
        )
        with pytest.raises(AlreadyCompleted, match="OCR already completed for this resource"):
            await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)

    async def test_unknown_resource(self, runner):
        with pytest.raises(ResourceNotFound):
            await runner.start_ingestion("8a6e0804-2bd0-4672-b79d-d97027f8fe2f", "/x.txt", "text/plain")

    async def test_status_outside_allowed_set(self, runner, store, resource_factory):
        r = store.add(resource_factory(ocr_status=OcrStatus.FAILED, ocr_error="earlier"))
        with pytest.raises(IngestionError, match="Cannot start OCR from status 'failed'"):
            await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type, allow_from=(OcrStatus.PENDING,))

    async def test_failed_resource_can_start_again(self, runner, scheduler, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file), ocr_status=OcrStatus.FAILED, ocr_error="x"))
        await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        await scheduler.drain()
        assert store.rows[r.id].ocr_status is OcrStatus.COMPLETED
        assert store.rows[r.id].ocr_error is None

    async def test_scheduler_shut_down_records_failure(self, runner, scheduler, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file)))
        await scheduler.shutdown()

        with pytest.raises(RuntimeError, match="shut down"):
            await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)

        assert store.rows[r.id].ocr_status is OcrStatus.FAILED
        assert "shut down" in store.rows[r.id].ocr_error
        assert not runner.is_running(r.id)


class TestRunFailures:
    async def test_blank_image_fails_with_no_readable_text(
        self, runner, scheduler, store, resource_factory, fake_engine, tmp_path, blank_png_bytes
    ):
        fake_engine.text = "   "
        scan = tmp_path / "blank.png"
        scan.write_bytes(blank_png_bytes)
        r = store.add(resource_factory(storage_key=str(scan), declared_mime_type="image/png"))

        task = await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        await scheduler.drain()

        saved = store.rows[r.id]
        assert saved.ocr_status is OcrStatus.FAILED
        assert "no readable text" in saved.ocr_error
        assert saved.extracted_text is None
        assert not saved.is_processed
        assert task.result().status is OcrStatus.FAILED

    async def test_unsupported_type_fails_run(self, runner, scheduler, store, resource_factory):
        r = store.add(resource_factory(declared_mime_type="application/msword"))
        await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        await scheduler.drain()
        assert store.rows[r.id].ocr_status is OcrStatus.FAILED
        assert store.rows[r.id].ocr_error == "Unsupported file type: application/msword"

    async def test_missing_source_fails_run(self, runner, scheduler, store, resource_factory):
        r = store.add(resource_factory(storage_key="/nonexistent/notes.txt"))
        await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        await scheduler.drain()
        assert store.rows[r.id].ocr_status is OcrStatus.FAILED
        assert store.rows[r.id].ocr_error.startswith("Resource file not found")

    async def test_persistence_failure_does_not_escape(
        self, runner, scheduler, store, resource_factory, notes_file, caplog
    ):
        r = store.add(resource_factory(storage_key=str(notes_file)))
        task = await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        store.fail_updates = True

        with caplog.at_level(logging.ERROR):
            await scheduler.drain()

        outcome = task.result()
        assert outcome.status is OcrStatus.FAILED
        assert outcome.error_message == "Failed to save extracted text: RuntimeError: database unavailable"
        assert "Could not record OCR failure" in caplog.text
        assert not runner.is_running(r.id)

    async def test_cancelled_run_is_recorded(self, store, engine_handle, scheduler, resource_factory, tmp_path):
        router = ExtractionRouter(
            fetcher=SourceFetcher(),
            pdf=_SlowPdfExtractor(),
            image=_SlowPdfExtractor(),
            text=TextExtractor(),
            timeout_s=5.0,
        )
        runner = IngestionRunner(store=store, router=router, scheduler=scheduler)
        f = tmp_path / "slow.pdf"
        f.write_bytes(b"%PDF-1.4")
        r = store.add(resource_factory(storage_key=str(f), declared_mime_type="application/pdf"))

        task = await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)
        await asyncio.sleep(0.05)
        task.cancel()
        await scheduler.drain()

        assert task.cancelled()
        assert store.rows[r.id].ocr_status is OcrStatus.FAILED
        assert store.rows[r.id].ocr_error == "OCR run was cancelled"
        assert not runner.is_running(r.id)


class TestRunNow:
    async def test_five_page_pdf(self, runner, store, resource_factory, tmp_path, five_page_pdf_bytes):
        f = tmp_path / "cells.pdf"
        f.write_bytes(five_page_pdf_bytes)
        r = store.add(resource_factory(storage_key=str(f), declared_mime_type="application/pdf"))

        outcome = await runner.run_now(r.id, r.storage_key, r.declared_mime_type)

        expected = PdfExtractor().extract(data=five_page_pdf_bytes, mime_type="application/pdf").text
        saved = store.rows[r.id]
        assert outcome.status is OcrStatus.COMPLETED
        assert saved.ocr_status is OcrStatus.COMPLETED
        assert saved.is_processed
        assert len(saved.extracted_text) == len(expected)
        assert outcome.text_length == len(expected)


class TestRetryIngestion:
    async def test_failed_with_missing_file_is_rejected_untouched(self, runner, store, resource_factory):
        r = store.add(
            resource_factory(storage_key="/nonexistent/gone.txt", ocr_status=OcrStatus.FAILED, ocr_error="old")
        )
        with pytest.raises(SourceMissing, match="Resource file not found"):
            await runner.retry_ingestion(r.id)
        assert store.status_history[r.id] == [OcrStatus.FAILED]
        assert store.rows[r.id].ocr_error == "old"

    async def test_failed_is_retried(self, runner, scheduler, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file), ocr_status=OcrStatus.FAILED, ocr_error="old"))
        await runner.retry_ingestion(r.id)
        await scheduler.drain()
        assert store.status_history[r.id] == [OcrStatus.FAILED, OcrStatus.PROCESSING, OcrStatus.COMPLETED]

    async def test_completed_is_rejected(self, runner, store, resource_factory, notes_file):
        r = store.add(
            resource_factory(
                storage_key=str(notes_file), ocr_status=OcrStatus.COMPLETED, extracted_text="x" * 20, is_processed=True
            )
        )
        with pytest.raises(AlreadyCompleted):
            await runner.retry_ingestion(r.id)

    async def test_deleted_is_not_found(self, runner, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file), is_deleted=True, ocr_status=OcrStatus.FAILED))
        with pytest.raises(ResourceNotFound, match="Resource not found"):
            await runner.retry_ingestion(r.id)

    async def test_stuck_processing_needs_force(self, runner, scheduler, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file), ocr_status=OcrStatus.PROCESSING))

        with pytest.raises(AlreadyProcessing):
            await runner.retry_ingestion(r.id)

        await runner.retry_ingestion(r.id, force=True)
        await scheduler.drain()
        assert store.rows[r.id].ocr_status is OcrStatus.COMPLETED

    async def test_force_does_not_restart_a_live_run(self, runner, scheduler, store, resource_factory, notes_file):
        r = store.add(resource_factory(storage_key=str(notes_file)))
        await runner.start_ingestion(r.id, r.storage_key, r.declared_mime_type)

        with pytest.raises(AlreadyProcessing):
            await runner.retry_ingestion(r.id, force=True)

        await scheduler.drain()
        assert store.status_history[r.id].count(OcrStatus.PROCESSING) == 1
