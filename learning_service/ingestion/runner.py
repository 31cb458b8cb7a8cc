"""OCR status state machine for uploaded resources.

    pending ──start──> processing ──ok──> completed
                            │
                            └──error──> failed ──retry──> processing

A run is started only after the store has atomically moved the resource into
``processing``; the run itself always ends by persisting ``completed`` or
``failed``. Request-time rejections are raised synchronously to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from learning_service.ingestion.errors import (
    AlreadyCompleted,
    AlreadyProcessing,
    IngestionError,
    ResourceNotFound,
    SourceMissing,
)
from learning_service.ingestion.router import ExtractionRouter
from learning_service.ingestion.scheduler import BackgroundScheduler
from learning_service.ingestion.types import IngestionOutcome, OcrStatus
from learning_service.stores.resource_store import ResourceRepository

logger = logging.getLogger(__name__)

STARTABLE_FROM: tuple[OcrStatus, ...] = (OcrStatus.PENDING, OcrStatus.FAILED)


def error_message(exc: BaseException) -> str:
    if isinstance(exc, IngestionError):
        return str(exc) or exc.kind
    detail = str(exc)
    return f"{type(exc).__name__}: {detail}" if detail else type(exc).__name__


class IngestionRunner:
    def __init__(
        self,
        *,
        store: ResourceRepository,
        router: ExtractionRouter,
        scheduler: BackgroundScheduler,
    ) -> None:
        self._store = store
        self._router = router
        self._scheduler = scheduler
        self._in_flight: set[str] = set()

    def is_running(self, resource_id: str) -> bool:
        return resource_id in self._in_flight

    async def start_ingestion(
        self,
        resource_id: str,
        storage_key: str,
        mime_type: str,
        *,
        allow_from: Iterable[OcrStatus] = STARTABLE_FROM,
    ) -> asyncio.Task[IngestionOutcome]:
        """Claim the resource and schedule a detached run.

        The returned task is for observation only; callers poll the
        persisted ``ocr_status`` instead of awaiting it.
        """
        await self._claim(resource_id, allow_from)
        try:
            return self._scheduler.submit(
                self._run_claimed(resource_id, storage_key, mime_type),
                name=f"ingest-{resource_id}",
            )
        except RuntimeError as e:
            self._in_flight.discard(resource_id)
            await self._record_failure(resource_id, str(e))
            raise

    async def run_now(
        self,
        resource_id: str,
        storage_key: str,
        mime_type: str,
        *,
        allow_from: Iterable[OcrStatus] = STARTABLE_FROM,
    ) -> IngestionOutcome:
        await self._claim(resource_id, allow_from)
        return await self._run_claimed(resource_id, storage_key, mime_type)

    async def retry_ingestion(self, resource_id: str, *, force: bool = False) -> asyncio.Task[IngestionOutcome]:
        """Re-run extraction for a pending or failed resource.

        ``force`` also restarts a resource left in ``processing`` by a crashed
        process. Nothing is modified when the request is rejected.
        """
        resource = await self._store.find_by_id(resource_id)
        if resource is None:
            raise ResourceNotFound("Resource not found")
        if resource.ocr_status is OcrStatus.PROCESSING and (not force or self.is_running(resource_id)):
            raise AlreadyProcessing("OCR is already in processing")
        if resource.ocr_status is OcrStatus.COMPLETED:
            raise AlreadyCompleted("OCR already completed for this resource")
        if not await self._router.fetcher.exists(resource.storage_key):
            raise SourceMissing("Resource file not found")

        allow_from = STARTABLE_FROM + ((OcrStatus.PROCESSING,) if force else ())
        logger.info(
            "Retrying OCR for resource %s (previous status=%s, force=%s)",
            resource_id,
            resource.ocr_status.value,
            force,
        )
        return await self.start_ingestion(
            resource.id,
            resource.storage_key,
            resource.declared_mime_type,
            allow_from=allow_from,
        )

    async def _claim(self, resource_id: str, allow_from: Iterable[OcrStatus]) -> None:
        if resource_id in self._in_flight:
            raise AlreadyProcessing("OCR is already in processing")
        # Reserve before the first await so concurrent callers in this process see it.
        self._in_flight.add(resource_id)
        try:
            claimed = await self._store.claim_for_processing(resource_id, tuple(allow_from))
            if not claimed:
                await self._raise_rejection(resource_id)
        except BaseException:
            self._in_flight.discard(resource_id)
            raise
        logger.info("Resource %s moved to processing", resource_id)

    async def _raise_rejection(self, resource_id: str) -> None:
        current = await self._store.find_by_id(resource_id)
        if current is None:
            raise ResourceNotFound("Resource not found")
        if current.ocr_status is OcrStatus.PROCESSING:
            raise AlreadyProcessing("OCR is already in processing")
        if current.ocr_status is OcrStatus.COMPLETED:
            raise AlreadyCompleted("OCR already completed for this resource")
        raise IngestionError(f"Cannot start OCR from status '{current.ocr_status.value}'")

    async def _run_claimed(self, resource_id: str, storage_key: str, mime_type: str) -> IngestionOutcome:
        logger.info("Starting OCR for resource %s", resource_id)
        try:
            result = await self._router.extract(storage_key, mime_type)
        except asyncio.CancelledError:
            await self._record_failure(resource_id, "OCR run was cancelled")
            self._in_flight.discard(resource_id)
            raise
        except Exception as e:
            message = error_message(e)
            logger.error("OCR failed for resource %s: %s", resource_id, message)
            await self._record_failure(resource_id, message)
            self._in_flight.discard(resource_id)
            return IngestionOutcome(resource_id=resource_id, status=OcrStatus.FAILED, text_length=0, error_message=message)

        try:
            updated = await self._store.update_by_id(
                resource_id,
                {
                    "extracted_text": result.text,
                    "ocr_status": OcrStatus.COMPLETED,
                    "is_processed": True,
                    "ocr_error": None,
                },
            )
        except Exception as e:
            message = f"Failed to save extracted text: {error_message(e)}"
            logger.exception("Could not persist OCR result for resource %s", resource_id)
            await self._record_failure(resource_id, message)
            return IngestionOutcome(resource_id=resource_id, status=OcrStatus.FAILED, text_length=0, error_message=message)
        finally:
            self._in_flight.discard(resource_id)

        if not updated:
            logger.warning("Resource %s disappeared before its OCR result was saved", resource_id)
        logger.info("OCR completed for resource %s. Extracted %d characters.", resource_id, len(result.text))
        return IngestionOutcome(
            resource_id=resource_id,
            status=OcrStatus.COMPLETED,
            text_length=len(result.text),
            error_message=None,
        )

    async def _record_failure(self, resource_id: str, message: str) -> None:
        try:
            await self._store.update_by_id(resource_id, {"ocr_status": OcrStatus.FAILED, "ocr_error": message})
        except Exception:
            logger.exception("Could not record OCR failure for resource %s", resource_id)
