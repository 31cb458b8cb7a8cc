"""Dispatches a (storage locator, declared MIME type) pair to a backend.

The declared type is trusted: bytes are never sniffed. Dispatch is resolved
once into a `SourceFormat` and matched exhaustively below.
"""

from __future__ import annotations

import asyncio
import logging

from learning_service.ingestion.errors import (
    BackendException,
    EmptyExtraction,
    ExtractionTimeout,
    IngestionError,
    UnsupportedFormat,
)
from learning_service.ingestion.extractors.base import MIN_EXTRACTED_CHARS, Extractor
from learning_service.ingestion.extractors.image import ImageExtractor
from learning_service.ingestion.extractors.pdf import PdfExtractor
from learning_service.ingestion.extractors.text import TextExtractor
from learning_service.ingestion.fetcher import SourceFetcher
from learning_service.ingestion.ocr.engine import OcrEngineHandle
from learning_service.ingestion.types import ExtractResult, SourceFormat

logger = logging.getLogger(__name__)

# Advisory thresholds for "enough text to write a quiz from".
QUIZ_MIN_CHARS = 100
QUIZ_MIN_WORDS = 50


def resolve_format(mime_type: str | None) -> SourceFormat:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    if mime == "application/pdf":
        return SourceFormat.PDF
    if mime.startswith("image/"):
        return SourceFormat.IMAGE
    if mime == "text/plain":
        return SourceFormat.PLAIN_TEXT
    return SourceFormat.UNSUPPORTED


def is_sufficient_for_quiz(text: str | None) -> bool:
    if not text:
        return False
    stripped = text.strip()
    return len(stripped) >= QUIZ_MIN_CHARS and len(stripped.split()) >= QUIZ_MIN_WORDS


class ExtractionRouter:
    def __init__(
        self,
        *,
        fetcher: SourceFetcher,
        pdf: Extractor,
        image: Extractor,
        text: Extractor,
        timeout_s: float | None = 300.0,
    ) -> None:
        self._fetcher = fetcher
        self._pdf = pdf
        self._image = image
        self._text = text
        self._timeout = timeout_s

    @classmethod
    def build(
        cls,
        *,
        fetcher: SourceFetcher,
        engine: OcrEngineHandle,
        preprocess_images: bool = True,
        timeout_s: float | None = 300.0,
    ) -> ExtractionRouter:
        return cls(
            fetcher=fetcher,
            pdf=PdfExtractor(),
            image=ImageExtractor(engine=engine, preprocess=preprocess_images),
            text=TextExtractor(),
            timeout_s=timeout_s,
        )

    @property
    def fetcher(self) -> SourceFetcher:
        return self._fetcher

    def backend_for(self, fmt: SourceFormat) -> Extractor:
        match fmt:
            case SourceFormat.PDF:
                return self._pdf
            case SourceFormat.IMAGE:
                return self._image
            case SourceFormat.PLAIN_TEXT:
                return self._text
            case SourceFormat.UNSUPPORTED:
                raise UnsupportedFormat("Unsupported file type")

    async def extract(self, locator: str, mime_type: str) -> ExtractResult:
        fmt = resolve_format(mime_type)
        if fmt is SourceFormat.UNSUPPORTED:
            raise UnsupportedFormat(f"Unsupported file type: {mime_type or 'unknown'}")
        backend = self.backend_for(fmt)

        logger.info("Starting text extraction for %s (mime=%s, format=%s)", locator, mime_type, fmt.value)
        async with self._fetcher.open(locator, mime_type) as src:
            data = await asyncio.to_thread(src.path.read_bytes)
            result = await self._run_backend(backend, fmt, data, mime_type)

        if len(result.text) < MIN_EXTRACTED_CHARS:
            raise EmptyExtraction(f"Extracted text is shorter than {MIN_EXTRACTED_CHARS} characters")

        logger.info("Successfully extracted %d characters", len(result.text))
        return result

    async def _run_backend(
        self, backend: Extractor, fmt: SourceFormat, data: bytes, mime_type: str
    ) -> ExtractResult:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(backend.extract, data=data, mime_type=mime_type),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise ExtractionTimeout(
                f"Text extraction ({fmt.value}) timed out after {self._timeout:.0f}s"
            ) from e
        except IngestionError:
            raise
        except Exception as e:
            raise BackendException(f"Failed to extract text from {fmt.value}: {type(e).__name__}: {e}") from e
