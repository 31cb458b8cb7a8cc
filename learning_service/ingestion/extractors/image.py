from __future__ import annotations

import io
import logging

from PIL import Image, ImageFilter, ImageOps, UnidentifiedImageError

from learning_service.ingestion.errors import BackendException
from learning_service.ingestion.extractors.base import Extractor, normalize_text, require_text
from learning_service.ingestion.ocr.engine import OcrEngineHandle, ProgressCallback, log_progress
from learning_service.ingestion.types import ExtractResult, SourceFormat

logger = logging.getLogger(__name__)


def preprocess_image(data: bytes) -> bytes:
    """Grayscale, stretch contrast and sharpen; returns PNG bytes."""
    with Image.open(io.BytesIO(data)) as img:
        img = ImageOps.exif_transpose(img) or img
        gray = ImageOps.grayscale(img)
        contrasted = ImageOps.autocontrast(gray, cutoff=1)
        sharpened = contrasted.filter(ImageFilter.SHARPEN)
        buf = io.BytesIO()
        sharpened.save(buf, format="PNG")
        return buf.getvalue()


class ImageExtractor(Extractor):
    def __init__(
        self,
        *,
        engine: OcrEngineHandle,
        preprocess: bool = True,
        progress: ProgressCallback = log_progress,
    ) -> None:
        self._engine = engine
        self._preprocess = preprocess
        self._progress = progress

    def extract(self, *, data: bytes, mime_type: str) -> ExtractResult:
        payload, payload_mime, preprocessed = data, mime_type, False
        if self._preprocess:
            try:
                payload, payload_mime, preprocessed = preprocess_image(data), "image/png", True
            except Exception as e:
                logger.warning("Image preprocessing failed, using original bytes: %s", e)

        engine = self._engine.get()
        try:
            rec = engine.recognize(payload, mime_type=payload_mime, progress=self._safe_progress)
        except UnidentifiedImageError as e:
            raise BackendException(f"Failed to extract text from image: {e}") from e

        text = normalize_text(rec.text)
        logger.info("Extracted %d characters from image (engine=%s)", len(text), engine.name)
        require_text(text, "Image appears to contain no readable text")

        return ExtractResult(
            text=text,
            source_format=SourceFormat.IMAGE,
            confidence=rec.confidence,
            pages=1,
            extraction_meta={
                "strategy": engine.name,
                "preprocessed": preprocessed,
                "confidence": rec.confidence,
            },
        )

    def _safe_progress(self, percent: int) -> None:
        try:
            self._progress(max(0, min(100, int(percent))))
        except Exception:
            logger.debug("OCR progress callback raised", exc_info=True)
