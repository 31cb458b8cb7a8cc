from __future__ import annotations

import io
import logging

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from learning_service.ingestion.errors import BackendException
from learning_service.ingestion.extractors.base import Extractor, normalize_text, require_text
from learning_service.ingestion.types import ExtractResult, SourceFormat

logger = logging.getLogger(__name__)


class PdfExtractor(Extractor):
    """Reads the embedded text layer only; scanned PDFs are not OCRed."""

    def extract(self, *, data: bytes, mime_type: str) -> ExtractResult:
        try:
            r = PdfReader(io.BytesIO(data))
            pages = len(r.pages)
            parts: list[str] = []
            for p in r.pages:
                t = p.extract_text() or ""
                if t.strip():
                    parts.append(t)
        except (PyPdfError, ValueError, KeyError, TypeError) as e:
            raise BackendException(f"Failed to extract text from PDF: {e}") from e

        text = normalize_text("\n".join(parts))
        logger.info("Extracted %d characters from %d PDF page(s)", len(text), pages)
        require_text(text, "PDF appears to be empty or contains only images")

        return ExtractResult(
            text=text,
            source_format=SourceFormat.PDF,
            confidence=None,
            pages=pages,
            extraction_meta={
                "strategy": "pypdf",
                "text_per_page": int(len(text) / max(pages, 1)),
            },
        )
