from __future__ import annotations

from learning_service.ingestion.extractors.base import Extractor, require_text
from learning_service.ingestion.types import ExtractResult, SourceFormat


class TextExtractor(Extractor):
    def extract(self, *, data: bytes, mime_type: str) -> ExtractResult:
        # Plain text is passed through: only trimmed, never reflowed.
        text = data.decode("utf-8", errors="ignore").replace("\x00", "").strip()
        require_text(text, "Text file appears to be empty")
        return ExtractResult(
            text=text,
            source_format=SourceFormat.PLAIN_TEXT,
            confidence=None,
            pages=None,
            extraction_meta={"strategy": "text", "bytes": len(data)},
        )
