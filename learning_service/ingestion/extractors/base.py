from __future__ import annotations

from abc import ABC, abstractmethod

from learning_service.ingestion.errors import EmptyExtraction
from learning_service.ingestion.types import ExtractResult

# Raw backend output shorter than this is treated as "nothing extracted".
MIN_EXTRACTED_CHARS = 10


class Extractor(ABC):
    @abstractmethod
    def extract(self, *, data: bytes, mime_type: str) -> ExtractResult: ...


def normalize_text(text: str) -> str:
    if not text:
        return ""
    # Remove null bytes, normalize whitespace a bit
    text = text.replace("\x00", "")
    # Collapse very long runs of blank lines
    while "\n\n\n\n" in text:
        text = text.replace("\n\n\n\n", "\n\n\n")
    return text.strip()


def require_text(text: str, message: str) -> str:
    if len(text.strip()) < MIN_EXTRACTED_CHARS:
        raise EmptyExtraction(message)
    return text
