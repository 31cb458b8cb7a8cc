from __future__ import annotations

import os
from dataclasses import dataclass

_OCR_ENGINES = ("tesseract", "documentai")


def _get_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in ("1", "true", "t", "yes", "y", "on")


def _get_float(name: str, default: float) -> float:
    v = os.getenv(name)
    if v is None:
        return default
    return float(v)


@dataclass(frozen=True)
class IngestConfig:
    # OCR engine
    ocr_engine: str  # tesseract|documentai
    ocr_lang: str
    ocr_timeout_seconds: float
    preprocess_images: bool

    # Document AI (ocr_engine=documentai)
    docai_project: str | None
    docai_location: str | None
    docai_processor_id: str | None

    # Remote fetch
    download_timeout_seconds: float
    temp_dir: str | None

    # Shutdown
    shutdown_grace_seconds: float

    @classmethod
    def from_env(cls) -> IngestConfig:
        return cls(
            ocr_engine=os.getenv("LEARNING_OCR_ENGINE", "tesseract").strip().lower(),
            ocr_lang=os.getenv("LEARNING_OCR_LANG", "eng"),
            ocr_timeout_seconds=_get_float("LEARNING_OCR_TIMEOUT_SECONDS", 300.0),
            preprocess_images=_get_bool("LEARNING_OCR_PREPROCESS", True),
            docai_project=os.getenv("LEARNING_DOC_AI_PROJECT"),
            docai_location=os.getenv("LEARNING_DOC_AI_LOCATION"),
            docai_processor_id=os.getenv("LEARNING_DOC_AI_PROCESSOR_ID"),
            download_timeout_seconds=_get_float("LEARNING_DOWNLOAD_TIMEOUT_SECONDS", 60.0),
            temp_dir=os.getenv("LEARNING_INGEST_TEMP_DIR") or None,
            shutdown_grace_seconds=_get_float("LEARNING_INGEST_SHUTDOWN_GRACE_SECONDS", 10.0),
        )

    def validate(self) -> None:
        if self.ocr_engine not in _OCR_ENGINES:
            raise ValueError(
                f"LEARNING_OCR_ENGINE must be one of {', '.join(_OCR_ENGINES)}, got {self.ocr_engine!r}"
            )

        if self.ocr_engine == "documentai":
            missing = [
                k
                for k, v in {
                    "LEARNING_DOC_AI_PROJECT": self.docai_project,
                    "LEARNING_DOC_AI_LOCATION": self.docai_location,
                    "LEARNING_DOC_AI_PROCESSOR_ID": self.docai_processor_id,
                }.items()
                if not v
            ]
            if missing:
                raise ValueError(f"Document AI engine selected but missing config: {', '.join(missing)}")

        if self.ocr_timeout_seconds <= 0:
            raise ValueError("LEARNING_OCR_TIMEOUT_SECONDS must be > 0")
        if self.download_timeout_seconds <= 0:
            raise ValueError("LEARNING_DOWNLOAD_TIMEOUT_SECONDS must be > 0")
