"""OCR recognition engines and the process-wide engine handle.

Engines are expensive to create (Tesseract binary probe, Document AI gRPC
channel), so the service keeps one per process behind an `OcrEngineHandle`:
created lazily on first use, torn down from the application lifespan.
"""

from __future__ import annotations

import io
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import pytesseract
from PIL import Image

from learning_service.ingestion.config import IngestConfig
from learning_service.ingestion.errors import BackendException

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class Recognition:
    text: str
    confidence: float | None  # 0..1


class OcrEngine(Protocol):
    name: str

    def recognize(self, image: bytes, *, mime_type: str, progress: ProgressCallback) -> Recognition: ...

    def close(self) -> None: ...


def log_progress(percent: int) -> None:
    logger.info("OCR progress: %d%%", percent)


class TesseractEngine:
    """Local Tesseract recognition through pytesseract."""

    name = "tesseract"

    def __init__(self, *, lang: str = "eng") -> None:
        self._lang = lang
        try:
            version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as e:
            raise BackendException("Tesseract binary not found; install tesseract-ocr") from e
        logger.info("Tesseract engine ready (version=%s, lang=%s)", version, lang)

    def recognize(self, image: bytes, *, mime_type: str, progress: ProgressCallback) -> Recognition:
        progress(0)
        with Image.open(io.BytesIO(image)) as img:
            img.load()
            progress(10)
            # One pass: words, layout and confidences all come from image_to_data.
            data = pytesseract.image_to_data(img, lang=self._lang, output_type=pytesseract.Output.DICT)
        progress(90)
        text = _text_from_data(data)
        progress(100)
        return Recognition(text=text, confidence=_mean_confidence(data.get("conf", []), data.get("text", [])))

    def close(self) -> None:
        # pytesseract shells out per call; nothing to release
        logger.info("Tesseract engine closed")


def _text_from_data(data: dict[str, list[object]]) -> str:
    """Rebuild page text from word boxes: words joined per line, blank line between blocks."""
    words = data.get("text", [])
    blocks = data.get("block_num", [0] * len(words))
    pars = data.get("par_num", [0] * len(words))
    lines = data.get("line_num", [0] * len(words))

    out: list[str] = []
    current: list[str] = []
    last_key: tuple[object, object, object] | None = None
    for word, block, par, line in zip(words, blocks, pars, lines, strict=False):
        token = str(word or "").strip()
        if not token:
            continue
        key = (block, par, line)
        if last_key is not None and key != last_key:
            out.append(" ".join(current))
            if block != last_key[0]:
                out.append("")
            current = []
        current.append(token)
        last_key = key
    if current:
        out.append(" ".join(current))
    return "\n".join(out)


def _mean_confidence(confs: list[object], words: list[object]) -> float | None:
    values: list[float] = []
    for conf, word in zip(confs, words, strict=False):
        if not str(word or "").strip():
            continue
        try:
            c = float(conf)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            continue
        if c >= 0:
            values.append(c / 100.0)
    if not values:
        return None
    return max(0.0, min(1.0, sum(values) / len(values)))


def build_engine(cfg: IngestConfig) -> OcrEngine:
    if cfg.ocr_engine == "documentai":
        from learning_service.ingestion.ocr.document_ai import DocAIConfig, DocumentAIEngine

        return DocumentAIEngine(
            cfg=DocAIConfig(
                project=cfg.docai_project or "",
                location=cfg.docai_location or "",
                processor_id=cfg.docai_processor_id or "",
            )
        )
    return TesseractEngine(lang=cfg.ocr_lang)


class OcrEngineHandle:
    """Init-on-first-use holder for the process OCR engine.

    `get()` is called from worker threads (extraction runs off the event
    loop), hence the lock.
    """

    def __init__(self, factory: Callable[[], OcrEngine]) -> None:
        self._factory = factory
        self._engine: OcrEngine | None = None
        self._lock = threading.Lock()
        self._closed = False

    def get(self) -> OcrEngine:
        with self._lock:
            if self._closed:
                raise BackendException("OCR engine has been shut down")
            if self._engine is None:
                logger.info("Initializing OCR engine")
                self._engine = self._factory()
            return self._engine

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    def close(self) -> None:
        with self._lock:
            engine, self._engine = self._engine, None
            self._closed = True
        if engine is not None:
            try:
                engine.close()
            except Exception:
                logger.warning("OCR engine teardown failed", exc_info=True)
