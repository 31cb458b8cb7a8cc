from __future__ import annotations

import logging
from dataclasses import dataclass

from google.cloud import documentai_v1 as documentai

from learning_service.ingestion.ocr.engine import ProgressCallback, Recognition

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocAIConfig:
    project: str
    location: str
    processor_id: str

    @property
    def processor_name(self) -> str:
        return f"projects/{self.project}/locations/{self.location}/processors/{self.processor_id}"


class DocumentAIEngine:
    """
    Online Document AI OCR for single images. The image is sent inline, so
    there is no GCS staging; the preprocessed PNG is what gets recognized.
    """

    name = "documentai"

    def __init__(self, *, cfg: DocAIConfig, client: documentai.DocumentProcessorServiceClient | None = None) -> None:
        self._cfg = cfg
        self._client = client or documentai.DocumentProcessorServiceClient()

    def recognize(self, image: bytes, *, mime_type: str, progress: ProgressCallback) -> Recognition:
        progress(0)
        req = documentai.ProcessRequest(
            name=self._cfg.processor_name,
            raw_document=documentai.RawDocument(content=image, mime_type=mime_type),
        )
        resp = self._client.process_document(request=req)
        progress(100)
        doc = resp.document
        return Recognition(text=doc.text or "", confidence=_page_confidence(doc))

    def close(self) -> None:
        transport = getattr(self._client, "transport", None)
        if transport is not None:
            transport.close()
        logger.info("Document AI engine closed")


def _page_confidence(doc: documentai.Document) -> float | None:
    scores: list[float] = []
    for page in doc.pages or []:
        layout = getattr(page, "layout", None)
        conf = getattr(layout, "confidence", None)
        if isinstance(conf, (int, float)):
            scores.append(float(conf))
    if not scores:
        return None
    return sum(scores) / len(scores)
