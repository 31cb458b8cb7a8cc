"""Unit test conftest — no database, GCS or OCR binary required."""

from __future__ import annotations

import io
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import replace
from typing import Any

import pytest
from PIL import Image, ImageDraw

from learning_service.ingestion.ocr.engine import OcrEngineHandle, Recognition
from learning_service.ingestion.types import OcrStatus, Resource, file_kind_for
from learning_service.stores.resource_store import NewResource, ResourceQuery

# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeOcrEngine:
    """Recognizes a fixed string and reports progress like the real engines."""

    name = "fake"

    def __init__(self, text: str = "", confidence: float | None = 0.9) -> None:
        self.text = text
        self.confidence = confidence
        self.calls: list[tuple[bytes, str]] = []
        self.closed = False

    def recognize(self, image: bytes, *, mime_type: str, progress) -> Recognition:  # type: ignore[no-untyped-def]
        self.calls.append((image, mime_type))
        progress(0)
        progress(50)
        progress(100)
        return Recognition(text=self.text, confidence=self.confidence)

    def close(self) -> None:
        self.closed = True


class InMemoryResourceStore:
    """Dict-backed ResourceRepository that records every status written."""

    def __init__(self) -> None:
        self.rows: dict[str, Resource] = {}
        self.status_history: dict[str, list[OcrStatus]] = {}
        self.fail_updates = False
        self.quiz_links: list[tuple[str, str]] = []

    def add(self, resource: Resource) -> Resource:
        self.rows[resource.id] = resource
        self.status_history.setdefault(resource.id, [resource.ocr_status])
        return resource

    async def create(self, new: NewResource) -> Resource:
        return self.add(
            Resource(
                id=str(uuid.uuid4()),
                title=new.title,
                description=new.description,
                original_file_name=new.original_file_name,
                storage_key=new.storage_key,
                url=new.url,
                declared_mime_type=new.declared_mime_type,
                file_size_bytes=new.file_size_bytes,
                file_kind=new.file_kind,
                uploaded_by=new.uploaded_by,
                subject=new.subject,
                tags=list(new.tags),
            )
        )

    async def find_by_id(self, resource_id: str, *, include_deleted: bool = False) -> Resource | None:
        r = self.rows.get(resource_id)
        if r is None or (r.is_deleted and not include_deleted):
            return None
        return r

    async def update_by_id(self, resource_id: str, fields: Mapping[str, Any]) -> bool:
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        r = self.rows.get(resource_id)
        if r is None:
            return False
        self.rows[resource_id] = replace(r, **fields)
        if "ocr_status" in fields:
            self.status_history[resource_id].append(OcrStatus(fields["ocr_status"]))
        return True

    async def claim_for_processing(self, resource_id: str, allowed_from: Iterable[OcrStatus]) -> bool:
        r = self.rows.get(resource_id)
        if r is None or r.is_deleted or r.ocr_status not in tuple(allowed_from):
            return False
        self.rows[resource_id] = replace(r, ocr_status=OcrStatus.PROCESSING, ocr_error=None)
        self.status_history[resource_id].append(OcrStatus.PROCESSING)
        return True

    def _matching(self, query: ResourceQuery) -> list[Resource]:
        out = []
        for r in self.rows.values():
            if r.is_deleted and not query.include_deleted:
                continue
            if query.ocr_status is not None and r.ocr_status is not query.ocr_status:
                continue
            if query.file_kind is not None and r.file_kind is not query.file_kind:
                continue
            if query.subject is not None and r.subject != query.subject:
                continue
            out.append(r)
        return out

    async def find_many(
        self, query: ResourceQuery, *, sort: str = "-created_at", limit: int = 20, skip: int = 0
    ) -> list[Resource]:
        return [replace(r, extracted_text=None) for r in self._matching(query)[skip : skip + limit]]

    async def count_documents(self, query: ResourceQuery) -> int:
        return len(self._matching(query))

    async def append_quiz(self, resource_id: str, quiz_id: str) -> None:
        r = self.rows[resource_id]
        self.rows[resource_id] = replace(
            r, quiz_generated=True, generated_quiz_ids=[*r.generated_quiz_ids, quiz_id]
        )
        self.quiz_links.append((resource_id, quiz_id))

    async def delete_by_id(self, resource_id: str) -> bool:
        return self.rows.pop(resource_id, None) is not None


def make_resource(**overrides: Any) -> Resource:
    mime = overrides.pop("declared_mime_type", "text/plain")
    fields: dict[str, Any] = {
        "id": str(uuid.uuid4()),
        "title": "Photosynthesis notes",
        "original_file_name": "notes.txt",
        "storage_key": "/nonexistent/notes.txt",
        "declared_mime_type": mime,
        "file_size_bytes": 1024,
        "file_kind": file_kind_for(mime),
        "uploaded_by": "admin@example.com",
    }
    fields.update(overrides)
    return Resource(**fields)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def resource_factory():
    return make_resource


@pytest.fixture
def store() -> InMemoryResourceStore:
    return InMemoryResourceStore()


@pytest.fixture
def fake_engine() -> FakeOcrEngine:
    return FakeOcrEngine(text="The mitochondria is the powerhouse of the cell.")


@pytest.fixture
def engine_handle(fake_engine: FakeOcrEngine) -> OcrEngineHandle:
    return OcrEngineHandle(lambda: fake_engine)


@pytest.fixture
def sample_pdf_bytes() -> bytes:
    """Generate a 1-page PDF with 3 lines via fpdf2."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=12)
    pdf.cell(text="Line one of the PDF document.")
    pdf.ln()
    pdf.cell(text="Line two with additional content.")
    pdf.ln()
    pdf.cell(text="Line three concludes the page.")
    return bytes(pdf.output())


@pytest.fixture
def five_page_pdf_bytes() -> bytes:
    """Five pages of four 99-character lines: roughly 2000 characters of text."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.set_font("Helvetica", size=10)
    line = "Cells divide by mitosis. "  # 25 characters
    for _ in range(5):
        pdf.add_page()
        for _ in range(4):
            pdf.cell(text=(line * 4).strip())
            pdf.ln()
    return bytes(pdf.output())


@pytest.fixture
def empty_pdf_bytes() -> bytes:
    """Generate a 1-page PDF with no text content."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.add_page()
    return bytes(pdf.output())


@pytest.fixture
def blank_png_bytes() -> bytes:
    """A white scanned page with nothing on it."""
    buf = io.BytesIO()
    Image.new("RGB", (200, 120), "white").save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def text_png_bytes() -> bytes:
    img = Image.new("RGB", (400, 80), "white")
    ImageDraw.Draw(img).text((10, 30), "Mitochondria make ATP", fill="black")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
