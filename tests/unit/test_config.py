"""Unit tests for ingestion configuration and pipeline wiring."""

from __future__ import annotations

from dataclasses import replace

import pytest

from learning_service.ingestion.config import IngestConfig
from learning_service.ingestion.pipeline import build_pipeline


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "LEARNING_OCR_ENGINE",
        "LEARNING_OCR_LANG",
        "LEARNING_OCR_TIMEOUT_SECONDS",
        "LEARNING_OCR_PREPROCESS",
        "LEARNING_DOC_AI_PROJECT",
        "LEARNING_DOC_AI_LOCATION",
        "LEARNING_DOC_AI_PROCESSOR_ID",
        "LEARNING_DOWNLOAD_TIMEOUT_SECONDS",
        "LEARNING_INGEST_TEMP_DIR",
        "LEARNING_INGEST_SHUTDOWN_GRACE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestIngestConfig:
    def test_defaults(self, clean_env):
        cfg = IngestConfig.from_env()
        assert cfg.ocr_engine == "tesseract"
        assert cfg.ocr_lang == "eng"
        assert cfg.ocr_timeout_seconds == 300.0
        assert cfg.preprocess_images is True
        assert cfg.temp_dir is None
        cfg.validate()

    def test_env_overrides(self, clean_env):
        clean_env.setenv("LEARNING_OCR_ENGINE", " DocumentAI ")
        clean_env.setenv("LEARNING_OCR_PREPROCESS", "off")
        clean_env.setenv("LEARNING_OCR_TIMEOUT_SECONDS", "45")
        cfg = IngestConfig.from_env()
        assert cfg.ocr_engine == "documentai"
        assert cfg.preprocess_images is False
        assert cfg.ocr_timeout_seconds == 45.0

    def test_unknown_engine(self, clean_env):
        clean_env.setenv("LEARNING_OCR_ENGINE", "easyocr")
        with pytest.raises(ValueError, match="LEARNING_OCR_ENGINE must be one of"):
            IngestConfig.from_env().validate()

    def test_document_ai_requires_processor(self, clean_env):
        clean_env.setenv("LEARNING_OCR_ENGINE", "documentai")
        clean_env.setenv("LEARNING_DOC_AI_PROJECT", "proj")
        with pytest.raises(ValueError, match="LEARNING_DOC_AI_LOCATION, LEARNING_DOC_AI_PROCESSOR_ID"):
            IngestConfig.from_env().validate()

    def test_non_positive_timeout(self, clean_env):
        cfg = replace(IngestConfig.from_env(), ocr_timeout_seconds=0)
        with pytest.raises(ValueError, match="LEARNING_OCR_TIMEOUT_SECONDS"):
            cfg.validate()


class TestBuildPipeline:
    async def test_engine_is_lazy_and_closed(self, clean_env, store):
        pipeline = build_pipeline(IngestConfig.from_env(), store=store)
        assert not pipeline.engine.initialized
        await pipeline.aclose()
        assert pipeline.scheduler.pending == 0

    def test_invalid_config_fails_fast(self, clean_env, store):
        cfg = replace(IngestConfig.from_env(), ocr_engine="nope")
        with pytest.raises(ValueError):
            build_pipeline(cfg, store=store)
