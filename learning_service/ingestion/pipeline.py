from __future__ import annotations

import logging
from dataclasses import dataclass

from learning_service.ingestion.config import IngestConfig
from learning_service.ingestion.fetcher import SourceFetcher
from learning_service.ingestion.ocr.engine import OcrEngineHandle, build_engine
from learning_service.ingestion.router import ExtractionRouter
from learning_service.ingestion.runner import IngestionRunner
from learning_service.ingestion.scheduler import BackgroundScheduler
from learning_service.stores.resource_store import ResourceRepository

logger = logging.getLogger(__name__)


@dataclass
class IngestionPipeline:
    """Process-wide ingestion components, created once and closed at shutdown."""

    cfg: IngestConfig
    engine: OcrEngineHandle
    scheduler: BackgroundScheduler
    runner: IngestionRunner

    async def aclose(self) -> None:
        await self.scheduler.shutdown(timeout=self.cfg.shutdown_grace_seconds)
        self.engine.close()


def build_pipeline(cfg: IngestConfig, *, store: ResourceRepository) -> IngestionPipeline:
    cfg.validate()
    # The engine itself is created on the first image extraction.
    engine = OcrEngineHandle(lambda: build_engine(cfg))
    fetcher = SourceFetcher(timeout_s=cfg.download_timeout_seconds, temp_dir=cfg.temp_dir)
    router = ExtractionRouter.build(
        fetcher=fetcher,
        engine=engine,
        preprocess_images=cfg.preprocess_images,
        timeout_s=cfg.ocr_timeout_seconds,
    )
    scheduler = BackgroundScheduler()
    runner = IngestionRunner(store=store, router=router, scheduler=scheduler)
    logger.info("Ingestion pipeline ready (ocr_engine=%s)", cfg.ocr_engine)
    return IngestionPipeline(cfg=cfg, engine=engine, scheduler=scheduler, runner=runner)
