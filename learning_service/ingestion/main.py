from __future__ import annotations

import argparse
import asyncio
import logging

from learning_service.db import close_pool
from learning_service.ingestion.cli import build_parser
from learning_service.ingestion.config import IngestConfig
from learning_service.ingestion.errors import IngestionError
from learning_service.ingestion.pipeline import build_pipeline
from learning_service.ingestion.runner import STARTABLE_FROM
from learning_service.ingestion.types import OcrStatus, Resource
from learning_service.logging_config import setup_logging
from learning_service.stores.resource_store import PgResourceStore, ResourceQuery, ResourceRepository

logger = logging.getLogger("learning_service.ingestion")


async def select_resources(store: ResourceRepository, args: argparse.Namespace) -> list[Resource]:
    if args.resource_id:
        selected: list[Resource] = []
        for rid in args.resource_id:
            resource = await store.find_by_id(rid)
            if resource is None:
                logger.warning("Resource %s not found or deleted; skipping", rid)
                continue
            selected.append(resource)
        return selected

    limit = max(1, int(args.limit))
    statuses = [OcrStatus.FAILED] + ([OcrStatus.PROCESSING] if args.include_stuck else [])
    selected = []
    for status in statuses:
        remaining = limit - len(selected)
        if remaining <= 0:
            break
        selected.extend(
            await store.find_many(ResourceQuery(ocr_status=status), sort="created_at", limit=remaining)
        )
    return selected


async def _amain(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level.upper())

    cfg = IngestConfig.from_env()
    cfg.validate()

    store = PgResourceStore()
    allow_from = STARTABLE_FROM + ((OcrStatus.PROCESSING,) if args.include_stuck else ())
    totals = {"total": 0, "completed": 0, "skipped": 0, "failed": 0}

    try:
        resources = await select_resources(store, args)
        totals["total"] = len(resources)
        logger.info("Selected %d resource(s) for ingestion", len(resources))

        if args.dry_run:
            for r in resources:
                logger.info("[DRY-RUN] %s %s (%s, %s)", r.id, r.storage_key, r.declared_mime_type, r.ocr_status.value)
            return 0

        pipeline = build_pipeline(cfg, store=store)
        try:
            for r in resources:
                try:
                    outcome = await pipeline.runner.run_now(
                        r.id, r.storage_key, r.declared_mime_type, allow_from=allow_from
                    )
                except IngestionError as e:
                    logger.warning("Skipping resource %s: %s", r.id, e)
                    totals["skipped"] += 1
                    continue
                totals[outcome.status.value] += 1
        finally:
            await pipeline.aclose()
    finally:
        await close_pool()

    logger.info("DONE totals=%s", totals)
    return 0 if totals["failed"] == 0 else 2


def main() -> None:
    raise SystemExit(asyncio.run(_amain()))


if __name__ == "__main__":
    main()
