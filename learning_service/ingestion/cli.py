from __future__ import annotations

import argparse


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="learning-ingest",
        description="Run OCR ingestion for uploaded resources outside the API process",
    )

    scope = p.add_mutually_exclusive_group(required=True)
    scope.add_argument("--resource-id", action="append", default=[], help="Resource id to ingest (repeatable)")
    scope.add_argument(
        "--all-failed",
        action="store_true",
        help="Re-run every resource whose last OCR run failed",
    )

    p.add_argument(
        "--include-stuck",
        action="store_true",
        help="Also restart resources left in 'processing' by a crashed process",
    )
    p.add_argument("--limit", type=int, default=100, help="Max resources to process with --all-failed")
    p.add_argument("--dry-run", action="store_true", help="List work and exit (no DB writes)")
    p.add_argument("--log-level", default="INFO", help="Python logging level (INFO, DEBUG, ...)")
    return p
