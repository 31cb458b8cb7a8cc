"""Error taxonomy for document ingestion.

Run-time errors (raised inside an ingestion run) are converted into a
persisted ``failed`` status by the runner. Request-time rejections
(``AlreadyProcessing``, ``AlreadyCompleted``, ``ResourceNotFound``) reach the
caller synchronously and never touch the resource.
"""

from __future__ import annotations


class IngestionError(Exception):
    """Base class for everything the ingestion pipeline raises on purpose."""

    kind = "ingestion_error"
    retryable = True


class UnsupportedFormat(IngestionError):
    kind = "unsupported_format"
    retryable = False


class DownloadFailed(IngestionError):
    kind = "download_failed"


class EmptyExtraction(IngestionError):
    kind = "empty_extraction"


class BackendException(IngestionError):
    kind = "backend_exception"


class ExtractionTimeout(IngestionError):
    kind = "extraction_timeout"


class SourceMissing(IngestionError):
    kind = "source_missing"


class AlreadyProcessing(IngestionError):
    kind = "already_processing"
    retryable = False


class AlreadyCompleted(IngestionError):
    kind = "already_completed"
    retryable = False


class ResourceNotFound(IngestionError):
    kind = "resource_not_found"
    retryable = False
