"""Materializes a storage locator as a local file for one extraction run.

Locators are local paths, ``gs://bucket/name`` objects, or ``http(s)`` URLs.
Remote sources are downloaded into a temporary file owned by the caller's
``async with`` block and removed on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import httpx
from google.cloud import storage

from learning_service.ingestion.errors import DownloadFailed, SourceMissing
from learning_service.ingestion.gcs import blob_exists, download_bytes, parse_gs_uri

logger = logging.getLogger(__name__)

_USER_AGENT = "learning-service-ocr/1.0"

_EXTENSIONS: dict[str, str] = {
    "application/pdf": ".pdf",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "text/plain": ".txt",
}


def extension_for(mime_type: str) -> str:
    mime = (mime_type or "").split(";", 1)[0].strip().lower()
    return _EXTENSIONS.get(mime, ".bin")


def is_remote(locator: str) -> bool:
    return locator.startswith(("http://", "https://", "gs://"))


@dataclass(frozen=True)
class LocalSource:
    path: Path
    temporary: bool


class SourceFetcher:
    def __init__(
        self,
        *,
        timeout_s: float = 60.0,
        temp_dir: str | None = None,
        storage_client_factory: Callable[[], storage.Client] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout_s
        self._temp_dir = temp_dir
        self._storage_client_factory = storage_client_factory or storage.Client
        self._storage_client: storage.Client | None = None
        self._transport = transport

    @asynccontextmanager
    async def open(self, locator: str, mime_type: str) -> AsyncIterator[LocalSource]:
        if not is_remote(locator):
            path = Path(locator)
            if not await asyncio.to_thread(path.is_file):
                raise SourceMissing(f"Resource file not found: {locator}")
            yield LocalSource(path=path, temporary=False)
            return

        path = await self._download(locator, mime_type)
        try:
            yield LocalSource(path=path, temporary=True)
        finally:
            await asyncio.to_thread(_unlink_quietly, path)

    async def exists(self, locator: str) -> bool:
        if locator.startswith(("http://", "https://")):
            try:
                async with self._client() as client:
                    resp = await client.head(locator)
                return resp.is_success
            except httpx.HTTPError as e:
                logger.warning("HEAD %s failed: %s", locator, e)
                return False
        if locator.startswith("gs://"):
            try:
                bucket, name = parse_gs_uri(locator)
                return await asyncio.to_thread(blob_exists, self._gcs(), bucket, name)
            except Exception as e:
                logger.warning("GCS existence check for %s failed: %s", locator, e)
                return False
        return await asyncio.to_thread(Path(locator).is_file)

    async def _download(self, locator: str, mime_type: str) -> Path:
        logger.info("Downloading remote source %s", locator)
        if locator.startswith("gs://"):
            data = await self._download_gcs(locator)
        else:
            data = await self._download_http(locator)

        fd, name = tempfile.mkstemp(prefix="ocr-", suffix=extension_for(mime_type), dir=self._temp_dir)
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as f:
                await asyncio.to_thread(f.write, data)
        except BaseException:
            _unlink_quietly(path)
            raise
        logger.info("Downloaded %d bytes to %s", len(data), path)
        return path

    async def _download_http(self, url: str) -> bytes:
        # httpx timeouts bound each read separately; the deadline bounds the whole transfer.
        try:
            async with self._client() as client:
                resp = await asyncio.wait_for(client.get(url), self._timeout)
                resp.raise_for_status()
                return resp.content
        except (TimeoutError, httpx.TimeoutException) as e:
            raise DownloadFailed(f"Failed to download file from URL: timed out after {self._timeout:g}s") from e
        except httpx.HTTPStatusError as e:
            raise DownloadFailed(
                f"Failed to download file from URL: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise DownloadFailed(f"Failed to download file from URL: {e}") from e

    async def _download_gcs(self, uri: str) -> bytes:
        try:
            bucket, name = parse_gs_uri(uri)
        except ValueError as e:
            raise DownloadFailed(str(e)) from e
        try:
            return await asyncio.to_thread(download_bytes, self._gcs(), bucket, name, timeout=self._timeout)
        except Exception as e:  # google-api-core and transport errors alike
            raise DownloadFailed(f"Failed to download {uri}: {e}") from e

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
            transport=self._transport,
        )

    def _gcs(self) -> storage.Client:
        if self._storage_client is None:
            self._storage_client = self._storage_client_factory()
        return self._storage_client


def _unlink_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
        logger.debug("Cleaned up temporary file %s", path)
    except OSError as e:
        logger.error("Failed to clean up temporary file %s: %s", path, e)
