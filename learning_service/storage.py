"""Where uploaded bytes live.

`LocalBlobStorage` writes under an upload directory (development);
`GcsBlobStorage` writes to a bucket and exposes a public URL. Both return a
`StoredObject` whose ``storage_key`` is the locator ingestion later fetches.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from google.api_core import exceptions as gcloud_exceptions
from google.cloud import storage

from learning_service.ingestion.gcs import delete_object, gs_uri, parse_gs_uri, upload_bytes

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def unique_name(filename: str) -> str:
    """``<millis>-<random>-<sanitized original name>``, unique per upload."""
    base = _UNSAFE.sub("_", os.path.basename(filename or "upload")).strip("._") or "upload"
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}-{base}"


@dataclass(frozen=True)
class StoredObject:
    storage_key: str
    url: str | None


class BlobStorage(Protocol):
    async def save(self, data: bytes, filename: str, content_type: str) -> StoredObject: ...

    async def delete(self, storage_key: str) -> None: ...


class LocalBlobStorage:
    def __init__(self, upload_dir: str) -> None:
        self._root = Path(upload_dir)

    async def save(self, data: bytes, filename: str, content_type: str) -> StoredObject:
        path = self._root / unique_name(filename)

        def _write() -> None:
            self._root.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("Stored upload at %s (%d bytes, %s)", path, len(data), content_type)
        return StoredObject(storage_key=str(path), url=None)

    async def delete(self, storage_key: str) -> None:
        try:
            await asyncio.to_thread(Path(storage_key).unlink)
        except FileNotFoundError:
            logger.warning("Upload %s was already removed", storage_key)


class GcsBlobStorage:
    def __init__(self, client: storage.Client, bucket: str, *, public_base_url: str) -> None:
        self._client = client
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/")

    async def save(self, data: bytes, filename: str, content_type: str) -> StoredObject:
        name = f"resources/{unique_name(filename)}"
        await asyncio.to_thread(
            upload_bytes, self._client, self._bucket, name, data, content_type=content_type
        )
        logger.info("Uploaded %s (%d bytes, %s)", gs_uri(self._bucket, name), len(data), content_type)
        return StoredObject(
            storage_key=gs_uri(self._bucket, name),
            url=f"{self._public_base_url}/{self._bucket}/{name}",
        )

    async def delete(self, storage_key: str) -> None:
        bucket, name = parse_gs_uri(storage_key)
        try:
            await asyncio.to_thread(delete_object, self._client, bucket, name)
        except gcloud_exceptions.NotFound:
            logger.warning("Object %s was already removed", storage_key)
