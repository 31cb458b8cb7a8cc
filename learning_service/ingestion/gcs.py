from __future__ import annotations

from google.cloud import storage


def gs_uri(bucket: str, name: str) -> str:
    return f"gs://{bucket}/{name}"


def parse_gs_uri(uri: str) -> tuple[str, str]:
    """
    Splits gs://bucket/path/to/object into (bucket, object name).
    """
    if not uri.startswith("gs://"):
        raise ValueError(f"Not a gs:// URI: {uri}")
    bucket, _, name = uri[len("gs://") :].partition("/")
    if not bucket or not name:
        raise ValueError(f"gs:// URI must include bucket and object name: {uri}")
    return bucket, name


def download_bytes(client: storage.Client, bucket: str, name: str, *, timeout: float = 60.0) -> bytes:
    b = client.bucket(bucket)
    blob = b.blob(name)
    return blob.download_as_bytes(timeout=timeout)


def upload_bytes(
    client: storage.Client, bucket: str, name: str, data: bytes, *, content_type: str
) -> None:
    b = client.bucket(bucket)
    blob = b.blob(name)
    blob.upload_from_string(data, content_type=content_type)


def blob_exists(client: storage.Client, bucket: str, name: str) -> bool:
    return client.bucket(bucket).blob(name).exists()


def delete_object(client: storage.Client, bucket: str, name: str) -> None:
    client.bucket(bucket).blob(name).delete()
