"""
S3 Blob Storage — originals, extracted text and thumbnails

Key layout (built server-side, never accepted from a client):

    s3://<BUCKET>/<PREFIX>/<resource_type>/<document_id>/<object_name>

  documents/   the original PDF bytes (upload-sourced documents only)
  text/        cached full-text extraction ("[Page N]" blocks, UTF-8)
  thumbnails/  first-page PNG render

Only the key is persisted on the document row (storage_ref,
extracted_text_ref, thumbnail_ref); presigned GET URLs are minted on demand.
"""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

import aioboto3
from botocore.exceptions import BotoCoreError, ClientError

from pdf_ingest.core.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Resource types — used to partition the S3 prefix
# ---------------------------------------------------------------------------

class ResourceType(str, Enum):
    DOCUMENT  = "documents"
    TEXT      = "text"
    THUMBNAIL = "thumbnails"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class S3Object:
    """Represents a stored object — returned by put()."""
    resource:     ResourceType
    key:          str          # full S3 key including prefix
    bucket:       str
    size_bytes:   int
    content_type: str
    etag:         str


def object_key(resource: ResourceType, document_id: UUID, name: str) -> str:
    """
    Build a document-scoped S3 key.
    Pattern:  <prefix>/<resource>/<document_id>/<name>
    """
    safe_name = name.replace("/", "_").replace("..", "_")
    return f"{settings.s3_prefix}/{resource.value}/{document_id}/{safe_name}"


# ---------------------------------------------------------------------------
# S3 Service
# ---------------------------------------------------------------------------

class S3BlobStorage:
    """
    Async S3 operations for document blobs.

    Stateless apart from the aioboto3 session; one instance is shared by the
    API process and the worker.
    """

    def __init__(self, bucket: str | None = None) -> None:
        self._bucket = bucket or settings.s3_bucket
        self._session = aioboto3.Session()

    @property
    def bucket(self) -> str:
        return self._bucket

    def _client(self):
        """Return a scoped async S3 client context manager."""
        kwargs: dict = {"region_name": settings.aws_region}
        # Local dev only; production runs on the task role
        if settings.aws_access_key_id:
            kwargs["aws_access_key_id"] = settings.aws_access_key_id
            kwargs["aws_secret_access_key"] = settings.aws_secret_access_key
        return self._session.client("s3", **kwargs)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def put(
        self,
        body: bytes,
        document_id: UUID,
        name: str,
        resource: ResourceType = ResourceType.DOCUMENT,
        content_type: str | None = None,
    ) -> S3Object:
        """Upload bytes under the document's prefix; the returned key is what gets persisted."""
        key = object_key(resource, document_id, name)
        ct  = content_type or mimetypes.guess_type(name)[0] or "application/octet-stream"

        async with self._client() as s3:
            resp = await s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentType=ct,
                Metadata={"document_id": str(document_id), "resource": resource.value},
            )

        logger.info(
            "S3 upload ok | doc=%s resource=%s key=%s size=%d",
            document_id, resource.value, key, len(body),
        )
        return S3Object(
            resource=resource,
            key=key,
            bucket=self._bucket,
            size_bytes=len(body),
            content_type=ct,
            etag=resp.get("ETag", "").strip('"'),
        )

    async def get(self, key: str) -> bytes:
        """
        Download an object by full key.
        Raises FileNotFoundError when the key does not exist.
        """
        async with self._client() as s3:
            try:
                resp = await s3.get_object(Bucket=self._bucket, Key=key)
                return await resp["Body"].read()
            except ClientError as exc:
                code = exc.response["Error"]["Code"]
                if code in ("NoSuchKey", "404"):
                    raise FileNotFoundError(f"Object not found: {key}") from exc
                raise

    async def delete(self, key: str) -> None:
        async with self._client() as s3:
            await s3.delete_object(Bucket=self._bucket, Key=key)
        logger.info("S3 delete | key=%s", key)

    async def get_url(self, key: str, expires_in: int | None = None) -> str:
        """Short-lived GET URL scoped to one object, for thumbnails and downloads."""
        async with self._client() as s3:
            return await s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=expires_in or settings.s3_presign_ttl_seconds,
            )

    async def check_health(self) -> dict:
        """HEAD the bucket; used by /ready."""
        try:
            async with self._client() as s3:
                await s3.head_bucket(Bucket=self._bucket)
            return {"status": "ok"}
        except (ClientError, BotoCoreError) as exc:
            logger.error("S3 health check failed: %s", exc)
            return {"status": "error", "detail": str(exc)}
