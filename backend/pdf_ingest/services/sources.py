"""
Source loading — where a document's bytes come from.

  upload  → S3 object at storage_ref
  url     → HTTP GET of source_url
  drive   → Drive API files/{id}?alt=media with a bearer token

Network-level failures become TransientIOFailure so the work queue can
retry the attempt; a definitive "not there" (404, missing S3 key) is
reported as ExtractionFailure because retrying will not help.
"""

from __future__ import annotations

import logging
import os
from urllib.parse import unquote, urlparse

import httpx
from botocore.exceptions import BotoCoreError, ClientError

from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import (
    ExtractionFailure,
    InvalidDocumentError,
    NoFileSourceError,
    TransientIOFailure,
)
from pdf_ingest.models.documents import Document
from pdf_ingest.schemas.documents import PDF_MAGIC
from pdf_ingest.storage.s3 import S3BlobStorage

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; pdf-ingest/1.0; +https://example.com/bot)"

_RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}


# ---------------------------------------------------------------------------
# URL naming helpers
# ---------------------------------------------------------------------------

def filename_from_url(url: str) -> str:
    """Last path segment of the URL, with '.pdf' appended when missing."""
    path = unquote(urlparse(url).path)
    name = os.path.basename(path.rstrip("/")) or "document"
    if not name.lower().endswith(".pdf"):
        name = f"{name}.pdf"
    return name


def title_from_filename(filename: str) -> str:
    """'q3-market_report.pdf' → 'q3 market report'."""
    stem = filename[:-4] if filename.lower().endswith(".pdf") else filename
    return stem.replace("-", " ").replace("_", " ").strip() or filename


def validate_pdf_bytes(data: bytes, name: str, max_bytes: int | None = None) -> None:
    """Raises InvalidDocumentError for empty, oversized or non-PDF content."""
    limit = max_bytes or settings.max_file_size_bytes
    if not data:
        raise InvalidDocumentError(f"'{name}' is empty.", details={"reason": "empty"})
    if len(data) > limit:
        raise InvalidDocumentError(
            f"'{name}' is {len(data):,} bytes; limit is {limit:,} bytes.",
            details={"reason": "too_large", "size_bytes": len(data), "limit": limit},
        )
    if not data.startswith(PDF_MAGIC):
        raise InvalidDocumentError(
            f"'{name}' does not start with a %PDF header.",
            details={"reason": "not_a_pdf", "name": name},
        )


# ---------------------------------------------------------------------------
# Loader
# ---------------------------------------------------------------------------

class SourceLoader:

    def __init__(
        self,
        storage: S3BlobStorage,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._storage = storage
        self._http = http_client

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=settings.http_timeout_seconds,
                follow_redirects=True,
            )
        return self._http

    async def load(self, document: Document) -> bytes:
        """Fetch the PDF bytes for a recorded document from its original source."""
        if document.storage_ref:
            return await self.load_from_storage(document.storage_ref)
        if document.source_url:
            return await self.fetch_url(document.source_url)
        if document.drive_file_id:
            return await self.fetch_drive_file(document.drive_file_id)
        raise NoFileSourceError(document.id)

    async def load_from_storage(self, key: str) -> bytes:
        try:
            return await self._storage.get(key)
        except FileNotFoundError as exc:
            raise ExtractionFailure(f"Stored PDF not found: {key}") from exc
        except (ClientError, BotoCoreError) as exc:
            raise TransientIOFailure(f"S3 read failed for {key}: {exc}") from exc

    async def fetch_url(self, url: str) -> bytes:
        return await self._get(url, headers={"User-Agent": USER_AGENT})

    async def fetch_drive_file(self, drive_file_id: str) -> bytes:
        if not settings.drive_access_token:
            raise ExtractionFailure("Drive access is not configured (DRIVE_ACCESS_TOKEN)")
        url = f"{settings.drive_api_base_url.rstrip('/')}/files/{drive_file_id}"
        return await self._get(
            url,
            headers={"Authorization": f"Bearer {settings.drive_access_token}"},
            params={"alt": "media"},
        )

    async def _get(self, url: str, headers: dict, params: dict | None = None) -> bytes:
        try:
            resp = await self._client().get(url, headers=headers, params=params)
        except httpx.TransportError as exc:
            reason = str(exc) or type(exc).__name__
            raise TransientIOFailure(
                f"Failed to fetch {url}: {reason}", details={"url": url, "reason": reason},
            ) from exc

        if resp.status_code >= 400:
            reason = f"HTTP {resp.status_code}"
            error_cls = (
                TransientIOFailure if resp.status_code in _RETRYABLE_STATUS else ExtractionFailure
            )
            raise error_cls(
                f"Failed to fetch {url}: {reason}",
                details={"url": url, "reason": reason, "status_code": resp.status_code},
            )

        logger.info("Source fetched | url=%s bytes=%d", url, len(resp.content))
        return resp.content

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
