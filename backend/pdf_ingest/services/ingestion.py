"""
Document Ingestion Service — API side (START → RECORD_CREATED)

Accepts a document from one of three sources and records it:
  1. Obtain the bytes (multipart upload, URL fetch, Drive download)
  2. Validate: non-empty, ≤ max_file_size_bytes, %PDF magic bytes
  3. SHA-256 → duplicate gate (before any storage write)
  4. Upload-sourced only: store the original in S3
     (URL / drive documents keep their reference and are re-fetched by the worker)
  5. Insert ingest.documents row (status=pending)
  6. Enqueue process_document on the work queue
  7. Return 202 with the document id and queue task id

Invariants:
  - A duplicate is rejected before anything is stored.
  - UNIQUE(file_hash) is the final guard: an IntegrityError on insert is
    reported as the same DuplicateContentError the gate raises.
  - A failed publish is non-fatal. The document stays pending and the
    stale-pending beat task re-queues it.

Errors are raised as IngestionError subclasses; the route layer turns them
into structured HTTP responses.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from pdf_ingest.core.errors import (
    DuplicateContentError,
    ExtractionFailure,
    SourceFetchError,
    TransientIOFailure,
)
from pdf_ingest.models.documents import Document
from pdf_ingest.schemas.documents import (
    PDF_CONTENT_TYPE,
    DocumentSource,
    DocumentStatus,
    DriveIngestRequest,
    IngestionAcceptedResponse,
    UrlIngestRequest,
)
from pdf_ingest.services.dedup import DuplicateGate, compute_sha256, summarize
from pdf_ingest.services.sources import (
    SourceLoader,
    filename_from_url,
    title_from_filename,
    validate_pdf_bytes,
)
from pdf_ingest.services.store import DocumentStore
from pdf_ingest.storage.s3 import ResourceType, S3BlobStorage
from pdf_ingest.workers.queue import PROCESS_DOCUMENT, WorkQueue

logger = logging.getLogger(__name__)


def sanitize_filename(filename: str) -> str:
    """
    Strip path components and replace unsafe characters.
    Returns only the basename with OS-safe characters.
    """
    basename = filename.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)
    return safe[:200] or "document.pdf"


class IngestionService:
    """
    Stateless service object; all collaborators are injected.
    """

    def __init__(
        self,
        documents: DocumentStore,
        gate:      DuplicateGate,
        storage:   S3BlobStorage,
        sources:   SourceLoader,
        queue:     WorkQueue,
    ) -> None:
        self._documents = documents
        self._gate      = gate
        self._storage   = storage
        self._sources   = sources
        self._queue     = queue

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def ingest_upload(
        self,
        data:        bytes,
        filename:    str,
        title:       str | None = None,
        author:      str | None = None,
        description: str | None = None,
    ) -> IngestionAcceptedResponse:
        safe_filename = sanitize_filename(filename or "upload.pdf")
        validate_pdf_bytes(data, safe_filename)
        file_hash = await self._check_duplicate(data)

        document_id = uuid.uuid4()
        logger.info(
            "Ingest start | source=upload file=%s size=%d hash=%s",
            safe_filename, len(data), file_hash[:16],
        )

        stored = await self._store_original(document_id, safe_filename, data)

        document = Document(
            id=document_id,
            file_hash=file_hash,
            source=DocumentSource.UPLOAD.value,
            storage_ref=stored.key,
            title=(title or "").strip() or title_from_filename(safe_filename),
            filename=safe_filename,
            author=author,
            description=description,
        )
        try:
            return await self._record_and_enqueue(document, len(data))
        except DuplicateContentError:
            await self._discard_blob(stored.key)
            raise

    async def ingest_url(self, request: UrlIngestRequest) -> IngestionAcceptedResponse:
        url = str(request.url)
        filename = sanitize_filename(filename_from_url(url))

        try:
            data = await self._sources.fetch_url(url)
        except (ExtractionFailure, TransientIOFailure) as exc:
            raise SourceFetchError(url, exc.details.get("reason", exc.message)) from exc

        validate_pdf_bytes(data, filename)
        file_hash = await self._check_duplicate(data)
        logger.info("Ingest start | source=url url=%s size=%d hash=%s", url, len(data), file_hash[:16])

        document = Document(
            id=uuid.uuid4(),
            file_hash=file_hash,
            source=DocumentSource.URL.value,
            source_url=url,
            title=(request.title or "").strip() or title_from_filename(filename),
            filename=filename,
            author=request.author,
            description=request.description,
        )
        return await self._record_and_enqueue(document, len(data))

    async def ingest_drive(self, request: DriveIngestRequest) -> IngestionAcceptedResponse:
        already = await self._gate.check_drive_file(request.drive_file_id)
        if already.is_duplicate and already.existing is not None:
            raise DuplicateContentError(already.existing)

        filename = sanitize_filename(request.filename)
        try:
            data = await self._sources.fetch_drive_file(request.drive_file_id)
        except (ExtractionFailure, TransientIOFailure) as exc:
            raise SourceFetchError(
                f"drive:{request.drive_file_id}", exc.details.get("reason", exc.message),
            ) from exc

        validate_pdf_bytes(data, filename)
        file_hash = await self._check_duplicate(data)
        logger.info(
            "Ingest start | source=drive drive_file=%s size=%d hash=%s",
            request.drive_file_id, len(data), file_hash[:16],
        )

        document = Document(
            id=uuid.uuid4(),
            file_hash=file_hash,
            source=DocumentSource.DRIVE.value,
            drive_file_id=request.drive_file_id,
            title=(request.title or "").strip() or title_from_filename(filename),
            filename=filename,
            author=request.author,
            description=request.description,
        )
        return await self._record_and_enqueue(document, len(data))

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _check_duplicate(self, data: bytes) -> str:
        file_hash = compute_sha256(data)
        check = await self._gate.check(file_hash)
        if check.is_duplicate and check.existing is not None:
            raise DuplicateContentError(check.existing)
        return file_hash

    async def _store_original(self, document_id: uuid.UUID, filename: str, data: bytes):
        try:
            return await self._storage.put(
                data,
                document_id,
                filename,
                resource=ResourceType.DOCUMENT,
                content_type=PDF_CONTENT_TYPE,
            )
        except Exception as exc:
            logger.exception("S3 upload failed | doc=%s", document_id)
            raise TransientIOFailure(f"Failed to store the document: {exc}") from exc

    async def _record_and_enqueue(
        self,
        document: Document,
        size_bytes: int,
    ) -> IngestionAcceptedResponse:
        now = datetime.now(timezone.utc)
        document.status = DocumentStatus.PENDING.value
        document.created_at = now
        document.updated_at = now

        try:
            await self._documents.insert(document)
        except IntegrityError as exc:
            # Concurrent upload of identical bytes passed the gate first
            existing = await self._documents.find_by_hash(document.file_hash)
            if existing is None:
                raise
            logger.info("Duplicate caught on insert | hash=%s", document.file_hash[:16])
            raise DuplicateContentError(summarize(existing)) from exc

        task_id: str | None = None
        try:
            task_id = await self._queue.enqueue(PROCESS_DOCUMENT, {"document_id": str(document.id)})
            await self._documents.update(
                document.id, queue_task_id=task_id, queued_at=datetime.now(timezone.utc),
            )
        except Exception as exc:
            # Document is recorded; requeue_stale_documents will pick it up
            logger.error("Failed to publish processing task | doc=%s error=%s", document.id, exc)

        return IngestionAcceptedResponse(
            document_id=document.id,
            file_hash=document.file_hash,
            status=DocumentStatus.PENDING,
            source=DocumentSource(document.source),
            title=document.title,
            filename=document.filename,
            size_bytes=size_bytes,
            task_id=task_id,
            created_at=now,
        )

    async def _discard_blob(self, key: str) -> None:
        try:
            await self._storage.delete(key)
        except Exception as exc:
            logger.warning("Orphaned upload left in S3 | key=%s error=%s", key, exc)
