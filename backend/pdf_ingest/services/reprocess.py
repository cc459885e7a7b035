"""
Reprocessing Controller

reprocess(document_id):
  1. best-effort delete of the previous assistant file (index_file_id) and
     of the document's chunk vectors; failures are logged, never raised
  2. reset status=pending, clear processing_error / index_file_id / index_status
  3. enqueue process_document; the duplicate gate is NOT re-run

refresh_metadata(document_id):
  re-runs only LLM metadata extraction from the stored text and replaces
  the metadata columns. Never touches status or the index.

No lock is taken: two concurrent reprocess calls each get their own
ProcessingJob row and the last writer wins on the status columns.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from pdf_ingest.core.errors import DocumentNotFoundError, NoFileSourceError
from pdf_ingest.models.documents import Document
from pdf_ingest.processing.metadata import MetadataExtractor
from pdf_ingest.processing.text import TextExtractor
from pdf_ingest.schemas.documents import (
    DocumentStatus,
    MetadataRefreshResponse,
    ReprocessResponse,
)
from pdf_ingest.services.sources import SourceLoader
from pdf_ingest.services.store import DocumentStore
from pdf_ingest.storage.s3 import S3BlobStorage
from pdf_ingest.vectorstore.assistant import IndexStore
from pdf_ingest.vectorstore.base import VectorStoreBase
from pdf_ingest.workers.queue import PROCESS_DOCUMENT, WorkQueue

logger = logging.getLogger(__name__)


class ReprocessingController:

    def __init__(
        self,
        documents:    DocumentStore,
        index_store:  IndexStore,
        vector_store: VectorStoreBase,
        queue:        WorkQueue,
        storage:      S3BlobStorage,
        sources:      SourceLoader,
        metadata_extractor: MetadataExtractor | None = None,
        text_extractor:     TextExtractor | None = None,
    ) -> None:
        self._documents = documents
        self._index     = index_store
        self._vectors   = vector_store
        self._queue     = queue
        self._storage   = storage
        self._sources   = sources
        self._metadata  = metadata_extractor or MetadataExtractor()
        self._text      = text_extractor or TextExtractor()

    async def _require(self, document_id: UUID) -> Document:
        document = await self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    # ------------------------------------------------------------------
    # Reprocess
    # ------------------------------------------------------------------

    async def reprocess(self, document_id: UUID) -> ReprocessResponse:
        document = await self._require(document_id)
        if not document.has_file_source():
            raise NoFileSourceError(document_id)

        previous_file_id = document.index_file_id
        cleanup_ok = True

        if previous_file_id:
            try:
                await self._index.delete(previous_file_id)
            except Exception as exc:
                cleanup_ok = False
                logger.warning(
                    "Index delete failed, continuing | doc=%s file_id=%s error=%s",
                    document_id, previous_file_id, exc,
                )

        try:
            await self._vectors.delete_by_document(str(document_id))
        except Exception as exc:
            cleanup_ok = False
            logger.warning("Vector delete failed, continuing | doc=%s error=%s", document_id, exc)

        await self._documents.update(
            document_id,
            status=DocumentStatus.PENDING.value,
            processing_error=None,
            index_file_id=None,
            index_status=None,
        )

        task_id: str | None = None
        try:
            task_id = await self._queue.enqueue(PROCESS_DOCUMENT, {"document_id": str(document_id)})
            await self._documents.update(
                document_id, queue_task_id=task_id, queued_at=datetime.now(timezone.utc),
            )
        except Exception as exc:
            logger.error("Failed to publish reprocess task | doc=%s error=%s", document_id, exc)

        logger.info(
            "Reprocess queued | doc=%s previous_file_id=%s cleanup_ok=%s task=%s",
            document_id, previous_file_id, cleanup_ok, task_id,
        )
        return ReprocessResponse(
            document_id=document_id,
            status=DocumentStatus.PENDING,
            task_id=task_id,
            previous_index_file_id=previous_file_id,
            index_cleanup_ok=cleanup_ok,
        )

    # ------------------------------------------------------------------
    # Metadata refresh
    # ------------------------------------------------------------------

    async def refresh_metadata(self, document_id: UUID) -> MetadataRefreshResponse:
        document = await self._require(document_id)
        text = await self._load_text(document)
        if not text:
            return MetadataRefreshResponse(
                document_id=document_id, updated=False, error="No text content available",
            )

        keywords, areas = await self._documents.known_vocabulary()
        result = await self._metadata.extract(text, keywords, areas)
        if not result.success or result.metadata is None:
            logger.warning("Metadata refresh failed | doc=%s error=%s", document_id, result.error)
            return MetadataRefreshResponse(document_id=document_id, updated=False, error=result.error)

        await self._documents.update(document_id, **result.metadata.to_columns())
        logger.info("Metadata refreshed | doc=%s", document_id)
        return MetadataRefreshResponse(document_id=document_id, updated=True)

    async def _load_text(self, document: Document) -> str | None:
        if document.extracted_text_ref:
            try:
                data = await self._storage.get(document.extracted_text_ref)
                return data.decode("utf-8", errors="replace")
            except FileNotFoundError:
                logger.warning("Stored text missing | doc=%s ref=%s", document.id, document.extracted_text_ref)

        if not document.has_file_source():
            raise NoFileSourceError(document.id)
        result = await self._text.extract(await self._sources.load(document))
        return result.text if result.success else None
