"""
Ingestion Pipeline — worker-side orchestrator

Runs one attempt for one document, strictly in order:

  ┌───────────────────────────────────────────────────────────────────────┐
  │  RECORD_CREATED (status=pending|failed)                               │
  │     │  job=extracting, status=processing                              │
  │     ▼                                                                 │
  │  load bytes (storage | url | drive)                                   │
  │     ▼                                                                 │
  │  TEXT_EXTRACTED      cached text blob or TextExtractor     [fatal]    │
  │     │  job=embedding                                                  │
  │     ▼                                                                 │
  │  EMBEDDED            split → embed (≤128/batch) → upsert   [fatal]    │
  │     ▼                                                                 │
  │  INDEXED             enriched .txt → assistant upload      [fatal]    │
  │     │  job=storing, index_status=Processing                           │
  │     │  poll describe() every 2s, ceiling 300s                         │
  │     ▼                                                                 │
  │  METADATA_ENRICHED   thumbnail, LLM metadata               [best-effort]
  │     ▼                                                                 │
  │  COMPLETED           status=completed, index_status=Available         │
  └───────────────────────────────────────────────────────────────────────┘

Any fatal error: status=failed with the (truncated) raw message, job=failed,
index_status=Failed if the upload had happened. The pipeline never retries
a stage itself; PipelineOutcome.retryable tells the work queue whether a
whole-attempt retry makes sense.

All collaborators are constructor arguments; nothing here reaches for a
module-level client.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Sequence
from uuid import UUID

from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import (
    DocumentNotFoundError,
    ExtractionFailure,
    IndexingRejected,
    IndexingTimeout,
    IngestionError,
    truncate_error,
)
from pdf_ingest.models.documents import Document
from pdf_ingest.processing.embeddings import OpenAIEmbedder, build_vector_records, split_text
from pdf_ingest.processing.metadata import MetadataExtractor
from pdf_ingest.processing.text import TextExtractor
from pdf_ingest.processing.thumbnail import ThumbnailExtractor
from pdf_ingest.schemas.documents import DocumentStatus, IndexStatus, JobStage
from pdf_ingest.services.flags import PipelineFlags, PipelineFlagsStore
from pdf_ingest.services.jobs import JobTracker
from pdf_ingest.services.polling import poll_until
from pdf_ingest.services.sources import SourceLoader
from pdf_ingest.services.store import DocumentStore
from pdf_ingest.storage.s3 import ResourceType, S3BlobStorage
from pdf_ingest.vectorstore.assistant import IndexFileState, IndexStore
from pdf_ingest.vectorstore.base import VectorStoreBase

logger = logging.getLogger(__name__)

RUNNABLE_STATUSES = (DocumentStatus.PENDING.value, DocumentStatus.FAILED.value)

TEXT_BLOB_NAME      = "extracted.txt"
THUMBNAIL_BLOB_NAME = "thumbnail.png"


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class PipelineOutcome:
    document_id: UUID
    status:      DocumentStatus
    job_id:      UUID | None = None
    error:       str | None = None
    retryable:   bool = False
    skipped:     bool = False
    counters:    dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Index document helpers
# ---------------------------------------------------------------------------

def build_index_document(
    text: str,
    summary: str | None = None,
    key_findings: Sequence[str] | None = None,
) -> str:
    """Text handed to the assistant index: summary and findings ahead of the content."""
    parts: list[str] = []
    if summary:
        parts.append(f"SUMMARY:\n{summary}")
    if key_findings:
        numbered = "\n".join(f"{i}. {finding}" for i, finding in enumerate(key_findings, start=1))
        parts.append(f"KEY FINDINGS:\n{numbered}")
    parts.append(f"DOCUMENT CONTENT:\n{text}")
    return "\n\n".join(parts)


def build_index_metadata(document: Document) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "document_id": str(document.id),
        "title":       document.title or "",
        "filename":    document.filename or "",
        "source":      document.source,
    }
    optional = {
        "company":          document.company,
        "year":             str(document.year) if document.year else None,
        "region":           document.region,
        "industry":         document.industry,
        "document_type":    document.document_type,
        "author":           document.author,
        "keywords":         list(document.keywords or []),
        "technology_areas": list(document.technology_areas or []),
    }
    metadata.update({k: v for k, v in optional.items() if v})
    return metadata


@contextlib.contextmanager
def staged_text_file(content: str, filename: str) -> Iterator[Path]:
    """
    Write `content` to a temp .txt file named after the PDF and yield its
    path. The file is removed on every exit path.
    """
    stem = Path(filename or "document").stem or "document"
    tmp = tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        prefix=f"{stem}-",
        suffix=".txt",
        delete=False,
    )
    path = Path(tmp.name)
    try:
        with tmp:
            tmp.write(content)
        yield path
    finally:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(path)


class _AttemptState:
    """Mutable bookkeeping for one attempt; read by the failure handler."""

    def __init__(self) -> None:
        self.index_file_id: str | None = None
        self.counters: dict[str, Any] = {}


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class IngestionPipeline:

    def __init__(
        self,
        documents:     DocumentStore,
        jobs:          JobTracker,
        flags:         PipelineFlagsStore,
        sources:       SourceLoader,
        storage:       S3BlobStorage,
        vector_store:  VectorStoreBase,
        index_store:   IndexStore,
        embedder:      OpenAIEmbedder,
        text_extractor:      TextExtractor | None = None,
        thumbnail_extractor: ThumbnailExtractor | None = None,
        metadata_extractor:  MetadataExtractor | None = None,
        poll_interval: float | None = None,
        poll_timeout:  float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._documents = documents
        self._jobs      = jobs
        self._flags     = flags
        self._sources   = sources
        self._storage   = storage
        self._vectors   = vector_store
        self._index     = index_store
        self._embedder  = embedder
        self._text      = text_extractor or TextExtractor()
        self._thumbnail = thumbnail_extractor or ThumbnailExtractor(settings.thumbnail_scale)
        self._metadata  = metadata_extractor or MetadataExtractor()
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.index_poll_interval_seconds
        )
        self._poll_timeout = (
            poll_timeout if poll_timeout is not None else settings.index_poll_timeout_seconds
        )
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, document_id: UUID) -> PipelineOutcome:
        document = await self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)

        if document.status not in RUNNABLE_STATUSES:
            logger.info(
                "Pipeline skipped | doc=%s status=%s", document_id, document.status,
            )
            return PipelineOutcome(
                document_id=document_id,
                status=DocumentStatus(document.status),
                skipped=True,
            )

        flags = await self._flags.load()
        job_id = await self._jobs.create_job(document_id, JobStage.EXTRACTING)
        await self._documents.update(
            document_id, status=DocumentStatus.PROCESSING.value, processing_error=None,
        )
        state = _AttemptState()
        t0 = time.monotonic()

        logger.info(
            "Pipeline start | doc=%s job=%s source=%s processing_enabled=%s",
            document_id, job_id, document.source, flags.processing_enabled,
        )

        try:
            if flags.processing_enabled:
                await self._process(document, job_id, flags, state)
            else:
                await self._record_only(document, job_id, flags, state)
        except Exception as exc:
            return await self._fail(document_id, job_id, exc, state)

        state.counters["elapsed_ms"] = round((time.monotonic() - t0) * 1000)
        await self._jobs.update_job(job_id, JobStage.COMPLETED, metadata=state.counters)
        logger.info("Pipeline completed | doc=%s job=%s %s", document_id, job_id, state.counters)
        return PipelineOutcome(
            document_id=document_id,
            status=DocumentStatus.COMPLETED,
            job_id=job_id,
            counters=state.counters,
        )

    # ------------------------------------------------------------------
    # Full path
    # ------------------------------------------------------------------

    async def _process(
        self,
        document: Document,
        job_id: UUID,
        flags: PipelineFlags,
        state: _AttemptState,
    ) -> None:
        pdf_bytes = await self._sources.load(document)
        state.counters["size_bytes"] = len(pdf_bytes)

        # ── Text ────────────────────────────────────────────────────────
        text = await self._obtain_text(document, pdf_bytes, flags, state)

        # ── Embedding ───────────────────────────────────────────────────
        await self._jobs.update_job(
            job_id, JobStage.EMBEDDING, metadata={"page_count": state.counters.get("page_count")},
        )
        chunks = split_text(text)
        vectors = await self._embedder.embed(chunks)
        records = build_vector_records(document.id, chunks, vectors, title=document.title)
        upserted = await self._vectors.upsert(records)
        state.counters["chunk_count"] = upserted
        logger.info("Embedded | doc=%s chunks=%d", document.id, upserted)

        # ── Indexing ────────────────────────────────────────────────────
        await self._discard_previous_index_file(document)
        index_doc = build_index_document(text, document.summary, document.key_findings)
        with staged_text_file(index_doc, document.filename) as path:
            file_id = await self._index.upload(path, build_index_metadata(document))
        state.index_file_id = file_id
        state.counters["index_file_id"] = file_id

        await self._documents.update(
            document.id, index_file_id=file_id, index_status=IndexStatus.PROCESSING.value,
        )
        await self._jobs.update_job(job_id, JobStage.STORING, metadata={"index_file_id": file_id})

        await self._wait_for_index(file_id)

        # ── Enrichment (best-effort) ────────────────────────────────────
        await self._enrich(document, pdf_bytes, text, flags, state)

        # ── Finalize ────────────────────────────────────────────────────
        await self._documents.update(
            document.id,
            status=DocumentStatus.COMPLETED.value,
            processing_error=None,
            index_status=IndexStatus.AVAILABLE.value,
        )

    async def _record_only(
        self,
        document: Document,
        job_id: UUID,
        flags: PipelineFlags,
        state: _AttemptState,
    ) -> None:
        """processing_enabled=false: keep text and enrichment, skip indexing."""
        state.counters["indexing_skipped"] = True
        pdf_bytes = await self._sources.load(document)

        text: str | None = None
        if flags.text_extraction_enabled:
            try:
                text = await self._obtain_text(document, pdf_bytes, flags, state)
            except ExtractionFailure as exc:
                logger.warning("Text extraction failed (indexing disabled) | doc=%s error=%s",
                               document.id, exc)

        await self._enrich(document, pdf_bytes, text, flags, state)
        await self._documents.update(
            document.id, status=DocumentStatus.COMPLETED.value, processing_error=None,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _obtain_text(
        self,
        document: Document,
        pdf_bytes: bytes,
        flags: PipelineFlags,
        state: _AttemptState,
    ) -> str:
        cached = await self._read_cached_text(document)
        if cached:
            state.counters["text_cached"] = True
            state.counters["page_count"] = document.page_count
            return cached

        result = await self._text.extract(pdf_bytes)
        if not result.success:
            raise ExtractionFailure(result.error or "Text extraction failed")

        state.counters["page_count"] = result.page_count
        values: dict[str, Any] = {
            "page_count":         result.page_count,
            "extracted_at":       datetime.now(timezone.utc),
            "extraction_version": settings.extraction_version,
        }
        if flags.text_extraction_enabled:
            stored = await self._storage.put(
                result.text.encode("utf-8"),
                document.id,
                TEXT_BLOB_NAME,
                resource=ResourceType.TEXT,
                content_type="text/plain; charset=utf-8",
            )
            values["extracted_text_ref"] = stored.key
        await self._documents.update(document.id, **values)
        return result.text

    async def _read_cached_text(self, document: Document) -> str | None:
        if not document.extracted_text_ref:
            return None
        if document.extraction_version != settings.extraction_version:
            return None
        try:
            data = await self._storage.get(document.extracted_text_ref)
        except Exception as exc:
            logger.warning(
                "Cached text unreadable, re-extracting | doc=%s ref=%s error=%s",
                document.id, document.extracted_text_ref, exc,
            )
            return None
        text = data.decode("utf-8", errors="replace")
        return text if text.strip() else None

    async def _discard_previous_index_file(self, document: Document) -> None:
        """Drop the file a previous attempt left in the index before uploading again."""
        previous = document.index_file_id
        if not previous:
            return
        try:
            await self._index.delete(previous)
        except Exception as exc:
            logger.warning(
                "Index delete failed, continuing | doc=%s file_id=%s error=%s",
                document.id, previous, exc,
            )
        await self._documents.update(document.id, index_file_id=None, index_status=None)
        document.index_file_id = None
        document.index_status = None

    async def _wait_for_index(self, file_id: str) -> None:
        outcome = await poll_until(
            lambda: self._index.describe(file_id),
            is_terminal=lambda s: s.is_terminal,
            interval=self._poll_interval,
            timeout=self._poll_timeout,
            clock=self._clock,
            sleep=self._sleep,
        )
        state: IndexFileState | None = outcome.value
        if outcome.timed_out:
            raise IndexingTimeout(file_id, outcome.elapsed)
        if state is not None and state.status == IndexStatus.FAILED:
            raise IndexingRejected(file_id, state.error)
        logger.info(
            "Index available | file_id=%s attempts=%d elapsed=%.1fs",
            file_id, outcome.attempts, outcome.elapsed,
        )

    async def _enrich(
        self,
        document: Document,
        pdf_bytes: bytes,
        text: str | None,
        flags: PipelineFlags,
        state: _AttemptState,
    ) -> None:
        """Thumbnail and metadata are independent; neither can fail the attempt."""
        if not document.thumbnail_ref:
            try:
                state.counters["thumbnail"] = await self._store_thumbnail(document, pdf_bytes)
            except Exception as exc:
                state.counters["thumbnail"] = False
                logger.warning("Thumbnail step failed | doc=%s error=%s", document.id, exc)

        if flags.metadata_extraction_enabled and not document.summary and text:
            try:
                state.counters["metadata"] = await self.extract_metadata(document.id, text)
            except Exception as exc:
                state.counters["metadata"] = False
                logger.warning("Metadata step failed | doc=%s error=%s", document.id, exc)

    async def _store_thumbnail(self, document: Document, pdf_bytes: bytes) -> bool:
        result = await self._thumbnail.extract(pdf_bytes)
        if not result.success or not result.image:
            logger.warning("No thumbnail | doc=%s error=%s", document.id, result.error)
            return False
        stored = await self._storage.put(
            result.image,
            document.id,
            THUMBNAIL_BLOB_NAME,
            resource=ResourceType.THUMBNAIL,
            content_type="image/png",
        )
        await self._documents.update(document.id, thumbnail_ref=stored.key)
        return True

    async def extract_metadata(self, document_id: UUID, text: str) -> bool:
        """Run the LLM extractor and persist the validated fields. Used by refresh too."""
        keywords, areas = await self._documents.known_vocabulary()
        result = await self._metadata.extract(text, keywords, areas)
        if not result.success or result.metadata is None:
            logger.warning("No metadata | doc=%s error=%s", document_id, result.error)
            return False
        await self._documents.update(document_id, **result.metadata.to_columns())
        return True

    # ------------------------------------------------------------------
    # Failure
    # ------------------------------------------------------------------

    async def _fail(
        self,
        document_id: UUID,
        job_id: UUID,
        exc: Exception,
        state: _AttemptState,
    ) -> PipelineOutcome:
        if isinstance(exc, IngestionError):
            message, retryable = exc.message, exc.is_transient
            logger.error("Pipeline failed | doc=%s job=%s code=%s error=%s",
                         document_id, job_id, exc.error_code, message)
        else:
            message, retryable = str(exc) or type(exc).__name__, False
            logger.exception("Pipeline failed (unclassified) | doc=%s job=%s", document_id, job_id)

        error = truncate_error(message, settings.max_error_length)
        values: dict[str, Any] = {
            "status": DocumentStatus.FAILED.value,
            "processing_error": error,
        }
        if state.index_file_id:
            values["index_status"] = IndexStatus.FAILED.value
        await self._documents.update(document_id, **values)
        await self._jobs.update_job(job_id, JobStage.FAILED, metadata=state.counters, error=error)

        return PipelineOutcome(
            document_id=document_id,
            status=DocumentStatus.FAILED,
            job_id=job_id,
            error=error,
            retryable=retryable,
            counters=state.counters,
        )

    async def aclose(self) -> None:
        await self._sources.aclose()
