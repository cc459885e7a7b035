"""
Composed FastAPI Dependencies

Single wiring point between the routes and the service layer. Route
handlers import the Annotated aliases at the bottom of this module and
never construct stores, clients or queues themselves; tests replace any
of the get_* providers through app.dependency_overrides.

Process-wide singletons (storage, source loader, work queue) are cached;
services are cheap and built per request.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends

from pdf_ingest.core.config import settings
from pdf_ingest.services.dedup import DuplicateGate
from pdf_ingest.services.ingestion import IngestionService
from pdf_ingest.services.jobs import JobTracker
from pdf_ingest.services.reprocess import ReprocessingController
from pdf_ingest.services.sources import SourceLoader
from pdf_ingest.services.status import ApprovalService, IndexStatusSync
from pdf_ingest.services.store import DocumentStore
from pdf_ingest.storage.s3 import S3BlobStorage
from pdf_ingest.vectorstore.assistant import IndexStore
from pdf_ingest.vectorstore.base import VectorStoreBase
from pdf_ingest.vectorstore.factory import get_index_store, get_vector_store
from pdf_ingest.workers.queue import (
    PROCESS_DOCUMENT,
    CeleryWorkQueue,
    InlineWorkQueue,
    WorkQueue,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# 1. Process-wide clients
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_storage() -> S3BlobStorage:
    return S3BlobStorage()


@lru_cache(maxsize=1)
def get_source_loader() -> SourceLoader:
    return SourceLoader(get_storage())


async def _process_inline(document_id: str) -> None:
    from pdf_ingest.workers.tasks import build_pipeline, process_document_async

    pipeline = build_pipeline()
    try:
        await process_document_async(UUID(document_id), pipeline=pipeline)
    finally:
        await pipeline.aclose()


@lru_cache(maxsize=1)
def get_work_queue() -> WorkQueue:
    """WORK_QUEUE_BACKEND selects Celery (default) or in-process execution."""
    if settings.work_queue_backend == "inline":
        logger.info("Work queue: inline (documents are processed inside the request)")
        return InlineWorkQueue({PROCESS_DOCUMENT: _process_inline})
    return CeleryWorkQueue()


# ---------------------------------------------------------------------------
# 2. Stores
# ---------------------------------------------------------------------------

def get_document_store() -> DocumentStore:
    return DocumentStore()


def get_job_tracker() -> JobTracker:
    return JobTracker()


def get_vectors() -> VectorStoreBase:
    return get_vector_store()


def get_index() -> IndexStore:
    return get_index_store()


# ---------------------------------------------------------------------------
# 3. Services
# ---------------------------------------------------------------------------

def get_duplicate_gate(
    documents: Annotated[DocumentStore, Depends(get_document_store)],
) -> DuplicateGate:
    return DuplicateGate(documents)


def get_ingestion_service(
    documents: Annotated[DocumentStore,  Depends(get_document_store)],
    gate:      Annotated[DuplicateGate,  Depends(get_duplicate_gate)],
    storage:   Annotated[S3BlobStorage,  Depends(get_storage)],
    sources:   Annotated[SourceLoader,   Depends(get_source_loader)],
    queue:     Annotated[WorkQueue,      Depends(get_work_queue)],
) -> IngestionService:
    return IngestionService(documents, gate, storage, sources, queue)


def get_reprocessing_controller(
    documents: Annotated[DocumentStore,   Depends(get_document_store)],
    index:     Annotated[IndexStore,      Depends(get_index)],
    vectors:   Annotated[VectorStoreBase, Depends(get_vectors)],
    queue:     Annotated[WorkQueue,       Depends(get_work_queue)],
    storage:   Annotated[S3BlobStorage,   Depends(get_storage)],
    sources:   Annotated[SourceLoader,    Depends(get_source_loader)],
) -> ReprocessingController:
    return ReprocessingController(documents, index, vectors, queue, storage, sources)


def get_approval_service(
    documents: Annotated[DocumentStore, Depends(get_document_store)],
) -> ApprovalService:
    return ApprovalService(documents)


def get_index_status_sync(
    documents: Annotated[DocumentStore, Depends(get_document_store)],
    index:     Annotated[IndexStore,    Depends(get_index)],
) -> IndexStatusSync:
    return IndexStatusSync(documents, index)


# ---------------------------------------------------------------------------
# Type aliases for cleaner route signatures
# ---------------------------------------------------------------------------

Documents   = Annotated[DocumentStore,          Depends(get_document_store)]
Jobs        = Annotated[JobTracker,             Depends(get_job_tracker)]
Gate        = Annotated[DuplicateGate,          Depends(get_duplicate_gate)]
Queue       = Annotated[WorkQueue,              Depends(get_work_queue)]
Ingestion   = Annotated[IngestionService,       Depends(get_ingestion_service)]
Reprocessor = Annotated[ReprocessingController, Depends(get_reprocessing_controller)]
Approvals   = Annotated[ApprovalService,        Depends(get_approval_service)]
IndexSync   = Annotated[IndexStatusSync,        Depends(get_index_status_sync)]
Storage     = Annotated[S3BlobStorage,          Depends(get_storage)]
