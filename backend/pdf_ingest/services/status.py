"""
Status projection and review approval.

project_status() is a pure function of the stored columns and is recomputed
on every read. The three axes stay independent:

    status        pipeline outcome      (pipeline / reprocess only)
    approved      reviewer decision     (ApprovalService only)
    index_status  remote index state    (pipeline / reprocess / IndexStatusSync)

IndexStatusSync only ever writes index_status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from pdf_ingest.core.errors import DocumentNotFoundError, NoIndexFileError
from pdf_ingest.models.documents import Document
from pdf_ingest.schemas.documents import (
    DocumentStatus,
    DocumentStatusResponse,
    IndexStatus,
    IndexSyncResponse,
    IndexSyncResult,
    JobStage,
)
from pdf_ingest.services.store import DocumentStore
from pdf_ingest.vectorstore.assistant import IndexStore

logger = logging.getLogger(__name__)


def project_status(
    document: Document,
    current_stage: JobStage | None = None,
) -> DocumentStatusResponse:
    status = DocumentStatus(document.status)
    index_status = IndexStatus(document.index_status) if document.index_status else None
    approved = bool(document.approved)

    completed = status == DocumentStatus.COMPLETED
    indexed = index_status == IndexStatus.AVAILABLE

    return DocumentStatusResponse(
        document_id=document.id,
        status=status,
        index_status=index_status,
        error=document.processing_error,
        approved=approved,
        ready_for_review=completed and not approved,
        indexed=indexed,
        searchable=completed and approved and indexed,
        needs_retry=status == DocumentStatus.FAILED,
        current_stage=current_stage,
        updated_at=document.updated_at,
    )


class ApprovalService:

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    async def approve(self, document_id: UUID, approved_by: str) -> DocumentStatusResponse:
        await self._require(document_id)
        await self._documents.update(
            document_id,
            approved=True,
            approved_by=approved_by,
            approved_at=datetime.now(timezone.utc),
        )
        logger.info("Document approved | doc=%s by=%s", document_id, approved_by)
        return project_status(await self._require(document_id))

    async def reject(self, document_id: UUID) -> DocumentStatusResponse:
        await self._require(document_id)
        await self._documents.update(
            document_id, approved=False, approved_by=None, approved_at=None,
        )
        logger.info("Document approval withdrawn | doc=%s", document_id)
        return project_status(await self._require(document_id))

    async def _require(self, document_id: UUID) -> Document:
        document = await self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document


class IndexStatusSync:
    """
    Re-reads remote index state for documents whose stored index_status
    may be behind (a worker died mid-poll, or indexing finished after the
    poll ceiling).
    """

    def __init__(self, documents: DocumentStore, index_store: IndexStore) -> None:
        self._documents = documents
        self._index = index_store

    async def sync(self, document_id: UUID | None = None) -> IndexSyncResponse:
        if document_id is not None:
            return await self._sync_one(document_id)

        candidates = await self._documents.list_by_index_status(IndexStatus.PROCESSING.value)
        results: list[IndexSyncResult] = []
        for document in candidates:
            try:
                result = await self._refresh(document)
            except Exception as exc:
                logger.warning(
                    "Index status sync failed | doc=%s file_id=%s error=%s",
                    document.id, document.index_file_id, exc,
                )
                continue
            if result.previous_status != result.new_status:
                results.append(result)

        logger.info("Index status sync | checked=%d updated=%d", len(candidates), len(results))
        return IndexSyncResponse(checked=len(candidates), updated=len(results), results=results)

    async def _sync_one(self, document_id: UUID) -> IndexSyncResponse:
        document = await self._documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if not document.index_file_id:
            raise NoIndexFileError(document_id)

        result = await self._refresh(document)
        changed = int(result.previous_status != result.new_status)
        return IndexSyncResponse(checked=1, updated=changed, results=[result])

    async def _refresh(self, document: Document) -> IndexSyncResult:
        previous = IndexStatus(document.index_status) if document.index_status else None
        state = await self._index.describe(document.index_file_id)
        if state.status != previous:
            await self._documents.update(document.id, index_status=state.status.value)
            logger.info(
                "Index status changed | doc=%s file_id=%s %s -> %s",
                document.id, document.index_file_id, previous, state.status.value,
            )
        return IndexSyncResult(
            document_id=document.id,
            title=document.title,
            previous_status=previous,
            new_status=state.status,
        )
