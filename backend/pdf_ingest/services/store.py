"""
Document record store.

Thin async repository over ingest.documents. Every method runs in its own
committed transaction (session_scope), so a stage transition written by the
worker is visible to the next UI poll without waiting for the attempt to end.

Write ownership: only the pipeline orchestrator and the reprocessing
controller change `status`; only ApprovalService changes the approval columns.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pdf_ingest.db.session import session_scope
from pdf_ingest.models.documents import Document

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


class DocumentStore:

    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session = session_factory

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get(self, document_id: UUID) -> Document | None:
        async with self._session() as db:
            result = await db.execute(select(Document).where(Document.id == document_id))
            return result.scalars().first()

    async def find_by_hash(self, file_hash: str) -> Document | None:
        async with self._session() as db:
            result = await db.execute(select(Document).where(Document.file_hash == file_hash))
            return result.scalars().first()

    async def find_by_drive_file_id(self, drive_file_id: str) -> Document | None:
        async with self._session() as db:
            result = await db.execute(
                select(Document).where(Document.drive_file_id == drive_file_id)
            )
            return result.scalars().first()

    async def list_documents(
        self,
        status: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Document]:
        stmt = select(Document)
        if status:
            stmt = stmt.where(Document.status == status)
        stmt = stmt.order_by(Document.created_at.desc()).offset(offset).limit(limit)
        async with self._session() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def list_stale_pending(self, older_than_minutes: int, limit: int = 50) -> list[Document]:
        """Documents left in 'pending' longer than the threshold (lost queue messages)."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
        async with self._session() as db:
            result = await db.execute(
                select(Document)
                .where(Document.status == "pending", Document.updated_at < cutoff)
                .order_by(Document.updated_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def list_by_index_status(self, index_status: str, limit: int = 100) -> list[Document]:
        async with self._session() as db:
            result = await db.execute(
                select(Document)
                .where(Document.index_status == index_status, Document.index_file_id.is_not(None))
                .order_by(Document.updated_at)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def known_vocabulary(self, limit: int = 200) -> tuple[list[str], list[str]]:
        """
        Distinct keywords and technology areas already in the library.
        Fed to the metadata prompt so new documents reuse existing tags.
        """
        kw_col = func.jsonb_array_elements_text(Document.keywords)
        ta_col = func.jsonb_array_elements_text(Document.technology_areas)
        async with self._session() as db:
            keywords = await db.execute(select(kw_col).distinct().limit(limit))
            areas    = await db.execute(select(ta_col).distinct().limit(limit))
            return (
                sorted(str(k) for k in keywords.scalars().all()),
                sorted(str(a) for a in areas.scalars().all()),
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def insert(self, document: Document) -> Document:
        """
        Insert a new document row.
        Raises IntegrityError when UNIQUE(file_hash) is violated; callers
        translate that into DuplicateContentError.
        """
        async with self._session() as db:
            db.add(document)
            await db.flush()
        logger.info(
            "Document recorded | doc=%s source=%s hash=%s",
            document.id, document.source, document.file_hash[:16],
        )
        return document

    async def update(self, document_id: UUID, **values: Any) -> None:
        if not values:
            return
        async with self._session() as db:
            await db.execute(
                update(Document).where(Document.id == document_id).values(**values)
            )
        logger.debug("Document updated | doc=%s fields=%s", document_id, sorted(values))
