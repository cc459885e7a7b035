"""
Content hashing and the duplicate gate.

The digest depends only on the file bytes; renaming a PDF, re-uploading it
from a different URL or syncing it from Drive all produce the same hash, so
duplicate detection is content-based rather than name-based.

The gate is advisory: two near-simultaneous uploads of identical bytes can
both pass check(). UNIQUE(file_hash) on ingest.documents is the final guard
and IngestionService turns the resulting IntegrityError into the same
DuplicateContentError the gate would have raised.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from pdf_ingest.models.documents import Document
from pdf_ingest.schemas.documents import DocumentSummary
from pdf_ingest.services.store import DocumentStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Checksum computation
# ---------------------------------------------------------------------------

def compute_sha256(data: bytes) -> str:
    """Return the SHA-256 hex digest of file bytes (64 lowercase hex chars)."""
    return hashlib.sha256(data).hexdigest()


def summarize(document: Document) -> DocumentSummary:
    return DocumentSummary(
        id=document.id,
        title=document.title,
        filename=document.filename,
        created_at=document.created_at,
    )


# ---------------------------------------------------------------------------
# Duplicate gate
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DuplicateCheck:
    is_duplicate: bool
    existing: DocumentSummary | None = None


class DuplicateGate:
    """Looks up existing documents before any storage write or extraction."""

    def __init__(self, documents: DocumentStore) -> None:
        self._documents = documents

    async def check(self, file_hash: str) -> DuplicateCheck:
        existing = await self._documents.find_by_hash(file_hash)
        if existing is None:
            return DuplicateCheck(is_duplicate=False)

        logger.info(
            "Duplicate content | hash=%s existing_doc=%s title=%r",
            file_hash[:16], existing.id, existing.title,
        )
        return DuplicateCheck(is_duplicate=True, existing=summarize(existing))

    async def check_drive_file(self, drive_file_id: str) -> DuplicateCheck:
        """Cheap pre-check for drive sync: same drive file already imported."""
        existing = await self._documents.find_by_drive_file_id(drive_file_id)
        if existing is None:
            return DuplicateCheck(is_duplicate=False)
        return DuplicateCheck(is_duplicate=True, existing=summarize(existing))
