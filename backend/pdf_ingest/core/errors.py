"""
Ingestion error taxonomy.

Every failure the pipeline can classify is an IngestionError subclass.
The class attributes drive three decisions made elsewhere:

  is_fatal      — pipeline stops, Document → failed, job → failed
  is_transient  — the work queue may retry the whole attempt
  http_status / error_code — mapping used by the API layer

  ┌──────────────────────────┬───────┬───────────┬──────┐
  │ class                    │ fatal │ transient │ HTTP │
  ├──────────────────────────┼───────┼───────────┼──────┤
  │ DuplicateContentError    │   -   │    no     │ 409  │
  │ ExtractionFailure        │  yes  │    no     │ 422  │
  │ EnrichmentFailure        │  no   │    no     │ 500  │
  │ IndexingTimeout          │  yes  │    no     │ 504  │
  │ IndexingRejected         │  yes  │    no     │ 502  │
  │ TransientIOFailure       │  yes  │    yes    │ 503  │
  │ DocumentNotFoundError    │   -   │    no     │ 404  │
  │ NoFileSourceError        │   -   │    no     │ 422  │
  │ NoIndexFileError         │   -   │    no     │ 400  │
  │ InvalidDocumentError     │   -   │    no     │ 400  │
  │ SourceFetchError         │   -   │    no     │ 502  │
  └──────────────────────────┴───────┴───────────┴──────┘
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any
from uuid import UUID

from fastapi import status

if TYPE_CHECKING:
    from pdf_ingest.schemas.documents import DocumentSummary


class IngestionError(Exception):
    """Base class for all classified ingestion failures."""

    error_code:   str  = "INGESTION_ERROR"
    http_status:  int  = status.HTTP_500_INTERNAL_SERVER_ERROR
    is_fatal:     bool = True
    is_transient: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


# ---------------------------------------------------------------------------
# Gate / lookup errors — raised before or outside an attempt
# ---------------------------------------------------------------------------

class DuplicateContentError(IngestionError):
    """Byte-identical content already exists; caller must change the input."""

    error_code  = "DUPLICATE_DOCUMENT"
    http_status = status.HTTP_409_CONFLICT
    is_fatal    = False

    def __init__(self, existing: "DocumentSummary") -> None:
        self.existing = existing
        super().__init__(
            f'Duplicate file: This PDF has already been uploaded as "{existing.title}"',
            details={"existing_document_id": str(existing.id)},
        )


class DocumentNotFoundError(IngestionError):
    error_code  = "DOCUMENT_NOT_FOUND"
    http_status = status.HTTP_404_NOT_FOUND
    is_fatal    = False

    def __init__(self, document_id: UUID) -> None:
        self.document_id = document_id
        super().__init__(f"Document '{document_id}' was not found.")


class NoFileSourceError(IngestionError):
    error_code  = "NO_FILE_SOURCE"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    is_fatal    = False

    def __init__(self, document_id: UUID) -> None:
        self.document_id = document_id
        super().__init__("No file source available")


class NoIndexFileError(IngestionError):
    error_code  = "NO_INDEX_FILE"
    http_status = status.HTTP_400_BAD_REQUEST
    is_fatal    = False

    def __init__(self, document_id: UUID) -> None:
        self.document_id = document_id
        super().__init__("Document has no index file")


class InvalidDocumentError(IngestionError):
    """Input bytes or reference rejected before anything was stored."""

    error_code  = "INVALID_DOCUMENT"
    http_status = status.HTTP_400_BAD_REQUEST
    is_fatal    = False


class SourceFetchError(IngestionError):
    """URL or drive download failed while accepting a new document."""

    error_code  = "FETCH_FAILED"
    http_status = status.HTTP_502_BAD_GATEWAY
    is_fatal    = False

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Failed to fetch {source}: {reason}", details={"source": source})


# ---------------------------------------------------------------------------
# Pipeline stage errors
# ---------------------------------------------------------------------------

class ExtractionFailure(IngestionError):
    """Text extraction produced nothing searchable."""

    error_code  = "EXTRACTION_FAILED"
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY


class EnrichmentFailure(IngestionError):
    """Thumbnail or metadata step failed; logged, never stops the pipeline."""

    error_code = "ENRICHMENT_FAILED"
    is_fatal   = False


class IndexingTimeout(IngestionError):
    error_code  = "INDEXING_TIMEOUT"
    http_status = status.HTTP_504_GATEWAY_TIMEOUT

    def __init__(self, file_id: str, waited_seconds: float) -> None:
        self.file_id = file_id
        super().__init__(
            f"File processing timed out after {waited_seconds:.0f}s (file_id={file_id})",
            details={"file_id": file_id},
        )


class IndexingRejected(IngestionError):
    error_code  = "INDEXING_REJECTED"
    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, file_id: str, reason: str | None) -> None:
        self.file_id = file_id
        super().__init__(
            f"File processing failed: {reason or 'Unknown error'}",
            details={"file_id": file_id},
        )


class TransientIOFailure(IngestionError):
    """Network-level failure talking to a collaborator; the queue may retry."""

    error_code   = "TRANSIENT_IO_FAILURE"
    http_status  = status.HTTP_503_SERVICE_UNAVAILABLE
    is_transient = True


def truncate_error(message: str, limit: int) -> str:
    """Bound an error message for storage on Document / ProcessingJob rows."""
    if len(message) <= limit:
        return message
    return message[: max(0, limit - 1)] + "…"
