"""
Document Ingestion — Pydantic Request/Response Schemas

Covers:
  - Closed enums shared by the ORM layer, the extractors and the API
  - Ingestion requests (URL / drive) and the 202 Accepted response
  - Duplicate check, reprocess, status projection and job history bodies
  - All structured error bodies (400, 404, 409, 422, 500, 503)

Design decisions:
  - document_id is always server-generated (UUID4); never client-supplied.
  - file_hash is SHA-256 of the raw PDF bytes, computed server-side.
  - status (pipeline outcome), approved (review) and index_status (remote
    indexing) are reported side by side and never folded into one field.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl


# ---------------------------------------------------------------------------
# File constraints — enforced before touching S3
# ---------------------------------------------------------------------------

PDF_MAGIC: bytes = b"%PDF"
PDF_CONTENT_TYPE: str = "application/pdf"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DocumentStatus(str, Enum):
    """
    Maps to ingest.documents.status.
    Transitions: pending → processing → completed | failed
    """
    PENDING    = "pending"
    PROCESSING = "processing"
    COMPLETED  = "completed"
    FAILED     = "failed"


class IndexStatus(str, Enum):
    """Asynchronous state of the document in the external assistant index."""
    PROCESSING = "Processing"
    AVAILABLE  = "Available"
    FAILED     = "Failed"


class JobStage(str, Enum):
    EXTRACTING = "extracting"
    EMBEDDING  = "embedding"
    STORING    = "storing"
    COMPLETED  = "completed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStage.COMPLETED, JobStage.FAILED)


class DocumentSource(str, Enum):
    UPLOAD = "upload"
    URL    = "url"
    DRIVE  = "drive"


class Region(str, Enum):
    US     = "us"
    EU     = "eu"
    ASIA   = "asia"
    GLOBAL = "global"
    OTHER  = "other"


class Industry(str, Enum):
    SEMICON   = "semicon"
    DEEPTECH  = "deeptech"
    BIOTECH   = "biotech"
    FINTECH   = "fintech"
    CLEANTECH = "cleantech"
    OTHER     = "other"


class DocumentType(str, Enum):
    PITCH_DECK       = "pitch_deck"
    MARKET_RESEARCH  = "market_research"
    FINANCIAL_REPORT = "financial_report"
    WHITE_PAPER      = "white_paper"
    CASE_STUDY       = "case_study"
    ANNUAL_REPORT    = "annual_report"
    INVESTOR_UPDATE  = "investor_update"
    OTHER            = "other"


class TaskState(str, Enum):
    """Coarse work-queue task state exposed to pollers."""
    PENDING  = "pending"
    RUNNING  = "running"
    FINISHED = "finished"


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

class DocumentSummary(BaseModel):
    """Identity of an existing document, returned on duplicate detection."""
    id:         UUID
    title:      str
    filename:   str
    created_at: datetime | None = None


class DuplicateCheckRequest(BaseModel):
    file_hash: str = Field(..., min_length=64, max_length=64, pattern=r"^[0-9a-f]{64}$")


class DuplicateCheckResponse(BaseModel):
    is_duplicate: bool
    existing_document: DocumentSummary | None = None


# ---------------------------------------------------------------------------
# Ingestion requests / responses
# ---------------------------------------------------------------------------

class UrlIngestRequest(BaseModel):
    url:         HttpUrl
    title:       str | None = Field(None, max_length=255)
    author:      str | None = Field(None, max_length=255)
    description: str | None = None


class DriveIngestRequest(BaseModel):
    drive_file_id: str = Field(..., min_length=1, max_length=255)
    filename:      str = Field(..., min_length=1, max_length=255)
    title:         str | None = Field(None, max_length=255)
    author:        str | None = Field(None, max_length=255)
    description:   str | None = None


class IngestionAcceptedResponse(BaseModel):
    """
    Returned immediately after a document is recorded.
    HTTP 202: the bytes are stored but processing is asynchronous.
    """
    document_id: UUID             = Field(..., description="Server-generated document UUID")
    file_hash:   str              = Field(..., description="SHA-256 hex digest of the PDF")
    status:      DocumentStatus   = Field(DocumentStatus.PENDING)
    source:      DocumentSource
    title:       str
    filename:    str
    size_bytes:  int
    task_id:     str | None       = Field(None, description="Work-queue handle; None if publishing failed")
    created_at:  datetime


class ReprocessResponse(BaseModel):
    document_id:        UUID
    status:             DocumentStatus
    task_id:            str | None
    previous_index_file_id: str | None = None
    index_cleanup_ok:   bool = True


class MetadataRefreshResponse(BaseModel):
    document_id: UUID
    updated:     bool
    error:       str | None = None


# ---------------------------------------------------------------------------
# Status projection — GET /documents/{id}/status
# ---------------------------------------------------------------------------

class DocumentStatusResponse(BaseModel):
    """Polled by clients to track async processing progress."""
    document_id:      UUID
    status:           DocumentStatus
    index_status:     IndexStatus | None = None
    error:            str | None = None
    approved:         bool = False
    ready_for_review: bool = False
    indexed:          bool = False
    searchable:       bool = False
    needs_retry:      bool = False
    current_stage:    JobStage | None = None
    updated_at:       datetime | None = None


class ProcessingJobResponse(BaseModel):
    job_id:       UUID
    document_id:  UUID
    stage:        JobStage
    error:        str | None = None
    metadata:     dict[str, Any] = Field(default_factory=dict)
    started_at:   datetime | None = None
    updated_at:   datetime | None = None
    completed_at: datetime | None = None
    stale:        bool = False


class ApprovalRequest(BaseModel):
    approved_by: str = Field(..., min_length=1, max_length=255)


class DocumentListItem(BaseModel):
    document_id:      UUID
    title:            str
    filename:         str
    source:           DocumentSource
    status:           DocumentStatus
    index_status:     IndexStatus | None = None
    approved:         bool
    processing_error: str | None = None
    created_at:       datetime | None = None


class IndexSyncRequest(BaseModel):
    document_id: UUID | None = Field(None, description="Sync one document; omit to sync every document still Processing")


class IndexSyncResult(BaseModel):
    document_id:     UUID
    title:           str
    previous_status: IndexStatus | None = None
    new_status:      IndexStatus


class IndexSyncResponse(BaseModel):
    checked: int
    updated: int
    results: list[IndexSyncResult] = Field(default_factory=list)


class ThumbnailUrlResponse(BaseModel):
    document_id: UUID
    url:         str
    expires_in:  int = Field(..., description="Seconds until the presigned URL expires")


class TaskStatusResponse(BaseModel):
    task_id: str
    state:   TaskState


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error; may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
    existing_document: DocumentSummary | None = Field(
        None,
        description="Set on DUPLICATE_DOCUMENT: the document that already holds this content",
    )


# ---------------------------------------------------------------------------
# Pre-defined error factories (keeps route handlers thin)
# ---------------------------------------------------------------------------

class IngestionErrors:
    """Factories for every documented error case."""

    @staticmethod
    def missing_file() -> ErrorResponse:
        return ErrorResponse(
            error_code="MISSING_FILE",
            message="No file was provided in the request.",
            details=[
                ErrorDetail(
                    field="file",
                    message="The 'file' multipart field is required and must not be empty.",
                    code="MISSING_FILE",
                )
            ],
        )

    @staticmethod
    def not_a_pdf(filename: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="UNSUPPORTED_FILE_TYPE",
            message="Only PDF documents are accepted.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"'{filename}' does not start with a %PDF header.",
                    code="UNSUPPORTED_FILE_TYPE",
                )
            ],
        )

    @staticmethod
    def file_too_large(size_bytes: int, limit: int) -> ErrorResponse:
        max_mb = limit // (1024 * 1024)
        return ErrorResponse(
            error_code="FILE_TOO_LARGE",
            message=f"Uploaded file exceeds the {max_mb} MB limit.",
            details=[
                ErrorDetail(
                    field="file",
                    message=f"Received {size_bytes:,} bytes; limit is {limit:,} bytes.",
                    code="FILE_TOO_LARGE",
                )
            ],
        )

    @staticmethod
    def fetch_failed(url: str, reason: str) -> ErrorResponse:
        return ErrorResponse(
            error_code="FETCH_FAILED",
            message="The document could not be downloaded.",
            details=[ErrorDetail(field="url", message=f"{url}: {reason}", code="FETCH_FAILED")],
        )

    @staticmethod
    def duplicate_document(existing: DocumentSummary) -> ErrorResponse:
        return ErrorResponse(
            error_code="DUPLICATE_DOCUMENT",
            message=f'Duplicate file: This PDF has already been uploaded as "{existing.title}"',
            details=[
                ErrorDetail(
                    field="file",
                    message=(
                        f"A document with identical content already exists "
                        f"(document_id: {existing.id}). "
                        "To re-ingest it, use the reprocess action on the existing document."
                    ),
                    code="DUPLICATE_DOCUMENT",
                )
            ],
            existing_document=existing,
        )

    @staticmethod
    def document_not_found(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="DOCUMENT_NOT_FOUND",
            message=f"Document '{document_id}' was not found.",
            details=[],
        )

    @staticmethod
    def no_file_source(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="NO_FILE_SOURCE",
            message="No file source available",
            details=[
                ErrorDetail(
                    field=None,
                    message=f"Document '{document_id}' has no storage key, URL or drive reference.",
                    code="NO_FILE_SOURCE",
                )
            ],
        )

    @staticmethod
    def thumbnail_not_found(document_id: UUID) -> ErrorResponse:
        return ErrorResponse(
            error_code="THUMBNAIL_NOT_FOUND",
            message=f"Document '{document_id}' has no thumbnail yet.",
            details=[],
        )

    @staticmethod
    def storage_error(detail: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="STORAGE_ERROR",
            message="Failed to store the document. Please retry.",
            details=(
                [ErrorDetail(field=None, message=detail, code="STORAGE_ERROR")]
                if detail
                else []
            ),
        )

    @staticmethod
    def queue_error() -> ErrorResponse:
        return ErrorResponse(
            error_code="QUEUE_ERROR",
            message="The document could not be queued for processing.",
            details=[
                ErrorDetail(
                    field=None,
                    message="The message broker may be temporarily unavailable. Retry shortly.",
                    code="QUEUE_ERROR",
                )
            ],
        )

    @staticmethod
    def internal_error(request_id: str | None = None) -> ErrorResponse:
        return ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred. Our team has been notified.",
            details=[],
            request_id=request_id,
        )
