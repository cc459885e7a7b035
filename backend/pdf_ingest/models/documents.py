"""
SQLAlchemy ORM Models — Documents, Processing Jobs & Pipeline Settings

Using SQLAlchemy mapped classes (2.x style) for full async support.

Tables:
  ingest.documents          one row per unique PDF (file_hash UNIQUE)
  ingest.processing_jobs    one row per ingestion attempt (append-only history)
  ingest.pipeline_settings  operator switches read at the start of each attempt

Schema: ingest (set via __table_args__)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base — shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model — ingest.documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One ingested PDF, from upload/fetch through indexing and review.

    Three independent status axes:
        status        pending → processing → completed | failed
                      (owned by the pipeline orchestrator)
        approved      reviewer decision; gates search visibility
        index_status  Processing | Available | Failed
                      (asynchronous state of the external assistant index)

    Deduplication: UNIQUE(file_hash) — two rows can never reference
    byte-identical content.
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="documents_status_check",
        ),
        CheckConstraint(
            "source IN ('upload', 'url', 'drive')",
            name="documents_source_check",
        ),
        CheckConstraint(
            "index_status IS NULL OR index_status IN ('Processing', 'Available', 'Failed')",
            name="documents_index_status_check",
        ),
        UniqueConstraint("file_hash", name="uq_documents_file_hash"),
        Index("idx_documents_status",        "status"),
        Index("idx_documents_drive_file_id", "drive_file_id"),
        Index("idx_documents_approved",      "approved", "status"),
        {"schema": "ingest"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    # Deduplication key — SHA-256 hex digest of the raw PDF bytes
    file_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # Provenance
    source: Mapped[str] = mapped_column(Text, nullable=False)
    storage_ref: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="S3 key of the original PDF (upload-backed documents)",
    )
    source_url:    Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    drive_file_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    title:       Mapped[str]           = mapped_column(Text, nullable=False)
    filename:    Mapped[str]           = mapped_column(Text, nullable=False)
    author:      Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Ingestion state machine
    status: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        default="pending",
        server_default="pending",
    )
    processing_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Last failure reason; cleared on successful (re)processing",
    )

    # Review
    approved:    Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    approved_by: Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # External assistant index
    index_file_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    index_status:  Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Last published processing task
    queue_task_id: Mapped[Optional[str]]      = mapped_column(Text, nullable=True)
    queued_at:     Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Extracted fields
    company:       Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    year:          Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    topic:         Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary:       Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    region:        Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    industry:      Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    document_type: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    authors:          Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    key_findings:     Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    keywords:         Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    technology_areas: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")

    page_count:         Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    thumbnail_ref:      Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extracted_text_ref: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    extracted_at:       Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    extraction_version: Mapped[Optional[str]]      = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def has_file_source(self) -> bool:
        return bool(self.storage_ref or self.source_url or self.drive_file_id)

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} status={self.status} "
            f"source={self.source} file={self.filename!r}>"
        )


# ---------------------------------------------------------------------------
# ProcessingJob model — ingest.processing_jobs
# ---------------------------------------------------------------------------

class ProcessingJob(Base):
    """
    Audit record of a single ingestion attempt.

    Rows are never deleted: every attempt (queue retry, manual retry,
    reprocess) inserts its own row so stage history is preserved.
    """

    __tablename__ = "processing_jobs"
    __table_args__ = (
        CheckConstraint(
            "stage IN ('extracting', 'embedding', 'storing', 'completed', 'failed')",
            name="processing_jobs_stage_check",
        ),
        Index("idx_processing_jobs_document_id", "document_id", "started_at"),
        {"schema": "ingest"},
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("ingest.documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    stage: Mapped[str] = mapped_column(Text, nullable=False)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    job_metadata: Mapped[dict] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="Free-form counters: page_count, chunk_count, index_file_id, ...",
    )

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Set when stage reaches completed or failed",
    )

    def __repr__(self) -> str:
        return f"<ProcessingJob id={self.id} doc={self.document_id} stage={self.stage}>"


# ---------------------------------------------------------------------------
# PipelineSetting model — ingest.pipeline_settings
# ---------------------------------------------------------------------------

class PipelineSetting(Base):
    """Key/value operator switches, e.g. processing_enabled = 'false'."""

    __tablename__ = "pipeline_settings"
    __table_args__ = ({"schema": "ingest"},)

    key:   Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
