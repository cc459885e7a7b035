"""
Document Ingestion API Router
Mounted under /api/v1/documents

  POST /upload                  multipart PDF upload              → 202
  POST /from-url                fetch a PDF from a public URL     → 202
  POST /from-drive              fetch a PDF from the drive API    → 202
  POST /check-duplicate         SHA-256 lookup, nothing stored
  POST /sync-index-status       re-read remote index state
  POST /{id}/reprocess          cleanup + reset + enqueue         → 202
  POST /{id}/refresh-metadata   re-run LLM metadata extraction
  GET  /{id}/status             derived status projection
  GET  /{id}/jobs               processing attempt history
  GET  /{id}/thumbnail          presigned thumbnail URL
  POST /{id}/approve | /reject  reviewer decision
  GET  /                        listing, ?status=failed for the retry view
  GET  /tasks/{task_id}         work-queue task state

Request lifecycle for the three ingest routes:
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Bytes obtained (multipart body / URL / drive)         │
  │ 2. Validation: non-empty, size limit, %PDF magic bytes   │
  │ 3. SHA-256 + duplicate gate (409 on collision)           │
  │ 4. Upload only: original stored in S3                    │
  │ 5. DB insert (status=pending)                            │
  │ 6. process_document published → returns 202              │
  └─────────────────────────────────────────────────────────┘

Handlers stay thin: services raise IngestionError subclasses and
api.errors.http_error turns them into structured ErrorResponse bodies.
"""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import JSONResponse

from pdf_ingest.api.dependencies import (
    Approvals,
    Documents,
    Gate,
    IndexSync,
    Ingestion,
    Jobs,
    Queue,
    Reprocessor,
    Storage,
)
from pdf_ingest.api.errors import http_error
from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import DocumentNotFoundError, IngestionError, InvalidDocumentError
from pdf_ingest.schemas.documents import (
    ApprovalRequest,
    DocumentListItem,
    DocumentSource,
    DocumentStatus,
    DocumentStatusResponse,
    DriveIngestRequest,
    DuplicateCheckRequest,
    DuplicateCheckResponse,
    ErrorResponse,
    IndexStatus,
    IndexSyncRequest,
    IndexSyncResponse,
    IngestionAcceptedResponse,
    IngestionErrors,
    JobStage,
    MetadataRefreshResponse,
    ProcessingJobResponse,
    ReprocessResponse,
    TaskStatusResponse,
    ThumbnailUrlResponse,
    UrlIngestRequest,
)
from pdf_ingest.services.jobs import is_stale
from pdf_ingest.services.status import project_status

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Document Ingestion"],
)

_INGEST_RESPONSES = {
    202: {"model": IngestionAcceptedResponse, "description": "Document recorded and queued"},
    400: {"model": ErrorResponse, "description": "Missing file or not a PDF"},
    409: {"model": ErrorResponse, "description": "Identical content already ingested"},
    413: {"model": ErrorResponse, "description": "File exceeds the size limit"},
    503: {"model": ErrorResponse, "description": "Blob storage unavailable"},
}


def _accepted(result: IngestionAcceptedResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=result.model_dump(mode="json"),
        headers={
            "X-Document-ID": str(result.document_id),
            "Location":      f"/api/v1/documents/{result.document_id}/status",
        },
    )


# ---------------------------------------------------------------------------
# POST /documents/upload
# ---------------------------------------------------------------------------

@router.post(
    "/upload",
    response_model=IngestionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a PDF for ingestion",
    responses=_INGEST_RESPONSES,
)
async def upload_document(
    service:     Ingestion,
    file:        Optional[UploadFile] = File(None, description="PDF file"),
    title:       Optional[str] = Form(None, max_length=255),
    author:      Optional[str] = Form(None, max_length=255),
    description: Optional[str] = Form(None),
) -> JSONResponse:
    try:
        if file is None or not file.filename:
            raise InvalidDocumentError("No file was provided.", details={"reason": "missing"})

        # limit + 1 bytes is enough to detect an oversize file
        data = await file.read(settings.max_file_size_bytes + 1)
        result = await service.ingest_upload(
            data,
            file.filename,
            title=title,
            author=author,
            description=description,
        )
    except IngestionError as exc:
        raise http_error(exc) from exc
    return _accepted(result)


# ---------------------------------------------------------------------------
# POST /documents/from-url  |  /documents/from-drive
# ---------------------------------------------------------------------------

@router.post(
    "/from-url",
    response_model=IngestionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a PDF from a public URL",
    responses={**_INGEST_RESPONSES, 502: {"model": ErrorResponse, "description": "Download failed"}},
)
async def ingest_from_url(body: UrlIngestRequest, service: Ingestion) -> JSONResponse:
    try:
        result = await service.ingest_url(body)
    except IngestionError as exc:
        raise http_error(exc) from exc
    return _accepted(result)


@router.post(
    "/from-drive",
    response_model=IngestionAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest a PDF from the drive API",
    responses={**_INGEST_RESPONSES, 502: {"model": ErrorResponse, "description": "Download failed"}},
)
async def ingest_from_drive(body: DriveIngestRequest, service: Ingestion) -> JSONResponse:
    try:
        result = await service.ingest_drive(body)
    except IngestionError as exc:
        raise http_error(exc) from exc
    return _accepted(result)


@router.post(
    "/check-duplicate",
    response_model=DuplicateCheckResponse,
    summary="Check whether content with this SHA-256 was already ingested",
)
async def check_duplicate(body: DuplicateCheckRequest, gate: Gate) -> DuplicateCheckResponse:
    check = await gate.check(body.file_hash)
    return DuplicateCheckResponse(is_duplicate=check.is_duplicate, existing_document=check.existing)


@router.post(
    "/sync-index-status",
    response_model=IndexSyncResponse,
    summary="Re-read remote index state for one document, or every document still Processing",
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def sync_index_status(
    sync: IndexSync,
    body: Optional[IndexSyncRequest] = None,
) -> IndexSyncResponse:
    try:
        return await sync.sync(body.document_id if body else None)
    except IngestionError as exc:
        raise http_error(exc) from exc


# ---------------------------------------------------------------------------
# Reprocess / metadata refresh
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/reprocess",
    response_model=ReprocessResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Clear index artifacts and run the pipeline again",
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def reprocess_document(document_id: UUID, controller: Reprocessor) -> ReprocessResponse:
    try:
        return await controller.reprocess(document_id)
    except IngestionError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{document_id}/refresh-metadata",
    response_model=MetadataRefreshResponse,
    summary="Re-run LLM metadata extraction from the stored text",
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def refresh_metadata(document_id: UUID, controller: Reprocessor) -> MetadataRefreshResponse:
    try:
        return await controller.refresh_metadata(document_id)
    except IngestionError as exc:
        raise http_error(exc) from exc


# ---------------------------------------------------------------------------
# Status / jobs
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll processing, review and index status",
    responses={404: {"model": ErrorResponse}},
)
async def get_document_status(
    document_id: UUID,
    documents:   Documents,
    jobs:        Jobs,
) -> DocumentStatusResponse:
    doc = await documents.get(document_id)
    if doc is None:
        raise http_error(DocumentNotFoundError(document_id))

    latest = await jobs.list_jobs(document_id, limit=1)
    stage = JobStage(latest[0].stage) if latest else None
    return project_status(doc, current_stage=stage)


@router.get(
    "/{document_id}/jobs",
    response_model=list[ProcessingJobResponse],
    summary="Processing attempts, newest first",
    responses={404: {"model": ErrorResponse}},
)
async def list_document_jobs(
    document_id: UUID,
    documents:   Documents,
    jobs:        Jobs,
    limit:       int = Query(50, ge=1, le=200),
) -> list[ProcessingJobResponse]:
    if await documents.get(document_id) is None:
        raise http_error(DocumentNotFoundError(document_id))

    return [
        ProcessingJobResponse(
            job_id=job.id,
            document_id=job.document_id,
            stage=JobStage(job.stage),
            error=job.error,
            metadata=job.job_metadata or {},
            started_at=job.started_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            stale=is_stale(job),
        )
        for job in await jobs.list_jobs(document_id, limit=limit)
    ]


@router.get(
    "/{document_id}/thumbnail",
    response_model=ThumbnailUrlResponse,
    summary="Presigned URL for the first-page thumbnail",
    responses={404: {"model": ErrorResponse}},
)
async def get_thumbnail_url(
    document_id: UUID,
    documents:   Documents,
    storage:     Storage,
) -> ThumbnailUrlResponse:
    document = await documents.get(document_id)
    if document is None:
        raise http_error(DocumentNotFoundError(document_id))
    if not document.thumbnail_ref:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=IngestionErrors.thumbnail_not_found(document_id).model_dump(mode="json"),
        )
    ttl = settings.s3_presign_ttl_seconds
    url = await storage.get_url(document.thumbnail_ref, expires_in=ttl)
    return ThumbnailUrlResponse(document_id=document_id, url=url, expires_in=ttl)


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/approve",
    response_model=DocumentStatusResponse,
    summary="Mark a document as approved by a reviewer",
    responses={404: {"model": ErrorResponse}},
)
async def approve_document(
    document_id: UUID,
    body:        ApprovalRequest,
    approvals:   Approvals,
) -> DocumentStatusResponse:
    try:
        return await approvals.approve(document_id, body.approved_by)
    except IngestionError as exc:
        raise http_error(exc) from exc


@router.post(
    "/{document_id}/reject",
    response_model=DocumentStatusResponse,
    summary="Withdraw approval",
    responses={404: {"model": ErrorResponse}},
)
async def reject_document(document_id: UUID, approvals: Approvals) -> DocumentStatusResponse:
    try:
        return await approvals.reject(document_id)
    except IngestionError as exc:
        raise http_error(exc) from exc


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

@router.get(
    "/",
    response_model=list[DocumentListItem],
    summary="List documents, newest first",
)
async def list_documents(
    documents: Documents,
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    limit:  int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> list[DocumentListItem]:
    docs = await documents.list_documents(
        status=status_filter.value if status_filter else None,
        limit=limit,
        offset=offset,
    )
    return [
        DocumentListItem(
            document_id=d.id,
            title=d.title or d.filename or "",
            filename=d.filename or "",
            source=DocumentSource(d.source),
            status=DocumentStatus(d.status),
            index_status=IndexStatus(d.index_status) if d.index_status else None,
            approved=bool(d.approved),
            processing_error=d.processing_error,
            created_at=d.created_at,
        )
        for d in docs
    ]


# ---------------------------------------------------------------------------
# GET /documents/tasks/{task_id}
# ---------------------------------------------------------------------------

@router.get(
    "/tasks/{task_id}",
    response_model=TaskStatusResponse,
    summary="Work-queue task state (pending | running | finished)",
    responses={503: {"model": ErrorResponse}},
)
async def get_task_status(task_id: str, queue: Queue) -> TaskStatusResponse:
    try:
        state = await queue.status(task_id)
    except Exception as exc:
        logger.error("Task status lookup failed | task=%s error=%s", task_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=IngestionErrors.queue_error().model_dump(mode="json"),
        ) from exc
    return TaskStatusResponse(task_id=task_id, state=state)
