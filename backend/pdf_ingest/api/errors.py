"""
IngestionError → HTTPException mapping for the route layer.

Services raise classified IngestionError subclasses; routes convert them
here so every 4xx/5xx body is an ErrorResponse envelope:

    try:
        return await service.ingest_upload(...)
    except IngestionError as exc:
        raise http_error(exc) from exc
"""

from __future__ import annotations

from fastapi import HTTPException, status

from pdf_ingest.core.errors import (
    DocumentNotFoundError,
    DuplicateContentError,
    IngestionError,
    InvalidDocumentError,
    NoFileSourceError,
    SourceFetchError,
    TransientIOFailure,
)
from pdf_ingest.schemas.documents import ErrorDetail, ErrorResponse, IngestionErrors


def error_response(exc: IngestionError) -> tuple[int, ErrorResponse]:
    if isinstance(exc, DuplicateContentError):
        return status.HTTP_409_CONFLICT, IngestionErrors.duplicate_document(exc.existing)

    if isinstance(exc, DocumentNotFoundError):
        return status.HTTP_404_NOT_FOUND, IngestionErrors.document_not_found(exc.document_id)

    if isinstance(exc, NoFileSourceError):
        return status.HTTP_422_UNPROCESSABLE_ENTITY, IngestionErrors.no_file_source(exc.document_id)

    if isinstance(exc, InvalidDocumentError):
        reason = exc.details.get("reason")
        if reason in ("missing", "empty"):
            return status.HTTP_400_BAD_REQUEST, IngestionErrors.missing_file()
        if reason == "too_large":
            return (
                status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                IngestionErrors.file_too_large(exc.details["size_bytes"], exc.details["limit"]),
            )
        if reason == "not_a_pdf":
            return status.HTTP_400_BAD_REQUEST, IngestionErrors.not_a_pdf(exc.details.get("name", "file"))

    if isinstance(exc, SourceFetchError):
        return status.HTTP_502_BAD_GATEWAY, IngestionErrors.fetch_failed(exc.source, exc.reason)

    if isinstance(exc, TransientIOFailure):
        return status.HTTP_503_SERVICE_UNAVAILABLE, IngestionErrors.storage_error(exc.message)

    return exc.http_status, ErrorResponse(
        error_code=exc.error_code,
        message=exc.message,
        details=[ErrorDetail(field=None, message=exc.message, code=exc.error_code)],
    )


def http_error(exc: IngestionError) -> HTTPException:
    status_code, body = error_response(exc)
    return HTTPException(status_code=status_code, detail=body.model_dump(mode="json"))
