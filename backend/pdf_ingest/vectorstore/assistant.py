"""
Assistant Index Store — the external searchable index

Documents are handed to a Pinecone Assistant as an enriched text file.
Indexing is asynchronous on Pinecone's side: upload() returns a file id
immediately and describe() is polled until the file leaves "Processing".

Status vocabulary is normalised to IndexStatus:

    Pinecone file status          IndexStatus
    ─────────────────────         ───────────
    Available                     Available
    ProcessingFailed / Failed     Failed
    anything else                 Processing
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from pinecone import Pinecone

from pdf_ingest.core.config import settings
from pdf_ingest.schemas.documents import IndexStatus
from pdf_ingest.vectorstore.pinecone_store import run_blocking

logger = logging.getLogger(__name__)

_FAILED_STATES = {"processingfailed", "failed"}


@dataclass(frozen=True)
class IndexFileState:
    file_id: str
    status:  IndexStatus
    error:   str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != IndexStatus.PROCESSING


def normalise_status(raw: str | None) -> IndexStatus:
    value = (raw or "").replace("_", "").lower()
    if value == "available":
        return IndexStatus.AVAILABLE
    if value in _FAILED_STATES:
        return IndexStatus.FAILED
    return IndexStatus.PROCESSING


class IndexStore(ABC):
    """Remote document index; implementations are interchangeable in tests."""

    @abstractmethod
    async def upload(self, path: Path, metadata: dict) -> str:
        """Upload a staged file; returns the remote file id."""

    @abstractmethod
    async def describe(self, file_id: str) -> IndexFileState:
        """Current remote state of an uploaded file."""

    @abstractmethod
    async def delete(self, file_id: str) -> None:
        """Remove a file from the index."""


class PineconeAssistantStore(IndexStore):

    def __init__(self, assistant_name: str | None = None, client: Pinecone | None = None) -> None:
        self._name = assistant_name or settings.pinecone_assistant_name
        self._pc = client or Pinecone(api_key=settings.pinecone_api_key)
        self._assistant = None

    def _get_assistant(self):
        if self._assistant is None:
            self._assistant = self._pc.assistant.Assistant(assistant_name=self._name)
        return self._assistant

    async def _run(self, fn, /, **kwargs):
        return await run_blocking(fn, **kwargs)

    async def upload(self, path: Path, metadata: dict) -> str:
        assistant = self._get_assistant()
        # timeout=-1 returns as soon as the upload is accepted; we poll ourselves
        file_model = await self._run(
            assistant.upload_file,
            file_path=str(path),
            metadata=metadata,
            timeout=-1,
        )
        logger.info(
            "Assistant upload | assistant=%s file_id=%s status=%s",
            self._name, file_model.id, file_model.status,
        )
        return file_model.id

    async def describe(self, file_id: str) -> IndexFileState:
        assistant = self._get_assistant()
        file_model = await self._run(assistant.describe_file, file_id=file_id)
        status = normalise_status(getattr(file_model, "status", None))
        return IndexFileState(
            file_id=file_id,
            status=status,
            error=getattr(file_model, "error_message", None) if status == IndexStatus.FAILED else None,
        )

    async def delete(self, file_id: str) -> None:
        assistant = self._get_assistant()
        await self._run(assistant.delete_file, file_id=file_id)
        logger.info("Assistant delete | assistant=%s file_id=%s", self._name, file_id)
