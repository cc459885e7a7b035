"""
Vector Store — Abstract Base

Chunk vectors for every ingested document live in one namespace. Record IDs
are deterministic ("<document_id>:<chunk_index>"), so re-processing a
document upserts over its previous vectors instead of duplicating them, and
delete_by_document() can clear a document before it is re-embedded.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class VectorRecord:
    """A single embedding record to upsert into the vector store."""
    id:        str              # "<document_id>:<chunk_index>"
    vector:    list[float]
    metadata:  dict             # document_id, chunk_index, text, title


def chunk_vector_id(document_id: str, chunk_index: int) -> str:
    return f"{document_id}:{chunk_index}"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class VectorStoreBase(ABC):

    def __init__(self, namespace: str) -> None:
        self._namespace = namespace

    @property
    def namespace(self) -> str:
        return self._namespace

    @abstractmethod
    async def upsert(self, records: list[VectorRecord], batch_size: int = 100) -> int:
        """
        Insert or update embedding records.
        Returns the number of vectors upserted.
        Implementations MUST reject records without metadata["document_id"].
        """

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> None:
        """Delete ALL chunks belonging to a document (used before reprocessing)."""
