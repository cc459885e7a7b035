"""
Pinecone Vector Store — chunk embeddings

One serverless index, one namespace (settings.pinecone_namespace).
Every vector carries document_id in its metadata; IDs are prefixed with the
document_id so delete_by_document() has a list-and-delete fallback on
indexes that reject metadata-filtered deletes.

The Pinecone data-plane client is synchronous; calls run in the default
thread-pool executor so the worker's event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import functools
import logging

from pinecone import Pinecone
from pinecone.exceptions import PineconeApiException, PineconeException

from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import TransientIOFailure
from pdf_ingest.vectorstore.base import VectorRecord, VectorStoreBase

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


async def run_blocking(fn, /, **kwargs):
    """
    Run a synchronous Pinecone SDK call in the default executor.
    Connection failures and retryable HTTP statuses become TransientIOFailure;
    everything else propagates unchanged.
    """
    loop = asyncio.get_event_loop()
    try:
        return await loop.run_in_executor(None, functools.partial(fn, **kwargs))
    except PineconeApiException as exc:
        if getattr(exc, "status", None) in _RETRYABLE_STATUS:
            raise TransientIOFailure(f"Pinecone {fn.__name__} failed: {exc}") from exc
        raise
    except (ConnectionError, TimeoutError) as exc:
        raise TransientIOFailure(f"Pinecone {fn.__name__} unreachable: {exc}") from exc


class PineconeVectorStore(VectorStoreBase):

    def __init__(self, namespace: str | None = None, client: Pinecone | None = None) -> None:
        super().__init__(namespace or settings.pinecone_namespace)
        self._pc    = client or Pinecone(api_key=settings.pinecone_api_key)
        self._index = self._pc.Index(settings.pinecone_index_name)

    async def _run(self, fn, /, **kwargs):
        return await run_blocking(fn, **kwargs)

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, records: list[VectorRecord], batch_size: int = 100) -> int:
        """
        Upsert vectors into the namespace.
        Batches to stay within Pinecone's 2MB request limit.
        """
        total = 0
        for i in range(0, len(records), batch_size):
            batch = records[i : i + batch_size]

            vectors = []
            for rec in batch:
                if not rec.metadata.get("document_id"):
                    raise ValueError(f"Vector {rec.id} has no document_id in metadata")
                vectors.append({
                    "id":       rec.id,
                    "values":   rec.vector,
                    "metadata": rec.metadata,
                })

            await self._run(self._index.upsert, vectors=vectors, namespace=self._namespace)
            total += len(batch)
            logger.debug(
                "Pinecone upsert | namespace=%s batch=%d total=%d",
                self._namespace, len(batch), total,
            )

        return total

    async def delete_by_document(self, document_id: str) -> None:
        """
        Delete all chunks for a document by metadata filter.
        Serverless indexes reject filtered deletes; fall back to list+delete
        on the "<document_id>:" ID prefix.
        """
        try:
            await self._run(
                self._index.delete,
                namespace=self._namespace,
                filter={"document_id": {"$eq": document_id}},
            )
            logger.info("Pinecone delete_by_document | doc=%s", document_id)
        except PineconeException as exc:
            logger.warning("Metadata delete unavailable, using list fallback: %s", exc)
            await self._list_delete_by_document(document_id)

    async def _list_delete_by_document(self, document_id: str) -> None:
        def _collect() -> list[str]:
            ids: list[str] = []
            for id_batch in self._index.list(prefix=f"{document_id}:", namespace=self._namespace):
                ids.extend(id_batch)
            return ids

        loop = asyncio.get_event_loop()
        ids_to_delete = await loop.run_in_executor(None, _collect)
        if ids_to_delete:
            await self._run(self._index.delete, ids=ids_to_delete, namespace=self._namespace)
        logger.info(
            "Pinecone list-delete | doc=%s count=%d", document_id, len(ids_to_delete)
        )
