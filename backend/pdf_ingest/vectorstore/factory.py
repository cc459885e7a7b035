"""
Vector / Index Store Factory

The pipeline and the reprocessing controller take their stores as
constructor arguments; these helpers build the production instances once
per process.
"""

from __future__ import annotations

from functools import lru_cache

from pdf_ingest.vectorstore.assistant import IndexStore
from pdf_ingest.vectorstore.base import VectorStoreBase


@lru_cache(maxsize=1)
def get_vector_store() -> VectorStoreBase:
    from pdf_ingest.vectorstore.pinecone_store import PineconeVectorStore
    return PineconeVectorStore()


@lru_cache(maxsize=1)
def get_index_store() -> IndexStore:
    from pdf_ingest.vectorstore.assistant import PineconeAssistantStore
    return PineconeAssistantStore()
