from pdf_ingest.vectorstore.assistant import IndexFileState, IndexStore
from pdf_ingest.vectorstore.base import VectorRecord, VectorStoreBase, chunk_vector_id
from pdf_ingest.vectorstore.factory import get_index_store, get_vector_store

__all__ = [
    "IndexFileState",
    "IndexStore",
    "VectorStoreBase",
    "VectorRecord",
    "chunk_vector_id",
    "get_index_store",
    "get_vector_store",
]
