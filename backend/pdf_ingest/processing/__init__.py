"""
Document Processing Package
════════════════════════════

Stage extractors and the embedding step used by the ingestion pipeline:

  text.py        PDF bytes → "[Page N]" text (PyMuPDF, pypdf fallback)
  thumbnail.py   first page → PNG (PyMuPDF pixmap)
  metadata.py    text → validated structured fields via the LLM gateway
  embeddings.py  text → chunks → vectors (LangChain splitter + OpenAI)

Every extractor returns a result object with `success` and `error` instead
of raising; the orchestrator decides which failures are fatal.
"""

from pdf_ingest.processing.embeddings import OpenAIEmbedder, build_vector_records, split_text
from pdf_ingest.processing.metadata import (
    DocumentMetadata,
    MetadataExtractionResult,
    MetadataExtractor,
)
from pdf_ingest.processing.text import TextExtractionResult, TextExtractor
from pdf_ingest.processing.thumbnail import ThumbnailExtractor, ThumbnailResult

__all__ = [
    "DocumentMetadata",
    "MetadataExtractionResult",
    "MetadataExtractor",
    "OpenAIEmbedder",
    "TextExtractionResult",
    "TextExtractor",
    "ThumbnailExtractor",
    "ThumbnailResult",
    "build_vector_records",
    "split_text",
]
