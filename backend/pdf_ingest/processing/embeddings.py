"""
Embedding Pipeline  —  Chunking + Batch Embeddings with Retry
══════════════════════════════════════════════════════════════

  extracted text ──► split_text()          RecursiveCharacterTextSplitter (1000 / 200)
                 ──► OpenAIEmbedder.embed  batches of ≤ 128 texts per API call
                 ──► build_vector_records  VectorRecord(id="<document_id>:<chunk_index>")

Idempotency: chunk IDs are deterministic, so a re-run upserts over the
previous vectors rather than duplicating them.

Retry policy (per batch, inside one embed() call):
  RateLimitError / APIConnectionError / APITimeoutError / 5xx
      → wait RETRY_BASE_DELAY × 2^attempt, up to MAX_RETRIES
  Anything else (auth, bad request) → propagates immediately
A batch that still fails after retries raises TransientIOFailure so the
work queue can retry the whole attempt.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Sequence
from uuid import UUID

import openai
from langchain_text_splitters import RecursiveCharacterTextSplitter
from openai import AsyncOpenAI

from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import TransientIOFailure
from pdf_ingest.vectorstore.base import VectorRecord, chunk_vector_id

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

MAX_BATCH_SIZE     = 128
MAX_RETRIES        = 3
RETRY_BASE_DELAY   = 2.0    # seconds, doubles each retry
RETRY_MAX_DELAY    = 30.0

_RETRYABLE = (
    openai.RateLimitError,
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.InternalServerError,
)


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------

def split_text(
    text: str,
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> list[str]:
    """Split extracted text into overlapping chunks; blank chunks are dropped."""
    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size or settings.chunk_size,
        chunk_overlap=chunk_overlap if chunk_overlap is not None else settings.chunk_overlap,
    )
    return [c for c in splitter.split_text(text) if c.strip()]


def build_vector_records(
    document_id: UUID,
    chunks: Sequence[str],
    vectors: Sequence[list[float]],
    title: str | None = None,
) -> list[VectorRecord]:
    if len(chunks) != len(vectors):
        raise ValueError(f"Got {len(vectors)} vectors for {len(chunks)} chunks")
    return [
        VectorRecord(
            id=chunk_vector_id(str(document_id), idx),
            vector=vector,
            metadata={
                "document_id": str(document_id),
                "chunk_index": idx,
                "text":        text,
                "title":       title or "",
            },
        )
        for idx, (text, vector) in enumerate(zip(chunks, vectors))
    ]


# ---------------------------------------------------------------------------
# Embedder
# ---------------------------------------------------------------------------

class OpenAIEmbedder:
    """
    Stateless batch embedder; one instance is shared by all attempts in a
    worker process.

        embedder = OpenAIEmbedder()
        vectors  = await embedder.embed(chunks)   # same order as chunks
    """

    def __init__(
        self,
        model:      str | None = None,
        dimensions: int | None = None,
        batch_size: int | None = None,
        client:     AsyncOpenAI | None = None,
        sleep=asyncio.sleep,
    ) -> None:
        self._model      = model or settings.embedding_model
        self._dimensions = dimensions or settings.embedding_dimensions
        self._batch_size = min(batch_size or settings.embedding_batch_size, MAX_BATCH_SIZE)
        self._client     = client
        self._sleep      = sleep

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)
        return self._client

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []

        t0 = time.monotonic()
        batches = [
            list(texts[i : i + self._batch_size])
            for i in range(0, len(texts), self._batch_size)
        ]

        vectors: list[list[float]] = []
        total_tokens = 0
        for batch_idx, batch in enumerate(batches):
            batch_vectors, tokens = await self._embed_batch_with_retry(batch, batch_idx)
            vectors.extend(batch_vectors)
            total_tokens += tokens

        logger.info(
            "Embeddings | texts=%d batches=%d model=%s tokens=%d elapsed_ms=%.0f",
            len(texts), len(batches), self._model, total_tokens,
            (time.monotonic() - t0) * 1000,
        )
        return vectors

    # ------------------------------------------------------------------
    # Batch processing with retry
    # ------------------------------------------------------------------

    async def _embed_batch_with_retry(
        self,
        batch: list[str],
        batch_idx: int,
    ) -> tuple[list[list[float]], int]:
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES + 1):
            if attempt > 0:
                delay = min(RETRY_BASE_DELAY * (2 ** (attempt - 1)), RETRY_MAX_DELAY)
                logger.warning(
                    "Embedding retry | batch=%d attempt=%d delay=%.1fs error=%s",
                    batch_idx, attempt, delay, last_error,
                )
                await self._sleep(delay)

            try:
                return await self._call_openai(batch)
            except _RETRYABLE as exc:
                last_error = exc

        raise TransientIOFailure(
            f"Embedding batch {batch_idx} failed after {MAX_RETRIES} retries: {last_error}"
        ) from last_error

    async def _call_openai(self, batch: list[str]) -> tuple[list[list[float]], int]:
        kwargs: dict = {"model": self._model, "input": batch}
        # dimensions is only accepted by text-embedding-3-* models
        if self._dimensions != 1536:
            kwargs["dimensions"] = self._dimensions

        response = await self._get_client().embeddings.create(**kwargs)
        tokens_used = response.usage.total_tokens if response.usage else 0
        return [item.embedding for item in response.data], tokens_used
