"""
Text Extraction
═══════════════

Turns PDF bytes into page-tagged plain text:

    [Page 1]
    <trimmed page text>

    [Page 3]
    <trimmed page text>

Pages with no text layer are skipped (page numbering is kept, so a scanned
page 2 simply does not appear). The [Page N] markers survive chunking and
indexing, which is what lets search results cite a page.

Strategy:
  1. PyMuPDF (fitz) — native text layer, runs in a thread executor
  2. pypdf          — only when PyMuPDF cannot open the file at all

The extractor never raises: failure is reported on the result. The
orchestrator decides that a failed text extraction is fatal.
"""

from __future__ import annotations

import asyncio
import io
import logging
import time
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

NO_TEXT_ERROR = "No text content extracted from PDF"


@dataclass
class TextExtractionResult:
    success:       bool
    text:          str = ""
    page_count:    int = 0
    pages_with_text: list[int] = field(default_factory=list)
    strategy_used: str = ""
    elapsed_ms:    float = 0.0
    error:         str | None = None


def format_pages(pages: list[tuple[int, str]]) -> tuple[str, list[int]]:
    """Join (page_number, raw_text) pairs into "[Page N]" blocks, skipping empty pages."""
    blocks: list[str] = []
    kept: list[int] = []
    for page_number, raw in pages:
        text = (raw or "").strip()
        if not text:
            continue
        blocks.append(f"[Page {page_number}]\n{text}")
        kept.append(page_number)
    return "\n\n".join(blocks), kept


class TextExtractor:
    """
    Stateless; safe for concurrent use.

        result = await TextExtractor().extract(pdf_bytes)
        if not result.success: ...
    """

    async def extract(self, pdf_bytes: bytes) -> TextExtractionResult:
        loop = asyncio.get_event_loop()
        t0 = time.monotonic()

        if not pdf_bytes:
            return TextExtractionResult(success=False, error="Empty PDF content")

        strategy = "pymupdf"
        try:
            pages = await loop.run_in_executor(None, self._extract_pymupdf, pdf_bytes)
        except Exception as exc:
            logger.warning("PyMuPDF could not open document, trying pypdf: %s", exc)
            strategy = "pypdf"
            try:
                pages = await loop.run_in_executor(None, self._extract_pypdf, pdf_bytes)
            except Exception as fallback_exc:
                logger.error("Text extraction failed | error=%s", fallback_exc)
                return TextExtractionResult(
                    success=False,
                    strategy_used=strategy,
                    elapsed_ms=(time.monotonic() - t0) * 1000,
                    error=f"Failed to parse PDF: {fallback_exc}",
                )

        text, kept = format_pages(pages)
        elapsed_ms = (time.monotonic() - t0) * 1000

        logger.info(
            "Text extraction | strategy=%s pages=%d pages_with_text=%d chars=%d elapsed_ms=%.0f",
            strategy, len(pages), len(kept), len(text), elapsed_ms,
        )

        if not text:
            return TextExtractionResult(
                success=False,
                page_count=len(pages),
                strategy_used=strategy,
                elapsed_ms=elapsed_ms,
                error=NO_TEXT_ERROR,
            )

        return TextExtractionResult(
            success=True,
            text=text,
            page_count=len(pages),
            pages_with_text=kept,
            strategy_used=strategy,
            elapsed_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Blocking backends run in the thread executor
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pymupdf(pdf_bytes: bytes) -> list[tuple[int, str]]:
        import fitz  # PyMuPDF; imported here to avoid module-level import cost

        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            return [
                (page_num, page.get_text("text") or "")
                for page_num, page in enumerate(doc, start=1)
            ]

    @staticmethod
    def _extract_pypdf(pdf_bytes: bytes) -> list[tuple[int, str]]:
        from pypdf import PdfReader

        reader = PdfReader(io.BytesIO(pdf_bytes))
        return [
            (page_num, page.extract_text() or "")
            for page_num, page in enumerate(reader.pages, start=1)
        ]
