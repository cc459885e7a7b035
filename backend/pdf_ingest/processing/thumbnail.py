"""
First-page thumbnail rendering (PyMuPDF pixmap → PNG).

Cosmetic only: any failure is returned on the result and the pipeline
carries on without a thumbnail.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_SCALE = 1.5
MAX_SCALE     = 2.0


@dataclass
class ThumbnailResult:
    success: bool
    image:   bytes | None = None
    width:   int = 0
    height:  int = 0
    error:   str | None = None


def clamp_scale(scale: float) -> float:
    if scale <= 0:
        return DEFAULT_SCALE
    return min(scale, MAX_SCALE)


class ThumbnailExtractor:

    def __init__(self, scale: float = DEFAULT_SCALE) -> None:
        self._scale = clamp_scale(scale)

    async def extract(self, pdf_bytes: bytes) -> ThumbnailResult:
        loop = asyncio.get_event_loop()
        try:
            image, width, height = await loop.run_in_executor(None, self._render_sync, pdf_bytes)
        except Exception as exc:
            logger.warning("Thumbnail render failed: %s", exc)
            return ThumbnailResult(success=False, error=str(exc) or type(exc).__name__)

        logger.info("Thumbnail | size=%dx%d bytes=%d", width, height, len(image))
        return ThumbnailResult(success=True, image=image, width=width, height=height)

    def _render_sync(self, pdf_bytes: bytes) -> tuple[bytes, int, int]:
        import fitz

        with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
            if doc.page_count == 0:
                raise ValueError("PDF has no pages")
            pix = doc[0].get_pixmap(matrix=fitz.Matrix(self._scale, self._scale))
            return pix.tobytes("png"), pix.width, pix.height
