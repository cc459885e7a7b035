"""
Pipeline switches stored in ingest.pipeline_settings.

Read once at the start of every attempt. Only the literal value "false"
(case-insensitive) turns a switch off; a missing row falls back to the
configured default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from pdf_ingest.core.config import settings
from pdf_ingest.db.session import session_scope
from pdf_ingest.models.documents import PipelineSetting
from pdf_ingest.services.store import SessionFactory

logger = logging.getLogger(__name__)

PROCESSING_ENABLED          = "processing_enabled"
TEXT_EXTRACTION_ENABLED     = "text_extraction_enabled"
METADATA_EXTRACTION_ENABLED = "metadata_extraction_enabled"


@dataclass(frozen=True)
class PipelineFlags:
    processing_enabled:          bool = True
    text_extraction_enabled:     bool = True
    metadata_extraction_enabled: bool = True


def _enabled(raw: str | None, default: bool) -> bool:
    if raw is None:
        return default
    return raw.strip().lower() != "false"


class PipelineFlagsStore:

    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session = session_factory

    async def load(self) -> PipelineFlags:
        keys = (PROCESSING_ENABLED, TEXT_EXTRACTION_ENABLED, METADATA_EXTRACTION_ENABLED)
        async with self._session() as db:
            result = await db.execute(
                select(PipelineSetting).where(PipelineSetting.key.in_(keys))
            )
            rows = {row.key: row.value for row in result.scalars().all()}

        flags = PipelineFlags(
            processing_enabled=_enabled(rows.get(PROCESSING_ENABLED), settings.processing_enabled),
            text_extraction_enabled=_enabled(
                rows.get(TEXT_EXTRACTION_ENABLED), settings.text_extraction_enabled
            ),
            metadata_extraction_enabled=_enabled(
                rows.get(METADATA_EXTRACTION_ENABLED), settings.metadata_extraction_enabled
            ),
        )
        logger.debug("Pipeline flags | %s", flags)
        return flags
