"""
Job Tracker — per-attempt audit trail in ingest.processing_jobs.

Purely observational: the orchestrator records each stage transition here,
but nothing here ever gates control flow. A job that stops receiving
updates is a condition for the UI to surface (see is_stale); the tracker has
no timeout or retry of its own.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import select

from pdf_ingest.db.session import session_scope
from pdf_ingest.models.documents import ProcessingJob
from pdf_ingest.schemas.documents import JobStage
from pdf_ingest.services.store import SessionFactory

logger = logging.getLogger(__name__)

STALE_JOB_THRESHOLD = timedelta(minutes=10)


class JobTracker:

    def __init__(self, session_factory: SessionFactory = session_scope) -> None:
        self._session = session_factory

    async def create_job(self, document_id: UUID, stage: JobStage) -> UUID:
        job_id = uuid.uuid4()
        now = datetime.now(timezone.utc)
        async with self._session() as db:
            db.add(ProcessingJob(
                id=job_id,
                document_id=document_id,
                stage=stage.value,
                job_metadata={},
                started_at=now,
                updated_at=now,
            ))
        logger.info("Job created | job=%s doc=%s stage=%s", job_id, document_id, stage.value)
        return job_id

    async def update_job(
        self,
        job_id: UUID,
        stage: JobStage,
        metadata: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> None:
        async with self._session() as db:
            result = await db.execute(select(ProcessingJob).where(ProcessingJob.id == job_id))
            job = result.scalars().first()
            if job is None:
                logger.warning("Job update for unknown job | job=%s stage=%s", job_id, stage.value)
                return

            job.stage = stage.value
            if metadata:
                # Reassign so the JSONB column is flagged dirty
                job.job_metadata = {**(job.job_metadata or {}), **metadata}
            if error is not None:
                job.error = error
            if stage.is_terminal:
                job.completed_at = datetime.now(timezone.utc)

        logger.info(
            "Job stage | job=%s stage=%s error=%s",
            job_id, stage.value, "yes" if error else "no",
        )

    async def list_jobs(self, document_id: UUID, limit: int = 50) -> list[ProcessingJob]:
        """Attempt history for a document, newest first."""
        async with self._session() as db:
            result = await db.execute(
                select(ProcessingJob)
                .where(ProcessingJob.document_id == document_id)
                .order_by(ProcessingJob.started_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())


def is_stale(
    job: ProcessingJob,
    now: datetime | None = None,
    threshold: timedelta = STALE_JOB_THRESHOLD,
) -> bool:
    """True for a non-terminal job with no update within `threshold`."""
    if JobStage(job.stage).is_terminal:
        return False
    now = now or datetime.now(timezone.utc)
    last = job.updated_at or job.started_at
    return last is not None and now - last > threshold
