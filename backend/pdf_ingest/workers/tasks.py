"""
Celery Tasks — Document Ingestion

Task: process_document(document_id)
  Runs one IngestionPipeline attempt. The pipeline records every outcome
  on the document itself (status, processing_error, job row); the task only
  decides whether the attempt is worth retrying:

    outcome.retryable and retries < RETRY_MAX_ATTEMPTS
        → self.retry(countdown = RETRY_INITIAL_DELAY × RETRY_BACKOFF_BASE^retries)

  A retried attempt finds the document in status=failed, which the pipeline
  treats as runnable.

Task: requeue_stale_documents
  Beat task — re-publishes documents stuck in 'pending' for longer than
  STALE_PENDING_MINUTES (broker was down when the API tried to enqueue).
  A document whose last task is running, or pending for less than
  QUEUE_BACKLOG_GRACE_MINUTES, is left to that task.

Task: health_check
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from celery import Task

from pdf_ingest.core.config import settings
from pdf_ingest.core.errors import DocumentNotFoundError
from pdf_ingest.schemas.documents import TaskState
from pdf_ingest.workers.celery_app import celery_app
from pdf_ingest.workers.queue import PROCESS_DOCUMENT

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Async task helper
# Run async coroutines inside Celery's synchronous task context.
# ---------------------------------------------------------------------------

def run_async(coro):
    """Execute an async coroutine from a synchronous Celery task."""
    try:
        loop = asyncio.get_event_loop()
        if loop.is_running():
            import concurrent.futures
            with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
                future = pool.submit(asyncio.run, coro)
                return future.result()
        return loop.run_until_complete(coro)
    except RuntimeError:
        return asyncio.run(coro)


def retry_countdown(retries: int) -> float:
    """Seconds to wait before retry number `retries + 1`."""
    return settings.retry_initial_delay * (settings.retry_backoff_base ** retries)


# ---------------------------------------------------------------------------
# Production wiring
# ---------------------------------------------------------------------------

def build_pipeline():
    from pdf_ingest.processing.embeddings import OpenAIEmbedder
    from pdf_ingest.services.flags import PipelineFlagsStore
    from pdf_ingest.services.jobs import JobTracker
    from pdf_ingest.services.pipeline import IngestionPipeline
    from pdf_ingest.services.sources import SourceLoader
    from pdf_ingest.services.store import DocumentStore
    from pdf_ingest.storage.s3 import S3BlobStorage
    from pdf_ingest.vectorstore.factory import get_index_store, get_vector_store

    storage = S3BlobStorage()
    return IngestionPipeline(
        documents=DocumentStore(),
        jobs=JobTracker(),
        flags=PipelineFlagsStore(),
        sources=SourceLoader(storage),
        storage=storage,
        vector_store=get_vector_store(),
        index_store=get_index_store(),
        embedder=OpenAIEmbedder(),
    )


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name=PROCESS_DOCUMENT,
    bind=True,
    max_retries=settings.retry_max_attempts,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    result = run_async(process_document_async(uuid.UUID(document_id)))

    if result.get("retryable") and self.request.retries < self.max_retries:
        countdown = retry_countdown(self.request.retries)
        logger.warning(
            "Transient failure, retrying | doc=%s attempt=%d countdown=%.0fs error=%s",
            document_id, self.request.retries + 1, countdown, result.get("error"),
        )
        raise self.retry(countdown=countdown)

    return result


async def process_document_async(document_id: uuid.UUID, pipeline=None) -> dict[str, Any]:
    from pdf_ingest.db.session import engine

    owned = pipeline is None
    pipeline = pipeline or build_pipeline()
    try:
        outcome = await pipeline.run(document_id)
    except DocumentNotFoundError:
        logger.error("Document not found | doc=%s", document_id)
        return {"status": "not_found", "document_id": str(document_id)}
    finally:
        if owned:
            await pipeline.aclose()
            # Pooled connections belong to this task's event loop
            await engine.dispose()

    return {
        "status":      outcome.status.value,
        "document_id": str(document_id),
        "job_id":      str(outcome.job_id) if outcome.job_id else None,
        "skipped":     outcome.skipped,
        "retryable":   outcome.retryable,
        "error":       outcome.error,
        "counters":    outcome.counters,
    }


# ---------------------------------------------------------------------------
# Stale-pending scanner — runs every 60 seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="pdf_ingest.workers.tasks.requeue_stale_documents",
    bind=False,
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def requeue_stale_documents() -> dict[str, int]:
    return run_async(requeue_stale_documents_async())


async def requeue_stale_documents_async(documents=None, queue=None) -> dict[str, int]:
    from pdf_ingest.services.store import DocumentStore
    from pdf_ingest.workers.queue import CeleryWorkQueue

    documents = documents or DocumentStore()
    queue = queue or CeleryWorkQueue()

    stale = await documents.list_stale_pending(settings.stale_pending_minutes)
    queued = skipped = 0
    for doc in stale:
        if await _still_queued(queue, doc):
            skipped += 1
            continue
        previous_task = doc.queue_task_id
        task_id = await queue.enqueue(PROCESS_DOCUMENT, {"document_id": str(doc.id)})
        await documents.update(doc.id, queue_task_id=task_id, queued_at=datetime.now(timezone.utc))
        queued += 1
        logger.info(
            "Re-queued stale document | doc=%s previous_task=%s task=%s",
            doc.id, previous_task, task_id,
        )

    return {"requeued": queued, "skipped": skipped}


async def _still_queued(queue, doc) -> bool:
    """
    True while the last published task is running, or still waiting and
    younger than the backlog grace period. Broker state cannot tell a
    lost message from a queued one, so age decides.
    """
    if not doc.queue_task_id:
        return False
    state = await queue.status(doc.queue_task_id)
    if state == TaskState.RUNNING:
        return True
    if state == TaskState.PENDING and doc.queued_at is not None:
        grace = timedelta(minutes=settings.queue_backlog_grace_minutes)
        return datetime.now(timezone.utc) - doc.queued_at < grace
    return False


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="pdf_ingest.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {"status": "ok", "worker": "healthy"}
