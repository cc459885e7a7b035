"""
Celery Application Factory

Configures the Celery app that runs the ingestion pipeline.
Broker: RabbitMQ (amqp://) in production; Redis (redis://) works for local dev.
Result backend: Redis. Task state is only used for GET /tasks/{id};
document state lives in PostgreSQL.

Queue topology:
  documents.ingest   — process_document, one attempt per message
  documents.retry    — stale-pending scanner (beat)
  system.health      — internal health-check tasks

Parallelism: worker_concurrency caps how many documents are processed at
once (INGEST_MAX_PARALLELISM, default 3). Task payloads carry only the
document id; workers load everything else from the database.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import after_setup_logger, task_failure, task_postrun, task_prerun, task_retry
from kombu import Exchange, Queue

from pdf_ingest.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

INGEST_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.ingest",
        exchange=INGEST_EXCHANGE,
        routing_key="documents.ingest",
        durable=True,
    ),
    Queue(
        "documents.retry",
        exchange=INGEST_EXCHANGE,
        routing_key="documents.retry",
        durable=True,
    ),
    Queue(
        "system.health",
        Exchange("system", type="direct"),
        routing_key="system.health",
        durable=True,
    ),
)

TASK_ROUTES = {
    "pdf_ingest.workers.tasks.process_document":        {"queue": "documents.ingest"},
    "pdf_ingest.workers.tasks.requeue_stale_documents": {"queue": "documents.retry"},
    "pdf_ingest.workers.tasks.health_check":            {"queue": "system.health"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("pdf_ingest")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.ingest",
        task_default_exchange="documents",
        task_default_routing_key="documents.ingest",

        # --- Reliability ---
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_track_started=True,       # STARTED → "running" in GET /tasks/{id}
        worker_prefetch_multiplier=1,

        # --- Concurrency ---
        worker_concurrency=settings.ingest_max_parallelism,

        # --- Timeouts ---
        # Index polling alone may take index_poll_timeout_seconds
        task_soft_time_limit=int(settings.index_poll_timeout_seconds) + 300,
        task_time_limit=int(settings.index_poll_timeout_seconds) + 360,

        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule (stale-pending scanner) ---
        beat_schedule={
            "requeue-stale-documents-every-60s": {
                "task":     "pdf_ingest.workers.tasks.requeue_stale_documents",
                "schedule": 60,
                "options":  {"queue": "documents.retry"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["pdf_ingest.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals — per-document logging
# ---------------------------------------------------------------------------

@after_setup_logger.connect
def on_after_setup_logger(logger, **_):
    level = logging.DEBUG if settings.debug else logging.INFO
    logger.setLevel(level)
    logging.getLogger("pdf_ingest").setLevel(level)


@task_prerun.connect
def on_task_prerun(task_id, task, args, kwargs, **_):
    logger.info(
        "Task start | task_id=%s task=%s doc=%s",
        task_id, task.name, (kwargs or {}).get("document_id", "-"),
    )


@task_postrun.connect
def on_task_postrun(task_id, task, args, kwargs, retval, state, **_):
    logger.info(
        "Task end | task_id=%s task=%s state=%s doc=%s",
        task_id, task.name, state, (kwargs or {}).get("document_id", "-"),
    )


@task_retry.connect
def on_task_retry(request, reason, **_):
    logger.warning(
        "Task retry scheduled | task_id=%s doc=%s retries=%s reason=%s",
        request.id, (request.kwargs or {}).get("document_id", "-"), request.retries, reason,
    )


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
        exc_info=True,
    )
