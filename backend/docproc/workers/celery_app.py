"""
Celery Application Factory

Runs document processing outside the request cycle.
Broker: RabbitMQ (amqp://) in production; Redis (redis://) works for local dev.
Result backend: Redis (task results are informational; the document row is
the source of truth for processing state).

Queue topology:
  documents.process    — processing runs triggered by the API or re-queued
  documents.maintenance — beat scanners (stale pending, low quality)
  system.health        — internal health-check tasks

Task payloads carry only the document id; the worker reloads everything else
from the database.
"""

from __future__ import annotations

import logging

from celery import Celery
from celery.signals import task_failure, task_postrun, task_prerun
from kombu import Exchange, Queue

from docproc.core.config import settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Queue and exchange definitions
# ---------------------------------------------------------------------------

DOCUMENTS_EXCHANGE = Exchange("documents", type="direct", durable=True)

TASK_QUEUES = (
    Queue(
        "documents.process",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.process",
        queue_arguments={"x-max-priority": 10},
        durable=True,
    ),
    Queue(
        "documents.maintenance",
        exchange=DOCUMENTS_EXCHANGE,
        routing_key="documents.maintenance",
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
    "docproc.workers.tasks.process_document":                {"queue": "documents.process"},
    "docproc.workers.tasks.retry_pending_documents":         {"queue": "documents.maintenance"},
    "docproc.workers.tasks.reprocess_low_quality_documents": {"queue": "documents.maintenance"},
    "docproc.workers.tasks.health_check":                    {"queue": "system.health"},
}

# ---------------------------------------------------------------------------
# Celery app factory
# ---------------------------------------------------------------------------

def create_celery_app() -> Celery:
    app = Celery("docproc")

    app.conf.update(
        # --- Broker / Backend ---
        broker_url=settings.celery_broker_url,
        result_backend=settings.celery_result_backend,

        # --- Serialization (reject non-JSON messages) ---
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        event_serializer="json",

        # --- Queues ---
        task_queues=TASK_QUEUES,
        task_routes=TASK_ROUTES,
        task_default_queue="documents.process",
        task_default_exchange="documents",
        task_default_routing_key="documents.process",

        # --- Reliability ---
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,   # one document at a time per worker process

        # --- Retries ---
        task_max_retries=3,
        task_default_retry_delay=60,

        # --- Timeouts ---
        # OCR deadline (180 s) + download (300 s) + embeddings for 500 chunks
        task_soft_time_limit=900,
        task_time_limit=960,

        result_expires=3600,

        timezone="UTC",
        enable_utc=True,

        # --- Beat schedule ---
        beat_schedule={
            "retry-pending-documents-every-60s": {
                "task":     "docproc.workers.tasks.retry_pending_documents",
                "schedule": 60,
                "options":  {"queue": "documents.maintenance"},
            },
            "reprocess-low-quality-documents-hourly": {
                "task":     "docproc.workers.tasks.reprocess_low_quality_documents",
                "schedule": 3600,
                "options":  {"queue": "documents.maintenance"},
            },
        },

        worker_max_tasks_per_child=200,
    )

    app.autodiscover_tasks(["docproc.workers"])

    return app


celery_app = create_celery_app()


# ---------------------------------------------------------------------------
# Celery signals: one log line per task transition
# ---------------------------------------------------------------------------

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


@task_failure.connect
def on_task_failure(task_id, exception, args, kwargs, traceback, einfo, **_):
    logger.error(
        "Task failed | task_id=%s doc=%s error=%s",
        task_id, (kwargs or {}).get("document_id", "-"), exception,
    )
