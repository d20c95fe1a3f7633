"""
Celery Tasks — Document Processing

Task: process_document
  Runs DocumentProcessor.process() for one document id. The processor owns
  every status transition; this task only decides whether a failure is worth
  another attempt (ProcessingError.retryable, e.g. a download that timed out).

Task: retry_pending_documents
  Beat task — re-queues documents stuck in 'pending' for > 5 minutes
  (covers broker outages when the document was first triggered).

Task: reprocess_low_quality_documents
  Beat task — re-queues completed documents whose extraction quality is
  below settings.reprocess_quality_threshold, or whose extraction_method was
  set to 'pending_reprocess' by an operator. Each queued document is stamped
  with reprocessed_at; a low score alone re-queues a document only once.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from celery import Task

from docproc.core.config import settings
from docproc.core.errors import ProcessingError
from docproc.db.session import worker_session_factory
from docproc.services.processor import build_document_processor
from docproc.services.stores import SqlDocumentStore
from docproc.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

STALE_PENDING_MINUTES = 5
STALE_PENDING_BATCH   = 50


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


# ---------------------------------------------------------------------------
# Main processing task
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docproc.workers.tasks.process_document",
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    acks_late=True,
    reject_on_worker_lost=True,
)
def process_document(self: Task, *, document_id: str) -> dict[str, Any]:
    try:
        doc_uuid = uuid.UUID(document_id)
    except ValueError:
        logger.error("Invalid document id | doc=%s", document_id)
        return {"status": "failed", "document_id": document_id, "category": "validation"}

    try:
        return run_async(_process_document_async(doc_uuid))
    except ProcessingError as exc:
        if exc.retryable and self.request.retries < self.max_retries:
            countdown = 30 * (2 ** self.request.retries)
            logger.warning(
                "Retrying document | doc=%s attempt=%d category=%s countdown=%ds",
                document_id, self.request.retries + 1, exc.category.value, countdown,
            )
            raise self.retry(exc=exc, countdown=countdown)

        return {
            "status":      "failed",
            "document_id": document_id,
            "category":    exc.category.value,
            "error":       exc.user_message,
        }


async def _process_document_async(document_id: uuid.UUID) -> dict[str, Any]:
    processor = build_document_processor(settings, worker_session_factory())
    result = await processor.process(document_id)
    return {
        "status": "completed",
        **result.to_response().model_dump(mode="json", by_alias=True),
    }


# ---------------------------------------------------------------------------
# Retry scanner: runs every 60 seconds via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docproc.workers.tasks.retry_pending_documents",
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def retry_pending_documents() -> dict[str, int]:
    """Find documents stuck in 'pending' for > 5 minutes and re-queue them."""
    return run_async(_retry_pending_documents_async())


async def _retry_pending_documents_async() -> dict[str, int]:
    store = SqlDocumentStore(worker_session_factory())
    stale = await store.list_stale_pending(STALE_PENDING_MINUTES, STALE_PENDING_BATCH)

    for document_id in stale:
        process_document.apply_async(kwargs={"document_id": str(document_id)}, countdown=5)
        logger.info("Re-queued stale document | doc=%s", document_id)

    return {"requeued": len(stale)}


# ---------------------------------------------------------------------------
# Low-quality reprocessing: runs hourly via Celery Beat
# ---------------------------------------------------------------------------

@celery_app.task(
    name="docproc.workers.tasks.reprocess_low_quality_documents",
    acks_late=True,
    soft_time_limit=55,
    time_limit=60,
)
def reprocess_low_quality_documents() -> dict[str, int]:
    return run_async(_reprocess_low_quality_documents_async())


async def _reprocess_low_quality_documents_async() -> dict[str, int]:
    store = SqlDocumentStore(worker_session_factory())
    candidates = await store.list_reprocess_candidates(
        settings.reprocess_quality_threshold,
        settings.reprocess_batch_size,
    )

    for document_id in candidates:
        await store.mark_reprocess_queued(document_id)
        # lower priority than user-triggered runs
        process_document.apply_async(kwargs={"document_id": str(document_id)}, priority=1)
        logger.info("Queued low-quality document for reprocessing | doc=%s", document_id)

    return {"queued": len(candidates)}


# ---------------------------------------------------------------------------
# Health check task
# ---------------------------------------------------------------------------

@celery_app.task(name="docproc.workers.tasks.health_check")
def health_check() -> dict[str, str]:
    return {
        "status":     "ok",
        "worker":     "healthy",
        "remote_ocr": "enabled" if settings.remote_ocr_enabled else "disabled",
    }
