"""
Unit Tests — Celery Tasks

Tasks are called directly (no broker, no worker). The async bodies and the
store are patched; apply_async is patched so nothing is published.

Coverage targets:
  ✅ process_document returns the completed payload
  ✅ Invalid id → failed result without touching the pipeline
  ✅ Retryable ProcessingError → self.retry with exponential countdown
  ✅ Terminal ProcessingError → failed result with category
  ✅ retry_pending_documents re-queues every stale id
  ✅ Low-quality sweep stamps queued documents and skips stamped ones
  ✅ health_check reports remote OCR availability
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from celery.exceptions import Retry
from sqlalchemy.dialects import postgresql

from docproc.core.errors import ExtractionExhausted, NetworkError
from docproc.services.stores import (
    REPROCESS_MARKER,
    REPROCESSED_AT_KEY,
    reprocess_candidates_query,
)
from docproc.workers import tasks
from docproc.workers.celery_app import celery_app


@pytest.mark.unit
class TestProcessDocumentTask:

    def test_completed_payload(self, document_id):
        payload = {"status": "completed", "documentId": str(document_id), "chunksCreated": 3}
        with patch.object(tasks, "_process_document_async", AsyncMock(return_value=payload)) as body:
            result = tasks.process_document(document_id=str(document_id))

        assert result == payload
        body.assert_awaited_once_with(document_id)

    def test_invalid_id(self):
        with patch.object(tasks, "_process_document_async", AsyncMock()) as body:
            result = tasks.process_document(document_id="not-a-uuid")

        assert result["status"] == "failed"
        assert result["category"] == "validation"
        body.assert_not_awaited()

    def test_retryable_error_schedules_retry(self, document_id):
        error = NetworkError("Download timed out")
        with patch.object(tasks, "_process_document_async", AsyncMock(side_effect=error)), \
             patch.object(tasks.process_document, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                tasks.process_document(document_id=str(document_id))

        retry.assert_called_once_with(exc=error, countdown=30)

    def test_terminal_error_returns_failure(self, document_id):
        error = ExtractionExhausted("All 5 extraction strategies failed")
        with patch.object(tasks, "_process_document_async", AsyncMock(side_effect=error)):
            result = tasks.process_document(document_id=str(document_id))

        assert result == {
            "status":      "failed",
            "document_id": str(document_id),
            "category":    "extraction",
            "error":       error.user_message,
        }


@pytest.mark.unit
class TestMaintenanceTasks:

    def test_retry_pending_requeues_stale_documents(self):
        stale = [uuid.uuid4(), uuid.uuid4()]
        store = MagicMock()
        store.list_stale_pending = AsyncMock(return_value=stale)

        with patch.object(tasks, "SqlDocumentStore", return_value=store), \
             patch.object(tasks, "worker_session_factory"), \
             patch.object(tasks.process_document, "apply_async") as apply_async:
            result = tasks.retry_pending_documents()

        assert result == {"requeued": 2}
        store.list_stale_pending.assert_awaited_once_with(
            tasks.STALE_PENDING_MINUTES, tasks.STALE_PENDING_BATCH,
        )
        sent = [c.kwargs["kwargs"]["document_id"] for c in apply_async.call_args_list]
        assert sent == [str(d) for d in stale]

    def test_reprocess_low_quality_uses_low_priority(self):
        candidate = uuid.uuid4()
        store = MagicMock()
        store.list_reprocess_candidates = AsyncMock(return_value=[candidate])
        store.mark_reprocess_queued = AsyncMock()

        with patch.object(tasks, "SqlDocumentStore", return_value=store), \
             patch.object(tasks, "worker_session_factory"), \
             patch.object(tasks.process_document, "apply_async") as apply_async:
            result = tasks.reprocess_low_quality_documents()

        assert result == {"queued": 1}
        assert apply_async.call_args.kwargs["priority"] == 1
        store.mark_reprocess_queued.assert_awaited_once_with(candidate)

    def test_health_check(self):
        result = tasks.health_check()

        assert result["status"] == "ok"
        assert result["remote_ocr"] == "disabled"   # no LLMWhisperer key in tests

    def test_routes_and_beat_schedule(self):
        routes = celery_app.conf.task_routes
        assert routes["docproc.workers.tasks.process_document"]["queue"] == "documents.process"
        scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}
        assert "docproc.workers.tasks.retry_pending_documents" in scheduled
        assert "docproc.workers.tasks.reprocess_low_quality_documents" in scheduled


@pytest.mark.unit
class TestReprocessCandidatesQuery:

    @staticmethod
    def _compile(stmt):
        return stmt.compile(dialect=postgresql.dialect())

    def test_low_quality_documents_already_reprocessed_are_excluded(self):
        compiled = self._compile(reprocess_candidates_query(0.5, 20))
        sql = str(compiled)

        assert REPROCESSED_AT_KEY in compiled.params.values()
        assert "NOT (documents.doc_metadata ?" in sql
        assert "documents.doc_metadata IS NULL" in sql

    def test_operator_flag_bypasses_the_reprocessed_stamp(self):
        compiled = self._compile(reprocess_candidates_query(0.5, 20))
        sql = str(compiled)

        assert REPROCESS_MARKER in compiled.params.values()
        # flag OR (low quality AND never stamped)
        flag_at = sql.index("documents.extraction_method =")
        stamp_at = sql.index("documents.doc_metadata ?")
        assert flag_at < stamp_at
        assert " OR documents.extraction_quality < " in sql
        assert 0.5 in compiled.params.values()
