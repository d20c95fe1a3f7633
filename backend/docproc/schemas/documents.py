"""
Document Processing — Pydantic Request/Response Schemas

Covers the trigger interface:
  - POST /api/v1/documents/process             request + success body
  - POST /api/v1/documents/{id}/process/async  202 body
  - GET  /api/v1/documents/{id}/status         status body
  - Structured error body returned for every categorized failure

Wire format is camelCase (the callers are JavaScript clients); Python code
uses snake_case attribute names. All timestamps are ISO-8601 UTC.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Processing pipeline state machine
# ---------------------------------------------------------------------------

class ProcessingStatus(str, Enum):
    """
    Maps to documents.status_processing.
    Transitions: pending → processing → completed | failed
    """
    PENDING     = "pending"       # uploaded, not yet picked up
    PROCESSING  = "processing"    # pipeline run in progress
    COMPLETED   = "completed"     # chunks + embeddings persisted
    FAILED      = "failed"        # terminal error, see metadata.error


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ProcessDocumentRequest(_CamelModel):
    document_id: UUID = Field(..., description="Identifier of an uploaded document")


# ---------------------------------------------------------------------------
# Success responses
# ---------------------------------------------------------------------------

class ProcessingResultResponse(_CamelModel):
    """Returned by the synchronous trigger once the document is completed."""
    success:                   bool            = Field(True)
    document_id:               UUID            = Field(..., description="Processed document")
    chunks_created:            int             = Field(..., description="Chunks persisted with an embedding")
    chunks_failed:             int             = Field(..., description="Chunks skipped after errors")
    processing_time_ms:        float           = Field(..., description="Total wall time")
    extraction_time_ms:        float           = Field(..., description="Extraction cascade wall time")
    chunking_time_ms:          float           = Field(..., description="Chunker wall time")
    text_length:               int             = Field(..., description="Characters of normalized text")
    average_embedding_time_ms: float           = Field(..., description="Mean embedding latency per chunk")
    processing_rate:           float           = Field(..., description="Chunks per second")
    success_rate:              float           = Field(..., description="Percentage of chunks persisted")
    extraction_method:         str             = Field(..., description="Winning extraction strategy")
    extraction_quality:        float           = Field(..., description="Heuristic quality of the winner, 0–1")
    pages:                     int             = Field(0, description="Page count when known")
    ocr_used:                  bool            = Field(False, description="True if remote OCR produced the text")
    whisper_hash:              Optional[str]   = Field(None, description="Remote OCR job handle, if any")


class ProcessingQueuedResponse(_CamelModel):
    """HTTP 202 — the document was queued for background processing."""
    document_id: UUID             = Field(...)
    status:      ProcessingStatus = Field(ProcessingStatus.PENDING)
    task_id:     Optional[str]    = Field(None, description="Celery task id")


class DocumentStatusResponse(_CamelModel):
    document_id:        UUID
    status:             ProcessingStatus
    extraction_method:  Optional[str]   = None
    extraction_quality: Optional[float] = None
    error:              Optional[str]   = Field(None, description="User-facing error for failed documents")
    error_category:     Optional[str]   = None


# ---------------------------------------------------------------------------
# Structured error body
# ---------------------------------------------------------------------------

class ProcessingErrorResponse(_CamelModel):
    """
    Returned for every failure. `error` is safe to show to end users;
    `details` keeps the raw technical message for diagnostics.
    """
    error:              str             = Field(..., description="Human-readable message")
    category:           str             = Field(..., description="Error category, e.g. 'extraction'")
    processing_time_ms: float           = Field(0.0)
    timestamp:          datetime        = Field(default_factory=lambda: datetime.now(timezone.utc))
    request_id:         Optional[str]   = Field(None)
    details:            Optional[Any]   = Field(None, description="Raw technical detail")

    @classmethod
    def from_error(cls, exc, request_id: str | None = None) -> "ProcessingErrorResponse":
        """Build from a core.errors.ProcessingError."""
        return cls(
            error=exc.user_message,
            category=exc.category.value,
            processing_time_ms=round(exc.processing_time_ms or 0.0, 1),
            request_id=request_id,
            details=exc.message,
        )
