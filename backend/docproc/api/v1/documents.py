"""
Document Processing API Router

  POST /api/v1/documents/process             run the pipeline now, return metrics
  POST /api/v1/documents/{id}/process/async  enqueue the Celery task, return 202
  GET  /api/v1/documents/{id}/status         current processing state

Request lifecycle (synchronous trigger):
  ┌─────────────────────────────────────────────────────────┐
  │ 1. Body validated → documentId (UUID)                   │
  │ 2. DocumentProcessor.process(documentId)                │
  │ 3. Success → 200 ProcessingResultResponse               │
  │ 4. ProcessingError → structured error body (see main.py │
  │    exception handler), document already marked failed  │
  └─────────────────────────────────────────────────────────┘

Collaborators are FastAPI dependencies so tests can override them with
app.dependency_overrides.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from uuid import UUID

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from docproc.core.errors import DocumentNotFound
from docproc.schemas.documents import (
    DocumentStatusResponse,
    ProcessDocumentRequest,
    ProcessingErrorResponse,
    ProcessingQueuedResponse,
    ProcessingResultResponse,
    ProcessingStatus,
)
from docproc.services.processor import (
    DocumentProcessor,
    TaskPublisher,
    build_document_processor,
)
from docproc.services.stores import DocumentStore, SqlDocumentStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/documents",
    tags=["Document Processing"],
)

_ERROR_RESPONSES = {
    400: {"model": ProcessingErrorResponse, "description": "Invalid record or corrupted file"},
    404: {"model": ProcessingErrorResponse, "description": "Document not found"},
    409: {"model": ProcessingErrorResponse, "description": "Document already processing"},
    500: {"model": ProcessingErrorResponse, "description": "Processing failed"},
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

@lru_cache(maxsize=1)
def get_document_processor() -> DocumentProcessor:
    return build_document_processor()


def get_document_store() -> DocumentStore:
    return SqlDocumentStore()


def get_task_publisher() -> TaskPublisher:
    return TaskPublisher()


# ---------------------------------------------------------------------------
# POST /documents/process
# ---------------------------------------------------------------------------

@router.post(
    "/process",
    response_model=ProcessingResultResponse,
    summary="Process a document synchronously",
    description=(
        "Extracts text, chunks it and embeds every chunk before returning. "
        "Large PDFs that need remote OCR can take minutes; prefer the async route."
    ),
    responses={200: {"model": ProcessingResultResponse}, **_ERROR_RESPONSES},
)
async def process_document(
    body:      ProcessDocumentRequest,
    processor: DocumentProcessor = Depends(get_document_processor),
) -> ProcessingResultResponse:
    result = await processor.process(body.document_id)
    return result.to_response()


# ---------------------------------------------------------------------------
# POST /documents/{document_id}/process/async
# ---------------------------------------------------------------------------

@router.post(
    "/{document_id}/process/async",
    response_model=ProcessingQueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a document for background processing",
    responses={202: {"model": ProcessingQueuedResponse}, 404: _ERROR_RESPONSES[404]},
)
async def enqueue_document(
    document_id: UUID,
    store:       DocumentStore = Depends(get_document_store),
    publisher:   TaskPublisher = Depends(get_task_publisher),
) -> JSONResponse:
    record = await store.get(document_id)
    if record is None:
        raise DocumentNotFound(f"Document {document_id} does not exist")

    task_id: str | None = None
    try:
        task_id = await publisher.publish_processing_task(document_id)
    except Exception as exc:
        # The beat scanner re-queues documents left pending.
        logger.error("Failed to publish processing task | doc=%s error=%s", document_id, exc)

    body = ProcessingQueuedResponse(document_id=document_id, status=record.status, task_id=task_id)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=body.model_dump(mode="json", by_alias=True),
        headers={"Location": f"/api/v1/documents/{document_id}/status"},
    )


# ---------------------------------------------------------------------------
# GET /documents/{document_id}/status
# ---------------------------------------------------------------------------

@router.get(
    "/{document_id}/status",
    response_model=DocumentStatusResponse,
    summary="Poll processing status",
    responses={200: {"model": DocumentStatusResponse}, 404: _ERROR_RESPONSES[404]},
)
async def get_document_status(
    document_id: UUID,
    store:       DocumentStore = Depends(get_document_store),
) -> DocumentStatusResponse:
    record = await store.get(document_id)
    if record is None:
        raise DocumentNotFound(f"Document {document_id} does not exist")

    failed = record.status == ProcessingStatus.FAILED
    return DocumentStatusResponse(
        document_id=record.id,
        status=record.status,
        extraction_method=record.extraction_method,
        extraction_quality=record.extraction_quality,
        error=record.metadata.get("user_message") if failed else None,
        error_category=record.metadata.get("category") if failed else None,
    )
