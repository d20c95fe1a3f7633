"""
Document Processor  —  Pipeline Coordinator
═══════════════════════════════════════════

State machine (documents.status_processing):

    pending ──► processing ──► completed
                    │
                    └────────► failed

Sequence for one document:

  ┌───────────────────────────────────────────────────────────────────┐
  │  1. load record             (missing            → 404)            │
  │  2. mark processing         (already running    → 409)            │
  │  3. validate record         (url + pdf|txt|md)                    │
  │  4. purge previous chunks   (delete-then-insert discipline)       │
  │  5. fetch bytes + size check                                      │
  │  6. extract                 (orchestrator, OCR per ocr_mode)      │
  │  7. chunk                   (OCR text uses the larger window)     │
  │  8. per chunk: embed → insert, sequentially                       │
  │       failures > ratio × total → abort                            │
  │  9. zero chunks persisted   → failed                              │
  │ 10. write extraction info + quality report                        │
  │ 11. mark completed                                                │
  └───────────────────────────────────────────────────────────────────┘

Any exception after step 2 is categorized, stored on the document
(status=failed, metadata.error / category / user_message / error_timestamp)
and re-raised to the caller as a ProcessingError.

Persisted chunk indices stay contiguous from 0: a chunk that fails is
skipped and the next successful chunk takes its slot. The chunker's own
index is kept in chunk metadata as `chunk_index`.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from docproc.core.errors import (
    DocumentAlreadyProcessing,
    DocumentNotFound,
    NoTextFound,
    ProcessingError,
    TooManyChunkFailures,
    categorize_error,
)
from docproc.processing.chunking import TextChunk, chunk_text
from docproc.processing.embeddings import EmbeddingGenerator
from docproc.processing.extractor import ExtractionOrchestrator, ExtractionResult
from docproc.processing.quality import assess_quality
from docproc.processing.validation import (
    text_content_warnings,
    validate_document_record,
    validate_file_size,
    validate_pdf_header,
)
from docproc.schemas.documents import ProcessingResultResponse, ProcessingStatus
from docproc.services.fetcher import FileFetcher, HttpFileFetcher
from docproc.services.stores import (
    ChunkStore,
    DocumentStore,
    SqlChunkStore,
    SqlDocumentStore,
)

logger = logging.getLogger(__name__)


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _elapsed_ms(t0: float) -> float:
    return (time.monotonic() - t0) * 1000


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass
class ProcessingResult:
    document_id:               uuid.UUID
    chunks_created:            int
    chunks_failed:             int
    processing_time_ms:        float
    extraction_time_ms:        float
    chunking_time_ms:          float
    text_length:               int
    average_embedding_time_ms: float
    extraction_method:         str
    extraction_quality:        float
    pages:                     int        = 0
    ocr_used:                  bool       = False
    whisper_hash:              str | None = None

    @property
    def processing_rate(self) -> float:
        """Persisted chunks per second."""
        seconds = self.processing_time_ms / 1000
        return self.chunks_created / seconds if seconds > 0 else 0.0

    @property
    def success_rate(self) -> float:
        """Percentage of chunks persisted."""
        total = self.chunks_created + self.chunks_failed
        return self.chunks_created / total * 100 if total else 0.0

    def to_response(self) -> ProcessingResultResponse:
        return ProcessingResultResponse(
            success=True,
            document_id=self.document_id,
            chunks_created=self.chunks_created,
            chunks_failed=self.chunks_failed,
            processing_time_ms=round(self.processing_time_ms, 1),
            extraction_time_ms=round(self.extraction_time_ms, 1),
            chunking_time_ms=round(self.chunking_time_ms, 1),
            text_length=self.text_length,
            average_embedding_time_ms=round(self.average_embedding_time_ms, 1),
            processing_rate=round(self.processing_rate, 2),
            success_rate=round(self.success_rate, 1),
            extraction_method=self.extraction_method,
            extraction_quality=round(self.extraction_quality, 3),
            pages=self.pages,
            ocr_used=self.ocr_used,
            whisper_hash=self.whisper_hash,
        )


# ---------------------------------------------------------------------------
# Processor
# ---------------------------------------------------------------------------

class DocumentProcessor:
    """
    Stateless coordinator — safe to share across concurrent documents.
    All collaborators are injected (see build_document_processor()).
    """

    def __init__(
        self,
        documents:    DocumentStore,
        chunks:       ChunkStore,
        fetcher:      FileFetcher,
        orchestrator: ExtractionOrchestrator,
        embedder:     EmbeddingGenerator,
        *,
        chunk_size:        int   = 800,
        chunk_overlap:     int   = 150,
        ocr_chunk_size:    int   = 1500,
        ocr_chunk_overlap: int   = 200,
        min_chunk_chars:   int   = 20,
        max_chunks:        int   = 500,
        failure_ratio:     float = 0.5,
        progress_every:    int   = 5,
        max_file_size:     int   = 50 * 1024 * 1024,
    ) -> None:
        self._documents    = documents
        self._chunks       = chunks
        self._fetcher      = fetcher
        self._orchestrator = orchestrator
        self._embedder     = embedder

        self._chunk_size        = chunk_size
        self._chunk_overlap     = chunk_overlap
        self._ocr_chunk_size    = ocr_chunk_size
        self._ocr_chunk_overlap = ocr_chunk_overlap
        self._min_chunk_chars   = min_chunk_chars
        self._max_chunks        = max_chunks
        self._failure_ratio     = failure_ratio
        self._progress_every    = max(1, progress_every)
        self._max_file_size     = max_file_size

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def process(self, document_id: uuid.UUID) -> ProcessingResult:
        """
        Run the whole pipeline for one document.

        Raises:
            ProcessingError (any subclass) after the document has been
            marked failed, with processing_time_ms set.
        """
        t0 = time.monotonic()
        started = False
        logger.info("Processing start | doc=%s", document_id)

        try:
            record = await self._documents.get(document_id)
            if record is None:
                raise DocumentNotFound(f"Document {document_id} does not exist")

            if not await self._documents.update_status(document_id, ProcessingStatus.PROCESSING):
                raise DocumentAlreadyProcessing(
                    f"Document {document_id} is already in status processing"
                )
            started = True

            return await self._run(record, t0)

        except Exception as exc:
            error = categorize_error(exc)
            error.processing_time_ms = _elapsed_ms(t0)
            logger.error(
                "Processing failed | doc=%s category=%s elapsed_ms=%.0f error=%s",
                document_id, error.category.value, error.processing_time_ms, error.message,
            )
            if started:
                await self._mark_failed(document_id, error)
            if error is exc:
                raise
            raise error from exc

    # ------------------------------------------------------------------
    # Pipeline body (status already = processing)
    # ------------------------------------------------------------------

    async def _run(self, record, t0: float) -> ProcessingResult:
        document_id = record.id
        file_type = validate_document_record(record.url, record.file_type)

        purged = await self._chunks.delete_for_document(document_id)
        if purged:
            logger.info("Purged previous chunks | doc=%s count=%d", document_id, purged)

        data = await self._fetcher.fetch(record.url)
        validate_file_size(data, self._max_file_size)
        if file_type == "pdf":
            validate_pdf_header(data)

        extraction = await self._orchestrator.extract(data, file_type)
        warnings = text_content_warnings(extraction.text)
        for warning in warnings:
            logger.warning("Text content warning | doc=%s warning=%s", document_id, warning)

        t_chunk = time.monotonic()
        chunks = self._chunk(extraction)
        chunking_ms = _elapsed_ms(t_chunk)
        if not chunks:
            raise NoTextFound(
                f"Extracted text ({len(extraction.text)} chars) produced no chunks "
                f"of at least {self._min_chunk_chars} characters"
            )
        logger.info(
            "Chunked | doc=%s chunks=%d method=%s elapsed_ms=%.0f",
            document_id, len(chunks), extraction.method, chunking_ms,
        )

        created, failed, embedding_times = await self._embed_and_store(
            document_id, chunks, extraction,
        )

        await self._store_extraction_info(document_id, extraction, warnings, created)

        await self._documents.update_status(
            document_id,
            ProcessingStatus.COMPLETED,
            metadata={"chunks_created": created, "chunks_failed": failed},
        )

        result = ProcessingResult(
            document_id=document_id,
            chunks_created=created,
            chunks_failed=failed,
            processing_time_ms=_elapsed_ms(t0),
            extraction_time_ms=extraction.elapsed_ms,
            chunking_time_ms=chunking_ms,
            text_length=len(extraction.text),
            average_embedding_time_ms=(
                sum(embedding_times) / len(embedding_times) if embedding_times else 0.0
            ),
            extraction_method=extraction.method,
            extraction_quality=extraction.quality,
            pages=extraction.pages,
            ocr_used=extraction.ocr_used,
            whisper_hash=extraction.whisper_hash,
        )
        logger.info(
            "Processing complete | doc=%s chunks=%d failed=%d method=%s quality=%.2f "
            "elapsed_ms=%.0f rate=%.2f/s",
            document_id, created, failed, result.extraction_method,
            result.extraction_quality, result.processing_time_ms, result.processing_rate,
        )
        return result

    def _chunk(self, extraction: ExtractionResult) -> list[TextChunk]:
        if extraction.ocr_used:
            size, overlap, source = self._ocr_chunk_size, self._ocr_chunk_overlap, "ocr"
        else:
            size, overlap, source = self._chunk_size, self._chunk_overlap, "document"
        return chunk_text(
            extraction.text,
            size,
            overlap,
            min_chunk_chars=self._min_chunk_chars,
            max_chunks=self._max_chunks,
            source=source,
        )

    async def _embed_and_store(
        self,
        document_id: uuid.UUID,
        chunks:      list[TextChunk],
        extraction:  ExtractionResult,
    ) -> tuple[int, int, list[float]]:
        """
        Sequential embed → insert loop.

        Returns:
            (chunks created, chunks failed, per-chunk embedding times in ms)
        """
        total = len(chunks)
        created = 0
        failed = 0
        embedding_times: list[float] = []

        for chunk in chunks:
            try:
                embedding = await self._embedder.generate(chunk.content)
                metadata = {
                    **chunk.metadata,
                    "chunk_index":        chunk.index,
                    "extraction_method":  extraction.method,
                    "extraction_quality": round(extraction.quality, 3),
                    "processed_at":       _utcnow_iso(),
                    "embedding_time_ms":  round(embedding.elapsed_ms, 1),
                }
                await self._chunks.insert(
                    document_id, created, chunk.content, embedding.vector, metadata,
                )
            except Exception as exc:
                failed += 1
                error = categorize_error(exc)
                logger.warning(
                    "Chunk failed | doc=%s chunk=%d/%d category=%s error=%s",
                    document_id, chunk.index + 1, total, error.category.value, error.message,
                )
                if failed > total * self._failure_ratio:
                    raise TooManyChunkFailures(
                        f"{failed} of {total} chunks failed; last error: {error.message}",
                        category=error.category,
                        details={"failed": failed, "total": total, "created": created},
                    ) from exc
                continue

            created += 1
            embedding_times.append(embedding.elapsed_ms)
            if created % self._progress_every == 0:
                logger.info(
                    "Chunk progress | doc=%s done=%d/%d failed=%d",
                    document_id, created + failed, total, failed,
                )

        if created == 0:
            raise TooManyChunkFailures(
                f"None of {total} chunks could be persisted",
                details={"failed": failed, "total": total, "created": 0},
            )
        return created, failed, embedding_times

    async def _store_extraction_info(
        self,
        document_id: uuid.UUID,
        extraction:  ExtractionResult,
        warnings:    list[str],
        created:     int,
    ) -> None:
        metadata: dict[str, Any] = {
            "extraction": {
                "attempts":     [a.to_dict() for a in extraction.attempts],
                "pages":        extraction.pages,
                "ocr_used":     extraction.ocr_used,
                "whisper_hash": extraction.whisper_hash,
                "elapsed_ms":   round(extraction.elapsed_ms, 1),
                "text_length":  len(extraction.text),
            },
            "quality_report":       assess_quality(extraction.text).to_dict(),
            "content_warnings":     warnings,
            "extraction_timestamp": _utcnow_iso(),
        }
        try:
            await self._documents.update_extraction_info(
                document_id, extraction.method, extraction.quality, metadata,
            )
        except ProcessingError as exc:
            # Chunks are already persisted; only the completion marker is mandatory.
            logger.error(
                "Could not store extraction info | doc=%s chunks=%d error=%s",
                document_id, created, exc.message,
            )

    async def _mark_failed(self, document_id: uuid.UUID, error: ProcessingError) -> None:
        metadata = {
            "error":           error.message,
            "category":        error.category.value,
            "user_message":    error.user_message,
            "error_timestamp": _utcnow_iso(),
        }
        try:
            await self._documents.update_status(
                document_id, ProcessingStatus.FAILED, metadata=metadata,
            )
        except ProcessingError as exc:
            logger.error(
                "Could not mark document failed | doc=%s error=%s", document_id, exc.message,
            )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def build_document_processor(settings=None, session_factory=None) -> DocumentProcessor:
    """Wire the production collaborators from Settings."""
    if settings is None:
        from docproc.core.config import settings

    return DocumentProcessor(
        documents=SqlDocumentStore(session_factory),
        chunks=SqlChunkStore(session_factory),
        fetcher=HttpFileFetcher.from_settings(settings),
        orchestrator=ExtractionOrchestrator.from_settings(settings),
        embedder=EmbeddingGenerator.from_settings(settings),
        chunk_size=settings.chunk_size,
        chunk_overlap=settings.chunk_overlap,
        ocr_chunk_size=settings.ocr_chunk_size,
        ocr_chunk_overlap=settings.ocr_chunk_overlap,
        min_chunk_chars=settings.min_chunk_chars,
        max_chunks=settings.max_chunks,
        failure_ratio=settings.chunk_failure_ratio,
        progress_every=settings.progress_log_every,
        max_file_size=settings.max_file_size_bytes,
    )


# ---------------------------------------------------------------------------
# Task publisher: thin abstraction over Celery .apply_async()
# Injected into the API routes so it can be mocked in tests.
# ---------------------------------------------------------------------------

class TaskPublisher:
    """
    Sends the document processing task to the Celery broker.
    Import is deferred so the broker connection is not required at module load time.
    """

    async def publish_processing_task(self, document_id: uuid.UUID) -> str:
        """Dispatch process_document in a thread executor; returns the task id."""
        from docproc.workers.tasks import process_document

        loop = asyncio.get_event_loop()
        async_result = await loop.run_in_executor(
            None,
            lambda: process_document.apply_async(
                kwargs={"document_id": str(document_id)},
                countdown=2,
            ),
        )
        logger.info("Processing task published | doc=%s task=%s", document_id, async_result.id)
        return async_result.id
