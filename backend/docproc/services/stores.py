"""
Persistence collaborators of the document processor.

  DocumentStore   read one document; move its status; write extraction info
  ChunkStore      insert one chunk; delete every chunk of a document

Both are Protocols so the processor can be driven by test doubles. The
SQLAlchemy implementations open one short transaction per call through
db.session.get_db_session().

Status transitions are guarded in SQL:
  → processing  from any state except processing
  → completed   only from processing
  → failed      only from processing
A guarded update that matches no row is logged and ignored, which keeps the
status monotonic within a run even if two workers race.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, Sequence

from sqlalchemy import and_, delete, func, literal, or_, select, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docproc.core.errors import PersistenceError
from docproc.db.session import get_db_session
from docproc.models.documents import Document, DocumentChunk
from docproc.schemas.documents import ProcessingStatus

logger = logging.getLogger(__name__)

# extraction_method value that asks the beat scanner to reprocess a document
REPROCESS_MARKER = "pending_reprocess"

# metadata key set when the quality sweep queues a document; one sweep per document
REPROCESSED_AT_KEY = "reprocessed_at"

_ALLOWED_FROM: dict[ProcessingStatus, tuple[str, ...]] = {
    ProcessingStatus.PROCESSING: ("pending", "completed", "failed"),
    ProcessingStatus.COMPLETED:  ("processing",),
    ProcessingStatus.FAILED:     ("processing",),
    ProcessingStatus.PENDING:    ("failed", "completed"),
}


@dataclass
class DocumentRecord:
    """The subset of a document row the pipeline reads."""
    id:                 uuid.UUID
    url:                str | None
    file_type:          str
    title:              str
    status:             ProcessingStatus
    metadata:           dict[str, Any] = field(default_factory=dict)
    extraction_method:  str | None     = None
    extraction_quality: float | None   = None

    @classmethod
    def from_model(cls, doc: Document) -> "DocumentRecord":
        return cls(
            id=doc.id,
            url=doc.url,
            file_type=doc.file_type,
            title=doc.title,
            status=ProcessingStatus(doc.status),
            metadata=dict(doc.doc_metadata or {}),
            extraction_method=doc.extraction_method,
            extraction_quality=doc.extraction_quality,
        )


# ---------------------------------------------------------------------------
# Interfaces
# ---------------------------------------------------------------------------

class DocumentStore(Protocol):
    async def get(self, document_id: uuid.UUID) -> DocumentRecord | None: ...

    async def update_status(
        self,
        document_id: uuid.UUID,
        status:      ProcessingStatus,
        *,
        metadata:    dict[str, Any] | None = None,
    ) -> bool: ...

    async def update_extraction_info(
        self,
        document_id: uuid.UUID,
        method:      str,
        quality:     float,
        metadata:    dict[str, Any] | None = None,
    ) -> None: ...


class ChunkStore(Protocol):
    async def insert(
        self,
        document_id: uuid.UUID,
        index:       int,
        content:     str,
        embedding:   Sequence[float],
        metadata:    dict[str, Any],
    ) -> None: ...

    async def delete_for_document(self, document_id: uuid.UUID) -> int: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementations
# ---------------------------------------------------------------------------

def reprocess_candidates_query(quality_below: float, limit: int = 20):
    """
    Completed documents the hourly sweep should re-queue.

    A document flagged with REPROCESS_MARKER is always eligible; the marker
    is replaced by the real method once it runs. A document selected only
    for its low quality is eligible until it carries REPROCESSED_AT_KEY, so
    a deterministic low score is retried once and then left alone.
    """
    never_reprocessed = or_(
        Document.doc_metadata.is_(None),
        ~Document.doc_metadata.has_key(REPROCESSED_AT_KEY),
    )
    return (
        select(Document.id)
        .where(
            Document.status == ProcessingStatus.COMPLETED.value,
            or_(
                Document.extraction_method == REPROCESS_MARKER,
                and_(Document.extraction_quality < quality_below, never_reprocessed),
            ),
        )
        .order_by(Document.updated_at)
        .limit(limit)
    )


class SqlDocumentStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def get(self, document_id: uuid.UUID) -> DocumentRecord | None:
        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(select(Document).where(Document.id == document_id))
                doc = result.scalars().first()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not load document {document_id}: {exc}") from exc
        return DocumentRecord.from_model(doc) if doc else None

    async def update_status(
        self,
        document_id: uuid.UUID,
        status:      ProcessingStatus,
        *,
        metadata:    dict[str, Any] | None = None,
    ) -> bool:
        values: dict[str, Any] = {"status": status.value, "updated_at": func.now()}
        if metadata:
            # JSONB concatenation: keys in `metadata` overwrite existing ones
            values["doc_metadata"] = Document.doc_metadata.op("||")(literal(metadata, JSONB))

        stmt = (
            update(Document)
            .where(
                Document.id == document_id,
                Document.status.in_(_ALLOWED_FROM[status]),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not set status={status.value} on document {document_id}: {exc}"
            ) from exc

        if result.rowcount == 0:
            logger.warning(
                "Status transition ignored | doc=%s target=%s", document_id, status.value,
            )
            return False
        return True

    async def update_extraction_info(
        self,
        document_id: uuid.UUID,
        method:      str,
        quality:     float,
        metadata:    dict[str, Any] | None = None,
    ) -> None:
        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(select(Document).where(Document.id == document_id))
                doc = result.scalars().first()
                if doc is None:
                    raise PersistenceError(f"Document {document_id} disappeared during processing")
                doc.extraction_method = method
                doc.extraction_quality = quality
                if metadata:
                    doc.doc_metadata = {**(doc.doc_metadata or {}), **metadata}
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not store extraction info for document {document_id}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Scans used by the Celery beat tasks
    # ------------------------------------------------------------------

    async def list_stale_pending(self, older_than_minutes: int = 5, limit: int = 50) -> list[uuid.UUID]:
        """Documents left in 'pending' since before the cut-off."""
        stmt = (
            select(Document.id)
            .where(
                Document.status == ProcessingStatus.PENDING.value,
                Document.created_at < func.now() - timedelta(minutes=older_than_minutes),
            )
            .order_by(Document.created_at)
            .limit(limit)
        )
        return await self._scan(stmt, "stale pending documents")

    async def list_reprocess_candidates(self, quality_below: float, limit: int = 20) -> list[uuid.UUID]:
        """Completed documents with a weak extraction or an explicit reprocess flag."""
        return await self._scan(reprocess_candidates_query(quality_below, limit), "reprocess candidates")

    async def mark_reprocess_queued(self, document_id: uuid.UUID) -> None:
        """Stamp reprocessed_at so the quality sweep does not pick the document again."""
        stamp = {REPROCESSED_AT_KEY: datetime.now(timezone.utc).isoformat()}
        stmt = (
            update(Document)
            .where(Document.id == document_id)
            .values(doc_metadata=func.coalesce(Document.doc_metadata, literal({}, JSONB)).op("||")(
                literal(stamp, JSONB)
            ))
            .execution_options(synchronize_session=False)
        )
        try:
            async with get_db_session(self._session_factory) as db:
                await db.execute(stmt)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not mark document {document_id} for reprocessing: {exc}"
            ) from exc

    async def _scan(self, stmt, what: str) -> list[uuid.UUID]:
        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(stmt)
                return list(result.scalars().all())
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Could not list {what}: {exc}") from exc


class SqlChunkStore:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def insert(
        self,
        document_id: uuid.UUID,
        index:       int,
        content:     str,
        embedding:   Sequence[float],
        metadata:    dict[str, Any],
    ) -> None:
        try:
            async with get_db_session(self._session_factory) as db:
                db.add(DocumentChunk(
                    document_id=document_id,
                    section_number=index,
                    content=content,
                    embedding=json.dumps(list(embedding)),
                    chunk_metadata=metadata,
                ))
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not save chunk {index} of document {document_id}: {exc}"
            ) from exc

    async def delete_for_document(self, document_id: uuid.UUID) -> int:
        try:
            async with get_db_session(self._session_factory) as db:
                result = await db.execute(
                    delete(DocumentChunk).where(DocumentChunk.document_id == document_id)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Could not purge chunks of document {document_id}: {exc}"
            ) from exc
        return result.rowcount or 0
