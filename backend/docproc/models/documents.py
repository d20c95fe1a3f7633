"""
SQLAlchemy ORM Models — Documents & Document Chunks

Mapped classes (2.x style) for full async support.

Ownership:
  documents          created by the upload flow; the pipeline only moves
                     `status` and writes extraction info / metadata
  document_sections  written exclusively by the pipeline; deleted in bulk
                     and re-inserted on every processing run
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: documents
# ---------------------------------------------------------------------------

class Document(Base):
    """
    One uploaded file.

    State machine (status_processing column):
        pending    — uploaded, processing not yet started
        processing — pipeline run in progress
        completed  — chunks and embeddings persisted
        failed     — terminal pipeline error (see metadata.error)
    """

    __tablename__ = "documents"
    __table_args__ = (
        CheckConstraint(
            "status_processing IN ('pending', 'processing', 'completed', 'failed')",
            name="documents_status_check",
        ),
        Index("idx_documents_status", "status_processing"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )

    title: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default="")
    url: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Public or signed URL of the stored file",
    )
    file_type: Mapped[str] = mapped_column(
        "type",                     # column name stays 'type'
        Text,
        nullable=False,
        comment="Declared type: pdf | txt | md",
    )

    status: Mapped[str] = mapped_column(
        "status_processing",
        Text,
        nullable=False,
        default="pending",
        server_default="pending",
    )

    extraction_method: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    extraction_quality: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment="Heuristic score of the winning extraction, 0–1",
    )

    doc_metadata: Mapped[dict] = mapped_column(
        "metadata",                 # PostgreSQL column name stays 'metadata'
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return (
            f"<Document id={self.id} type={self.file_type} "
            f"status={self.status} title={self.title!r}>"
        )


# ---------------------------------------------------------------------------
# Chunk model: document_sections
# ---------------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One embedded chunk of a Document.
    section_number is the chunk index: unique per document, contiguous from 0.
    """

    __tablename__ = "document_sections"
    __table_args__ = (
        UniqueConstraint("document_id", "section_number", name="uq_document_sections_position"),
        Index("idx_document_sections_document_id", "document_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=func.gen_random_uuid(),
    )
    document_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("documents.id", ondelete="CASCADE"),
        nullable=False,
    )
    section_number: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str]        = mapped_column(Text, nullable=False)
    embedding: Mapped[str]      = mapped_column(
        Text,
        nullable=False,
        comment="JSON-serialized float vector",
    )
    chunk_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<DocumentChunk document={self.document_id} section={self.section_number}>"
