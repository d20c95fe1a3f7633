"""
Processing Errors  —  Categorized Failures
═══════════════════════════════════════════

Every failure that leaves the pipeline is a ProcessingError carrying:

  category       : ErrorCategory (drives HTTP status and retry decisions)
  message        : raw technical detail (kept for diagnostics)
  user_message   : short human-readable explanation
  status_code    : HTTP status returned by the trigger endpoint
  retryable      : True if the Celery task may retry the whole document

Category table:
  validation          bad id / url / type                   400  terminal
                      (not found 404, already processing 409)
  corruption          malformed file signature              400  terminal
  network             download failure or timeout           500  retryable
  extraction          every strategy exhausted              500  terminal
  compression         stream decode failure                 500  recoverable (next strategy)
  embedding-provider  auth / rate limit / timeout           500  terminal after retry budget
  persistence         store write failure                   500  terminal
  timeout             remote OCR polling exhausted          500  terminal
  internal            anything not recognised               500  terminal

categorize_error() is the single place that maps foreign exceptions
(httpx, SQLAlchemy, zlib, asyncio) onto this table.
"""

from __future__ import annotations

import asyncio
import zlib
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    VALIDATION         = "validation"
    NETWORK            = "network"
    EXTRACTION         = "extraction"
    COMPRESSION        = "compression"
    EMBEDDING_PROVIDER = "embedding-provider"
    PERSISTENCE        = "persistence"
    CORRUPTION         = "corruption"
    TIMEOUT            = "timeout"
    INTERNAL           = "internal"


# ---------------------------------------------------------------------------
# Base error
# ---------------------------------------------------------------------------

class ProcessingError(Exception):
    """Base class for every categorized pipeline failure."""

    category:     ErrorCategory = ErrorCategory.INTERNAL
    status_code:  int           = 500
    retryable:    bool          = False
    user_message: str           = "Document processing failed due to an unexpected error."

    def __init__(
        self,
        message:      str,
        *,
        user_message: str | None           = None,
        category:     ErrorCategory | None = None,
        details:      dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if user_message is not None:
            self.user_message = user_message
        if category is not None:
            self.category = category
        self.details = details or {}
        self.processing_time_ms: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "error":        self.user_message,
            "category":     self.category.value,
            "details":      self.message,
        }


# ---------------------------------------------------------------------------
# Validation / input errors
# ---------------------------------------------------------------------------

class DocumentValidationError(ProcessingError):
    category     = ErrorCategory.VALIDATION
    status_code  = 400
    user_message = "The document request is invalid."


class DocumentNotFound(DocumentValidationError):
    status_code  = 404
    user_message = "Document not found."


class DocumentAlreadyProcessing(DocumentValidationError):
    status_code  = 409
    user_message = "The document is already being processed."


class CorruptionError(ProcessingError):
    category     = ErrorCategory.CORRUPTION
    status_code  = 400
    user_message = "The file appears to be corrupted or is not a valid PDF."


class NetworkError(ProcessingError):
    category     = ErrorCategory.NETWORK
    retryable    = True
    user_message = "The file could not be downloaded. Please try again."


# ---------------------------------------------------------------------------
# Extraction errors
# ---------------------------------------------------------------------------

class CompressionError(ProcessingError):
    category     = ErrorCategory.COMPRESSION
    user_message = "A compressed section of the file could not be decoded."


class NoTextFound(ProcessingError):
    """A single strategy produced nothing usable."""
    category     = ErrorCategory.EXTRACTION
    user_message = "No readable text was found in the document."


class TextTooShort(ProcessingError):
    category     = ErrorCategory.EXTRACTION
    user_message = "The extracted text is too short to be processed."

    def __init__(self, length: int, minimum: int) -> None:
        super().__init__(
            f"Extracted text has {length} characters; minimum is {minimum}",
            details={"length": length, "minimum": minimum},
        )
        self.length  = length
        self.minimum = minimum


class ExtractionExhausted(ProcessingError):
    category     = ErrorCategory.EXTRACTION
    user_message = "Text could not be extracted from the document with any method."


class RemoteOCRError(ProcessingError):
    category     = ErrorCategory.EXTRACTION
    user_message = "The remote OCR service could not process the document."

    def __init__(self, message: str, *, status_code: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.http_status = status_code


class PollingTimeout(ProcessingError):
    category     = ErrorCategory.TIMEOUT
    user_message = "The document took too long to process. Please try again with a smaller file."


class InvalidJobState(ProcessingError):
    category = ErrorCategory.INTERNAL


# ---------------------------------------------------------------------------
# Embedding / persistence errors
# ---------------------------------------------------------------------------

class EmbeddingFailed(ProcessingError):
    category     = ErrorCategory.EMBEDDING_PROVIDER
    user_message = "Embedding generation failed. Please try again later."

    def __init__(self, message: str, *, attempts: int, failure_kind: str = "unknown") -> None:
        super().__init__(
            message,
            details={"attempts": attempts, "failure_kind": failure_kind},
        )
        self.attempts     = attempts
        self.failure_kind = failure_kind


class PersistenceError(ProcessingError):
    category     = ErrorCategory.PERSISTENCE
    user_message = "Processing results could not be saved."


class TooManyChunkFailures(ProcessingError):
    user_message = "Too many chunks failed to process."


# ---------------------------------------------------------------------------
# Categorization
# ---------------------------------------------------------------------------

def categorize_error(exc: BaseException) -> ProcessingError:
    """Map any exception onto a ProcessingError (returned, not raised)."""
    if isinstance(exc, ProcessingError):
        return exc

    import httpx
    from sqlalchemy.exc import SQLAlchemyError

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return ProcessingError(
            str(exc) or "Operation timed out",
            category=ErrorCategory.TIMEOUT,
            user_message="Processing timed out. Please try again with a smaller file.",
        )
    if isinstance(exc, httpx.RequestError):
        return NetworkError(str(exc))
    if isinstance(exc, SQLAlchemyError):
        return PersistenceError(str(exc))
    if isinstance(exc, zlib.error):
        return CompressionError(str(exc))

    return ProcessingError(str(exc) or type(exc).__name__)
