"""
Input validation for the document pipeline.

Fatal checks raise a ProcessingError subclass; soft checks return a list of
warnings that the processor logs and stores with the document.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from docproc.core.errors import CorruptionError, DocumentValidationError
from docproc.processing import pdf_syntax
from docproc.processing.extractor import SUPPORTED_TYPES

logger = logging.getLogger(__name__)

KNOWN_PDF_VERSIONS = frozenset({"1.0", "1.1", "1.2", "1.3", "1.4", "1.5", "1.6", "1.7", "2.0"})

MIN_WORDS          = 3
MIN_UNIQUE_CHARS   = 10


def validate_document_record(url: str | None, file_type: str | None) -> str:
    """
    Check the stored document record before any download.

    Returns:
        the normalized file type ("pdf" | "txt" | "md")
    """
    if not url:
        raise DocumentValidationError(
            "Document has no source URL",
            user_message="The document has no file attached.",
        )

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise DocumentValidationError(
            f"Document URL is not an http(s) URL: {url!r}",
            user_message="The document file location is invalid.",
        )

    normalized = (file_type or "").lower().lstrip(".")
    if normalized not in SUPPORTED_TYPES:
        raise DocumentValidationError(
            f"Unsupported document type: {file_type!r}",
            user_message=f"File type '{file_type}' is not supported. Use PDF, TXT or MD.",
        )
    return normalized


def validate_file_size(data: bytes, max_bytes: int) -> None:
    if not data:
        raise DocumentValidationError(
            "Downloaded file is empty",
            user_message="The document file is empty.",
        )
    if len(data) > max_bytes:
        raise DocumentValidationError(
            f"File has {len(data):,} bytes; limit is {max_bytes:,} bytes",
            user_message=f"File too large. Maximum size is {max_bytes // (1024 * 1024)} MB.",
        )


def validate_pdf_header(data: bytes) -> str | None:
    """
    Raise CorruptionError unless the buffer starts with a PDF signature.

    Returns:
        the declared PDF version, or None when it cannot be read
    """
    if not pdf_syntax.has_pdf_signature(data):
        raise CorruptionError(
            f"Missing %PDF- signature (size={len(data)} head={data[:8]!r})"
        )

    version = pdf_syntax.pdf_version(data)
    if version not in KNOWN_PDF_VERSIONS:
        logger.warning("Unusual PDF version | version=%s", version)
    return version


def text_content_warnings(text: str) -> list[str]:
    warnings: list[str] = []
    if len(text.split()) < MIN_WORDS:
        warnings.append(f"Text has fewer than {MIN_WORDS} words")
    if len(set(text)) < MIN_UNIQUE_CHARS:
        warnings.append(f"Text has fewer than {MIN_UNIQUE_CHARS} distinct characters")
    return warnings
