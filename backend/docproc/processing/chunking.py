"""
Sliding-Window Chunker  —  Overlapping Windows at Natural Boundaries
════════════════════════════════════════════════════════════════════

Each window is at most `chunk_size` characters. Before cutting, the window
end is pulled back to the best natural boundary available:

    window:  start ─────────────────────────────────────────── start+size
                                 │ 50% │        │ 70% │    │ 80% │
    1. last paragraph break "\n\n"  after start + 0.5·size   → end after it
    2. else last sentence end ". "  after start + 0.7·size   → end after it
    3. else last space              after start + 0.8·size   → end after it
    4. else hard cut at start + size

The next window starts at `end − overlap`, clamped to at least
`start + 1` so the loop always terminates.

Windows whose trimmed content is shorter than `min_chunk_chars` are
dropped; kept chunks are numbered 0..n-1 without gaps. `max_chunks` is a
safety bound against pathological input.

Offsets (start_index / end_index) refer to the preprocessed text and
describe the window before trimming, so consecutive windows overlap and
together cover the whole text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE   = 800
DEFAULT_OVERLAP      = 150
DEFAULT_MIN_CHARS    = 20
DEFAULT_MAX_CHUNKS   = 500

PARAGRAPH_FLOOR = 0.5   # share of the window a paragraph break must clear
SENTENCE_FLOOR  = 0.7
WORD_FLOOR      = 0.8

_EXCESS_NEWLINES_RE = re.compile(r"\n{3,}")


@dataclass
class TextChunk:
    """
    One chunk of document text.

    index       : 0-based position, contiguous across kept chunks
    content     : trimmed window text
    start_index : window start offset in the preprocessed text
    end_index   : window end offset (exclusive)
    """
    index:       int
    content:     str
    start_index: int
    end_index:   int
    created_at:  datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source:      str      = "document"

    @property
    def chunk_size(self) -> int:
        return len(self.content)

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    @property
    def metadata(self) -> dict:
        return {
            "start_index": self.start_index,
            "end_index":   self.end_index,
            "chunk_size":  self.chunk_size,
            "word_count":  self.word_count,
            "created_at":  self.created_at.isoformat(),
            "source":      self.source,
        }


def preprocess(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _EXCESS_NEWLINES_RE.sub("\n\n", text).strip()


def _find_break(text: str, start: int, end: int, size: int) -> int:
    """Pull `end` back to the best natural boundary inside [start, end)."""
    paragraph = text.rfind("\n\n", start, end)
    if paragraph > start + size * PARAGRAPH_FLOOR:
        return paragraph + 2

    sentence = text.rfind(". ", start, end)
    if sentence > start + size * SENTENCE_FLOOR:
        return sentence + 2

    space = text.rfind(" ", start, end)
    if space > start + size * WORD_FLOOR:
        return space + 1

    return end


def chunk_text(
    text:            str,
    chunk_size:      int = DEFAULT_CHUNK_SIZE,
    overlap:         int = DEFAULT_OVERLAP,
    *,
    min_chunk_chars: int = DEFAULT_MIN_CHARS,
    max_chunks:      int = DEFAULT_MAX_CHUNKS,
    source:          str = "document",
) -> list[TextChunk]:
    """
    Split text into overlapping chunks.

    Raises:
        ValueError for a non-positive size, or an overlap that is negative or
        not smaller than half the size.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")
    # a paragraph break may end a window at PARAGRAPH_FLOOR; the next start must still advance
    if overlap >= chunk_size * PARAGRAPH_FLOOR:
        raise ValueError(
            f"overlap must be smaller than {PARAGRAPH_FLOOR:.0%} of chunk_size "
            f"(got overlap={overlap}, chunk_size={chunk_size})"
        )

    text = preprocess(text)
    length = len(text)
    chunks: list[TextChunk] = []
    start = 0

    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            end = _find_break(text, start, end, chunk_size)

        content = text[start:end].strip()
        if len(content) >= min_chunk_chars:
            chunks.append(TextChunk(
                index=len(chunks),
                content=content,
                start_index=start,
                end_index=end,
                source=source,
            ))
            if len(chunks) >= max_chunks:
                if end < length:
                    logger.warning(
                        "Chunk cap reached | max_chunks=%d covered=%d/%d chars",
                        max_chunks, end, length,
                    )
                break

        if end >= length:
            break
        start = max(end - overlap, start + 1)

    logger.debug(
        "Chunked | chars=%d chunks=%d size=%d overlap=%d",
        length, len(chunks), chunk_size, overlap,
    )
    return chunks
