"""
Extraction Strategies  —  Ordered Table of PDF Text Extractors
═══════════════════════════════════════════════════════════════

Each strategy is a plain value: a name plus one `extract(bytes)` callable
returning StrategyOutput. There is no class hierarchy; the orchestrator
walks a tuple of these values in order.

  1. native-parser          object/stream scan, FlateDecode inflation,
                            Tj / TJ / hex-string operators
  2. library-parser         PyMuPDF text layer, whitespace normalized
  3. stream-decompression   every stream, inflated regardless of filter
  4. heuristic-text         BT…ET blocks and bare (…)Tj, metadata noise removed
  5. raw-text-search        readable runs under utf-8 / latin-1 / ascii / utf-16
  6. remote-ocr             LLMWhisperer job (see processing/ocr.py)

Contract for every strategy:
  - pure function of the input buffer (no I/O except remote-ocr)
  - returns StrategyOutput on success
  - raises (NoTextFound, CompressionError, anything else) when it has
    nothing usable; the orchestrator logs and moves on

Strategies 1–5 are blocking CPU work and run in the default executor.
The remote OCR strategy is a coroutine and is awaited directly.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from docproc.core.errors import CompressionError, NoTextFound
from docproc.processing import pdf_syntax

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

NATIVE_MIN_CHARS       = 5
LIBRARY_MIN_CHARS      = 10
LIBRARY_MAX_PAGES      = 100
STREAM_MIN_CHARS       = 10
HEURISTIC_MIN_CHARS    = 50
HEURISTIC_FALLBACK_BELOW = 100   # chars; below this, scan every (...) literal
RAW_SEARCH_MIN_CHARS   = 20
RAW_SEARCH_ENCODINGS   = ("utf-8", "latin-1", "ascii", "utf-16")


# ---------------------------------------------------------------------------
# Strategy values
# ---------------------------------------------------------------------------

@dataclass
class StrategyOutput:
    """
    text     : raw extracted text (normalized later by the orchestrator)
    metadata : strategy-specific diagnostics (counts, encoding, pages, ...)
    """
    text:     str
    metadata: dict[str, Any] = field(default_factory=dict)


SyncExtract  = Callable[[bytes], StrategyOutput]
AsyncExtract = Callable[[bytes], Awaitable[StrategyOutput]]


@dataclass(frozen=True)
class ExtractionStrategy:
    name:        str
    extract:     Union[SyncExtract, AsyncExtract]
    in_executor: bool = True    # False for coroutine strategies
    remote:      bool = False   # True when the text came from remote OCR


# ---------------------------------------------------------------------------
# Strategy 1: native structural parser
# ---------------------------------------------------------------------------

def extract_native(data: bytes) -> StrategyOutput:
    pieces: list[str] = []
    objects_processed = 0
    inflate_failures = 0

    for obj in pdf_syntax.iter_objects(data):
        if obj.stream is None or not obj.may_hold_text:
            continue
        objects_processed += 1

        payload = obj.stream
        if obj.is_flate:
            try:
                payload = pdf_syntax.inflate(payload)
            except CompressionError:
                inflate_failures += 1
                continue

        pieces.extend(pdf_syntax.extract_text_operators(payload.decode("latin-1")))

    text = " ".join(pieces)
    if len(text) < NATIVE_MIN_CHARS:
        raise NoTextFound(f"native parser found no text in {objects_processed} stream objects")

    return StrategyOutput(
        text=text,
        metadata={
            "objects_processed": objects_processed,
            "inflate_failures":  inflate_failures,
            "pages":             pdf_syntax.count_pages(data),
        },
    )


# ---------------------------------------------------------------------------
# Strategy 2: library-assisted parser (PyMuPDF)
# ---------------------------------------------------------------------------

def extract_with_library(data: bytes) -> StrategyOutput:
    import fitz  # PyMuPDF; imported here to avoid module-level import cost

    # No TEXT_PRESERVE_WHITESPACE: runs of spaces collapse inside the library.
    flags = fitz.TEXT_PRESERVE_LIGATURES | fitz.TEXT_MEDIABOX_CLIP | fitz.TEXT_DEHYPHENATE

    page_texts: list[str] = []
    with fitz.open(stream=data, filetype="pdf") as doc:
        page_count = doc.page_count
        info = {
            key: value
            for key, value in (doc.metadata or {}).items()
            if key in ("title", "author", "producer", "creator") and value
        }
        for page_number, page in enumerate(doc):
            if page_number >= LIBRARY_MAX_PAGES:
                break
            raw = page.get_text("text", flags=flags) or ""
            page_texts.append(re.sub(r"[ \t]+", " ", raw).strip())

    text = "\n\n".join(t for t in page_texts if t)
    if len(text) < LIBRARY_MIN_CHARS:
        raise NoTextFound(f"PyMuPDF returned {len(text)} characters for {page_count} pages")

    return StrategyOutput(text=text, metadata={"pages": page_count, "info": info})


# ---------------------------------------------------------------------------
# Strategy 3: indiscriminate stream decompression
# ---------------------------------------------------------------------------

def extract_from_streams(data: bytes) -> StrategyOutput:
    pieces: list[str] = []
    total = processed = inflated = 0

    for payload in pdf_syntax.iter_raw_streams(data):
        total += 1
        found: list[str] = []
        try:
            found = pdf_syntax.extract_text_operators(
                pdf_syntax.inflate(payload).decode("latin-1")
            )
        except CompressionError:
            pass   # not compressed (or damaged)

        if found:
            inflated += 1
        else:
            # raw-deflate fallback can "succeed" on plain bytes; scan them as-is
            found = pdf_syntax.extract_text_operators(payload.decode("latin-1"))

        if found:
            processed += 1
            pieces.extend(found)

    text = " ".join(pieces)
    if len(text) < STREAM_MIN_CHARS:
        raise NoTextFound(f"no text operators in {total} streams")

    return StrategyOutput(
        text=text,
        metadata={
            "streams_processed":  processed,
            "streams_inflated":   inflated,
            "total_streams":      total,
        },
    )


# ---------------------------------------------------------------------------
# Strategy 4: clean / heuristic extraction
# ---------------------------------------------------------------------------

_BT_BLOCK_RE     = re.compile(r"BT\b(.*?)\bET", re.S)
_BARE_TJ_RE      = re.compile(r"\(([^)]+)\)\s*Tj")
_ANY_LITERAL_RE  = re.compile(r"\(([^)]{3,})\)")
_LETTER_RE       = re.compile(r"[A-Za-zÀ-ÿ]")
_CLEAN_CHARS_RE  = re.compile(r"[^\w\s.,!?;:'\"()\-–—À-ÿ]")

_METADATA_PATTERNS = tuple(re.compile(p) for p in (
    r"^(Type|Font|Creator|Producer|MediaBox|Resources|BaseFont)\b",
    r"^PDF-\d+(\.\d+)?$",                # header token alone
    r"^(obj|endobj|stream|endstream|xref|trailer)$",
    r"^[A-Z]{2,}[a-z]+[A-Z]",            # CamelCase font names (TTArialBold...)
    r"^\d+\s+\d+\s+R$",                  # object references
    r"^/[A-Z]",                          # name objects
    r"FontDescriptor|CIDFont|Widths|Encoding",
    r"^[a-f0-9]{8,}$",                   # hashes / ids
    r"^(BT|ET|Tj|TJ|Tf|Tm)$",            # operators
    r"^D:\d{8}",                         # PDF dates
))


def is_real_text(candidate: str) -> bool:
    candidate = candidate.strip()
    if len(candidate) <= 2:
        return False
    letters = len(_LETTER_RE.findall(candidate))
    return letters / len(candidate) > 0.5


def is_pdf_metadata(candidate: str) -> bool:
    candidate = candidate.strip()
    return any(p.search(candidate) for p in _METADATA_PATTERNS)


def _keep(candidate: str) -> bool:
    return is_real_text(candidate) and not is_pdf_metadata(candidate)


def extract_heuristic(data: bytes) -> StrategyOutput:
    content = data.decode("latin-1")
    pieces: list[str] = []

    blocks = list(_BT_BLOCK_RE.finditer(content))
    for block in blocks:
        for piece in pdf_syntax.extract_text_operators(block.group(1)):
            if _keep(piece):
                pieces.append(piece)

    # Bare (...)Tj occurrences outside any BT…ET block
    outside = _BT_BLOCK_RE.sub(" ", content)
    for match in _BARE_TJ_RE.finditer(outside):
        piece = pdf_syntax.decode_pdf_string(match.group(1))
        if _keep(piece):
            pieces.append(piece)

    used_fallback = False
    if len(" ".join(pieces)) < HEURISTIC_FALLBACK_BELOW:
        used_fallback = True
        for match in _ANY_LITERAL_RE.finditer(content):
            piece = pdf_syntax.decode_pdf_string(match.group(1))
            if _keep(piece) and piece not in pieces:
                pieces.append(piece)

    text = _CLEAN_CHARS_RE.sub("", " ".join(pieces))
    text = re.sub(r"\s+", " ", text).strip()
    if len(text) < HEURISTIC_MIN_CHARS:
        raise NoTextFound(f"heuristic scan kept only {len(text)} characters")

    return StrategyOutput(
        text=text,
        metadata={
            "text_blocks":   len(blocks),
            "pieces":        len(pieces),
            "used_fallback": used_fallback,
        },
    )


# ---------------------------------------------------------------------------
# Strategy 5: raw text search
# ---------------------------------------------------------------------------

_READABLE_RUN_RE = re.compile(r"[A-Za-zÀ-ÿĀ-ſ0-9 .,;:!?'\"()\-]{4,}")
_WORD_RE         = re.compile(r"[A-Za-zÀ-ÿĀ-ſ]{3,}")
_PDF_HEADER_RE   = re.compile(r"^PDF-\d+(\.\d+)?\s*")


def _readable_runs(decoded: str) -> list[str]:
    runs: list[str] = []
    for match in _READABLE_RUN_RE.finditer(decoded):
        # the %PDF-x.y header can share a run with the first readable text
        run = _PDF_HEADER_RE.sub("", match.group(0).strip())
        if _WORD_RE.search(run) and not is_pdf_metadata(run):
            runs.append(run)
    return runs


def extract_raw_text(data: bytes) -> StrategyOutput:
    best_runs: list[str] = []
    best_encoding = ""
    best_length = 0

    for encoding in RAW_SEARCH_ENCODINGS:
        decoded = data.decode(encoding, errors="ignore")
        runs = _readable_runs(decoded)
        length = sum(len(r) for r in runs)
        if length > best_length:
            best_runs, best_encoding, best_length = runs, encoding, length

    text = " ".join(best_runs)
    if len(text) < RAW_SEARCH_MIN_CHARS:
        raise NoTextFound(f"raw search found {len(text)} readable characters")

    return StrategyOutput(
        text=text,
        metadata={"encoding": best_encoding, "runs_found": len(best_runs)},
    )


# ---------------------------------------------------------------------------
# Strategy 6: remote OCR
# ---------------------------------------------------------------------------

def remote_ocr_strategy(client) -> ExtractionStrategy:
    """
    Wrap a WhisperClient as the terminal strategy of the chain.
    `client` is a processing.ocr.WhisperClient (not imported here to keep
    httpx out of the pure strategy module).
    """
    async def _extract(data: bytes) -> StrategyOutput:
        result = await client.whisper(data)
        return StrategyOutput(
            text=result.text,
            metadata={
                **result.metadata,
                "whisper_hash": result.whisper_hash,
                "pages":        result.pages,
            },
        )

    return ExtractionStrategy(
        name="remote-ocr",
        extract=_extract,
        in_executor=False,
        remote=True,
    )


LOCAL_STRATEGIES: tuple[ExtractionStrategy, ...] = (
    ExtractionStrategy("native-parser",        extract_native),
    ExtractionStrategy("library-parser",       extract_with_library),
    ExtractionStrategy("stream-decompression", extract_from_streams),
    ExtractionStrategy("heuristic-text",       extract_heuristic),
    ExtractionStrategy("raw-text-search",      extract_raw_text),
)


def build_strategy_chain(ocr_client=None) -> tuple[ExtractionStrategy, ...]:
    """Local strategies in priority order, remote OCR last when available."""
    if ocr_client is None:
        return LOCAL_STRATEGIES
    return LOCAL_STRATEGIES + (remote_ocr_strategy(ocr_client),)
