"""
Low-level PDF syntax helpers shared by the in-process extraction strategies.

Everything here works on raw bytes with regular expressions; no PDF
library is involved. Byte buffers are decoded as latin-1 wherever text
operators are scanned, which maps every byte 1:1 onto a code point.
"""

from __future__ import annotations

import re
import zlib
from dataclasses import dataclass
from typing import Iterator

from docproc.core.errors import CompressionError

PDF_SIGNATURE = b"%PDF-"

_OBJECT_RE = re.compile(rb"(\d+)\s+(\d+)\s+obj\b(.*?)\bendobj", re.S)
_STREAM_RE = re.compile(rb"stream\r?\n(.*?)\r?\n?endstream", re.S)
_PAGE_RE   = re.compile(rb"/Type\s*/Page(?![a-zA-Z])")

# Text-showing operators inside content streams
_TJ_STRING_RE = re.compile(r"\(((?:[^\\()]|\\.)*?)\)\s*(?:Tj|'|\")")
_TJ_ARRAY_RE  = re.compile(r"\[((?:\((?:[^\\()]|\\.)*\)|[^\[\]()])*)\]\s*TJ")
_HEX_TEXT_RE  = re.compile(r"<([0-9A-Fa-f\s]+)>\s*(?:Tj|TJ)")
_ARRAY_PART_RE = re.compile(r"\(((?:[^\\()]|\\.)*?)\)|(-?\d+(?:\.\d+)?)")

# Kerning offsets (thousandths of an em) wider than this read as a word gap
TJ_WORD_GAP = -200

_ESCAPE_MAP = {
    "n": "\n", "r": "\r", "t": "\t", "b": "\b", "f": "\f",
    "(": "(", ")": ")", "\\": "\\",
}
_ESCAPE_RE = re.compile(r"\\([0-7]{1,3}|\r\n|.)", re.S)

# Dictionary markers for streams that never hold page text
_NON_TEXT_MARKERS = (b"/Image", b"/FontFile", b"/Length1", b"/ICCBased", b"/Metadata", b"/XRef")


@dataclass
class PdfObject:
    number:     int
    generation: int
    dictionary: bytes          # everything before the "stream" keyword
    stream:     bytes | None   # raw (possibly compressed) stream payload

    @property
    def is_flate(self) -> bool:
        return b"/FlateDecode" in self.dictionary or b"/Fl " in self.dictionary

    @property
    def may_hold_text(self) -> bool:
        return not any(marker in self.dictionary for marker in _NON_TEXT_MARKERS)


# ---------------------------------------------------------------------------
# Structure scanning
# ---------------------------------------------------------------------------

def has_pdf_signature(data: bytes) -> bool:
    return len(data) >= 8 and data.startswith(PDF_SIGNATURE)


def pdf_version(data: bytes) -> str | None:
    match = re.match(rb"%PDF-(\d+\.\d+)", data[:16])
    return match.group(1).decode("ascii") if match else None


def iter_objects(data: bytes) -> Iterator[PdfObject]:
    """Yield indirect objects in file order."""
    for match in _OBJECT_RE.finditer(data):
        body = match.group(3)
        stream_match = _STREAM_RE.search(body)
        if stream_match:
            dictionary = body[: stream_match.start()]
            stream = stream_match.group(1)
        else:
            dictionary, stream = body, None
        yield PdfObject(
            number=int(match.group(1)),
            generation=int(match.group(2)),
            dictionary=dictionary,
            stream=stream,
        )


def iter_raw_streams(data: bytes) -> Iterator[bytes]:
    """Yield every stream payload in the buffer, ignoring object structure."""
    for match in _STREAM_RE.finditer(data):
        yield match.group(1)


def count_pages(data: bytes) -> int:
    return len(_PAGE_RE.findall(data))


# ---------------------------------------------------------------------------
# Decompression
# ---------------------------------------------------------------------------

def inflate(payload: bytes) -> bytes:
    """
    Decompress a FlateDecode payload.

    Falls back to a streaming decompressor so truncated streams still give
    back whatever decoded before the damage.

    Raises:
        CompressionError if nothing could be decoded.
    """
    try:
        return zlib.decompress(payload)
    except zlib.error as exc:
        first_error = exc

    for wbits in (zlib.MAX_WBITS, -zlib.MAX_WBITS):
        decompressor = zlib.decompressobj(wbits)
        try:
            partial = decompressor.decompress(payload)
        except zlib.error:
            continue
        if partial:
            return partial

    raise CompressionError(f"Stream could not be inflated: {first_error}")


# ---------------------------------------------------------------------------
# String decoding
# ---------------------------------------------------------------------------

def _resolve_escape(match: re.Match) -> str:
    token = match.group(1)
    if token[0] in "01234567":
        return chr(int(token, 8) & 0xFF)
    if token in ("\r\n", "\n", "\r"):   # line continuation
        return ""
    return _ESCAPE_MAP.get(token, token)


def decode_pdf_string(raw: str) -> str:
    """Resolve escape sequences inside a PDF literal string."""
    return _ESCAPE_RE.sub(_resolve_escape, raw)


def decode_hex_string(raw: str) -> str:
    digits = re.sub(r"\s+", "", raw)
    if len(digits) % 2:
        digits += "0"
    data = bytes.fromhex(digits)
    if data.startswith(b"\xfe\xff"):
        return data[2:].decode("utf-16-be", errors="ignore")
    return data.decode("latin-1")


def _join_tj_array(inner: str) -> str:
    parts: list[str] = []
    for literal, offset in _ARRAY_PART_RE.findall(inner):
        if offset:
            if float(offset) < TJ_WORD_GAP:
                parts.append(" ")
        else:
            parts.append(decode_pdf_string(literal))
    return "".join(parts)


def extract_text_operators(content: str, min_piece_length: int = 3) -> list[str]:
    """
    Collect the arguments of Tj / TJ / ' / " operators in a content stream.

    Pieces shorter than min_piece_length characters (after stripping) are
    dropped: they are mostly glyph ids and spacing artifacts.
    """
    found: list[tuple[int, str]] = []

    for match in _TJ_STRING_RE.finditer(content):
        found.append((match.start(), decode_pdf_string(match.group(1))))
    for match in _TJ_ARRAY_RE.finditer(content):
        found.append((match.start(), _join_tj_array(match.group(1))))
    for match in _HEX_TEXT_RE.finditer(content):
        found.append((match.start(), decode_hex_string(match.group(1))))

    found.sort(key=lambda item: item[0])
    return [
        piece.strip()
        for _, piece in found
        if len(piece.strip()) >= min_piece_length
    ]
