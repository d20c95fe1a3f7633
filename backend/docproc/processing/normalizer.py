"""
Text normalization applied to every accepted extraction candidate.

Steps (order matters: escapes are repaired before the allow-list drops
stray backslashes):
  1. Repair backslash-escaped artifacts left by PDF string literals
  2. Strip control characters
  3. Unify line endings; tabs become spaces
  4. Drop characters outside the allow-list
  5. Collapse horizontal whitespace; at most two consecutive newlines
  6. Fix spacing around punctuation
  7. Enforce the minimum length (TextTooShort)
"""

from __future__ import annotations

import re
import unicodedata

from docproc.core.errors import TextTooShort

DEFAULT_MIN_LENGTH = 10

_ESCAPES: tuple[tuple[str, str], ...] = (
    ("\\n", "\n"),
    ("\\r", "\n"),
    ("\\t", " "),
    ("\\(", "("),
    ("\\)", ")"),
    ("\\\\", "\\"),
)

_CONTROL_RE     = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F-\x9F]")
_ZERO_WIDTH_RE  = re.compile(r"[\u200b\u200c\u200d\ufeff]")
_DISALLOWED_RE  = re.compile(
    r"[^\w\s.,;:!?'\"()\[\]{}<>\-–—/\\%&@#*+=$€£°§~“”‘’…•]"
)
_HSPACE_RE      = re.compile(r"[ \u00a0]{2,}")
_SPACE_NL_RE    = re.compile(r" *\n *")
_NEWLINES_RE    = re.compile(r"\n{3,}")
_SPACE_BEFORE_PUNCT_RE = re.compile(r" +([.,;:!?])")
_MISSING_SPACE_RE      = re.compile(r"([.!?])(?=[A-ZÀ-Þ][a-zß-ÿ])")


def normalize_text(text: str, min_length: int = DEFAULT_MIN_LENGTH) -> str:
    """
    Clean raw extracted text.

    Raises:
        TextTooShort if fewer than min_length characters survive.
    """
    for escaped, replacement in _ESCAPES:
        text = text.replace(escaped, replacement)

    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\f", "\n")
    text = text.replace("\t", " ")
    text = _CONTROL_RE.sub("", text)
    text = _ZERO_WIDTH_RE.sub("", text)
    text = _DISALLOWED_RE.sub("", text)

    text = _HSPACE_RE.sub(" ", text)
    text = _SPACE_NL_RE.sub("\n", text)
    text = _NEWLINES_RE.sub("\n\n", text)

    text = _SPACE_BEFORE_PUNCT_RE.sub(r"\1", text)
    text = _MISSING_SPACE_RE.sub(r"\1 ", text)

    text = text.strip()
    if len(text) < min_length:
        raise TextTooShort(len(text), min_length)
    return text
