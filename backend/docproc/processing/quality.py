"""
Text Quality Scoring
════════════════════

Two views over the same extracted text:

  score_text_quality(text) -> float in [0, 1]
    Cheap heuristic used by the extraction orchestrator to rank candidate
    outputs of the different strategies.

      50%   ratio of valid characters (letters incl. accented, digits,
            common punctuation, whitespace) to total length
      30%   ratio of whitespace tokens shaped like real words
      15%   word density inside a plausible band
       5%   character diversity (≥ 10 distinct characters)
       5%   substantial length (≥ 200 characters)
      -15%  very short text (< 50 characters)
      -10%  very sparse text (almost no word breaks)

  assess_quality(text) -> QualityReport
    Richer report stored with the document once processing completes:
    raw metrics, warnings, recommendations and an overall 0–100 score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Weights and bands
# ---------------------------------------------------------------------------

VALID_CHAR_WEIGHT  = 0.50
VALID_WORD_WEIGHT  = 0.30
DENSITY_BONUS      = 0.15
DIVERSITY_BONUS    = 0.05
LENGTH_BONUS       = 0.05
SHORT_PENALTY      = 0.15
SPARSE_PENALTY     = 0.10

DENSITY_BAND       = (0.08, 0.30)   # words per character
SPARSE_DENSITY     = 0.02
MIN_DIVERSE_CHARS  = 10
SUBSTANTIAL_LENGTH = 200
SHORT_LENGTH       = 50

_VALID_CHAR_RE = re.compile(r"[A-Za-z0-9À-ɏ\s.,;:!?'\"()\[\]\-–—/%&@]")
_VALID_WORD_RE = re.compile(
    r"^[(\"'\[]?[A-Za-zÀ-ɏ][A-Za-zÀ-ɏ'\-]*[.,;:!?)\"'\]]*$"
    r"|^\d+([.,]\d+)*[.,;:%)]*$"
)
_SPECIAL_CHAR_RE = re.compile(r"[^A-Za-z0-9À-ɏ\s]")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def score_text_quality(text: str) -> float:
    """Heuristic readability score of extracted text, always in [0, 1]."""
    if not text or not text.strip():
        return 0.0

    total  = len(text)
    tokens = text.split()

    valid_chars = len(_VALID_CHAR_RE.findall(text))
    score = VALID_CHAR_WEIGHT * (valid_chars / total)

    if tokens:
        valid_words = sum(1 for t in tokens if _VALID_WORD_RE.match(t))
        score += VALID_WORD_WEIGHT * (valid_words / len(tokens))

    density = len(tokens) / total
    low, high = DENSITY_BAND
    if low <= density <= high:
        score += DENSITY_BONUS

    if len(set(text)) >= MIN_DIVERSE_CHARS:
        score += DIVERSITY_BONUS
    if total >= SUBSTANTIAL_LENGTH:
        score += LENGTH_BONUS

    if total < SHORT_LENGTH:
        score -= SHORT_PENALTY
    if density < SPARSE_DENSITY:
        score -= SPARSE_PENALTY

    return round(max(0.0, min(1.0, score)), 4)


# ---------------------------------------------------------------------------
# Quality report
# ---------------------------------------------------------------------------

@dataclass
class QualityReport:
    """
    Document-level quality assessment.

    metrics         : raw measurements (see assess_quality)
    warnings        : problems that likely hurt retrieval quality
    recommendations : suggested remediation for each warning
    overall_score   : 0–100 summary (100 = clean, readable prose)
    """
    metrics:         dict[str, float]
    warnings:        list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    overall_score:   int       = 0

    def to_dict(self) -> dict:
        return {
            "metrics":         self.metrics,
            "warnings":        self.warnings,
            "recommendations": self.recommendations,
            "overall_score":   self.overall_score,
        }


def assess_quality(text: str) -> QualityReport:
    words = text.split()
    word_count = len(words)
    text_length = len(text)

    avg_word_length = (
        sum(len(w) for w in words) / word_count if word_count else 0.0
    )
    diversity = len(set(text.lower())) / text_length if text_length else 0.0
    special_ratio = (
        len(_SPECIAL_CHAR_RE.findall(text)) / text_length if text_length else 0.0
    )

    sentences = [s for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]
    words_per_sentence = word_count / len(sentences) if sentences else float(word_count)
    # Flesch-style ease, bounded to 0–100; characters stand in for syllables.
    readability = 206.835 - 1.015 * words_per_sentence - 84.6 * (avg_word_length / 3.0)
    readability = max(0.0, min(100.0, readability))

    report = QualityReport(
        metrics={
            "text_length":         text_length,
            "word_count":          word_count,
            "avg_word_length":     round(avg_word_length, 2),
            "character_diversity": round(diversity, 4),
            "special_char_ratio":  round(special_ratio, 4),
            "readability_score":   round(readability, 1),
        },
    )

    score = 100
    if text_length < 100:
        report.warnings.append("Very short text extracted")
        report.recommendations.append("Check whether the document is scanned and enable remote OCR")
        score -= 30
    if special_ratio > 0.3:
        report.warnings.append("High ratio of special characters")
        report.recommendations.append("The PDF may use custom font encodings; try another extraction method")
        score -= 25
    if word_count and (avg_word_length < 2 or avg_word_length > 15):
        report.warnings.append("Unusual average word length")
        report.recommendations.append("Words may be split or merged; review the source layout")
        score -= 15
    if text_length and diversity < 0.01:
        report.warnings.append("Low character diversity")
        report.recommendations.append("Text may be repetitive filler or an encoding artifact")
        score -= 20
    if readability < 10:
        report.warnings.append("Text is hard to read")
        score -= 10

    report.overall_score = max(0, score)
    return report
