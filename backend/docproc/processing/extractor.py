"""
Text Extraction Orchestrator
════════════════════════════

Turns raw file bytes plus a declared type into one normalized text.

  txt / md  → decode (utf-8, latin-1 fallback) → normalize → done
  pdf       → signature check → strategy cascade

Strategy cascade (fixed order, sequential, see processing/strategies.py):

  ┌─────────────────────────────────────────────────────────────────┐
  │  for strategy in chain:                                         │
  │      output  = strategy.extract(bytes)     (errors → log, next) │
  │      quality = score_text_quality(output.text)                  │
  │      text    = normalize_text(output.text) (too short → next)   │
  │      quality ≥ high_threshold  → accept immediately ✓           │
  │      quality > best so far     → keep as best                   │
  │                                                                 │
  │  best.quality ≥ min_threshold  → accept best ✓                  │
  │  otherwise                     → ExtractionExhausted(last error)│
  └─────────────────────────────────────────────────────────────────┘

OCR modes (settings.ocr_mode):
  fallback  remote OCR is the last link of the chain (default)
  primary   remote OCR only; its errors surface unchanged
  disabled  remote OCR never attempted (also implied by a missing API key)

This module is the only place that knows about the cascade. The document
processor only sees ExtractionResult.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from docproc.core.errors import (
    CorruptionError,
    DocumentValidationError,
    ExtractionExhausted,
    ProcessingError,
)
from docproc.processing import pdf_syntax
from docproc.processing.normalizer import normalize_text
from docproc.processing.quality import score_text_quality
from docproc.processing.strategies import (
    ExtractionStrategy,
    StrategyOutput,
    build_strategy_chain,
    remote_ocr_strategy,
)

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = frozenset({"pdf", "txt", "md"})

PLAIN_TEXT_METHOD = "plain-text"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class StrategyAttempt:
    """One line of the fallback trail, kept for diagnostics."""
    strategy: str
    quality:  float | None = None
    chars:    int          = 0
    error:    str | None   = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy,
            "quality":  self.quality,
            "chars":    self.chars,
            "error":    self.error,
        }


@dataclass
class ExtractionResult:
    """
    Winning extraction candidate. Never persisted as such.

    text         : normalized text handed to the chunker
    method       : name of the strategy that produced it
    quality      : heuristic score in [0, 1]
    metadata     : the strategy's own diagnostics
    attempts     : ordered fallback trail (one entry per strategy tried)
    elapsed_ms   : wall time of the whole cascade
    """
    text:       str
    method:     str
    quality:    float
    metadata:   dict[str, Any]        = field(default_factory=dict)
    attempts:   list[StrategyAttempt] = field(default_factory=list)
    elapsed_ms: float                 = 0.0
    ocr_used:   bool                  = False

    @property
    def pages(self) -> int:
        return int(self.metadata.get("pages") or 0)

    @property
    def whisper_hash(self) -> str | None:
        return self.metadata.get("whisper_hash")


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class ExtractionOrchestrator:
    """
    Constructor args:
        strategies      : ordered chain; defaults to the local strategies
        ocr_client      : WhisperClient used by the "primary" OCR mode
        ocr_mode        : "fallback" | "primary" | "disabled"
        high_threshold  : quality that short-circuits the cascade
        min_threshold   : floor for accepting the best candidate
        min_text_length : normalizer minimum

    Usage:
        orchestrator = ExtractionOrchestrator.from_settings(settings)
        result = await orchestrator.extract(data, "pdf")
    """

    def __init__(
        self,
        strategies:      Sequence[ExtractionStrategy] | None = None,
        *,
        ocr_client=None,
        ocr_mode:        str   = "fallback",
        high_threshold:  float = 0.7,
        min_threshold:   float = 0.3,
        min_text_length: int   = 10,
    ) -> None:
        if not 0.0 <= min_threshold <= high_threshold <= 1.0:
            raise ValueError("thresholds must satisfy 0 <= min <= high <= 1")
        if ocr_mode == "primary" and ocr_client is None:
            raise ValueError("ocr_mode='primary' requires an OCR client")

        self._ocr_mode        = ocr_mode
        self._ocr_client      = ocr_client
        self._high_threshold  = high_threshold
        self._min_threshold   = min_threshold
        self._min_text_length = min_text_length

        if strategies is not None:
            self._strategies = tuple(strategies)
        elif ocr_mode == "fallback":
            self._strategies = build_strategy_chain(ocr_client)
        else:
            self._strategies = build_strategy_chain(None)

    @classmethod
    def from_settings(cls, settings) -> "ExtractionOrchestrator":
        ocr_client = None
        ocr_mode = settings.ocr_mode if settings.remote_ocr_enabled else "disabled"
        if ocr_mode != "disabled":
            from docproc.processing.ocr import WhisperClient
            ocr_client = WhisperClient.from_settings(settings)

        return cls(
            ocr_client=ocr_client,
            ocr_mode=ocr_mode,
            high_threshold=settings.extraction_high_quality_threshold,
            min_threshold=settings.extraction_min_quality_threshold,
            min_text_length=settings.min_text_length,
        )

    @property
    def strategy_names(self) -> list[str]:
        return [s.name for s in self._strategies]

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def extract(self, data: bytes, file_type: str) -> ExtractionResult:
        file_type = file_type.lower().lstrip(".")
        if file_type not in SUPPORTED_TYPES:
            raise DocumentValidationError(
                f"Unsupported document type: {file_type!r}",
                user_message=f"File type '{file_type}' is not supported.",
            )

        t0 = time.monotonic()
        if file_type == "pdf":
            result = await self._extract_pdf(data)
        else:
            result = self._extract_plain_text(data)

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "Extraction | type=%s method=%s quality=%.2f chars=%d attempts=%d elapsed_ms=%.0f",
            file_type, result.method, result.quality, len(result.text),
            len(result.attempts), result.elapsed_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Plain text
    # ------------------------------------------------------------------

    def _extract_plain_text(self, data: bytes) -> ExtractionResult:
        try:
            decoded = data.decode("utf-8")
            encoding = "utf-8"
        except UnicodeDecodeError:
            decoded = data.decode("latin-1", errors="replace")
            encoding = "latin-1"

        decoded = decoded.replace("\x00", "")
        text = normalize_text(decoded, self._min_text_length)
        quality = score_text_quality(text)
        return ExtractionResult(
            text=text,
            method=PLAIN_TEXT_METHOD,
            quality=quality,
            metadata={"encoding": encoding},
            attempts=[StrategyAttempt(PLAIN_TEXT_METHOD, quality=quality, chars=len(text))],
        )

    # ------------------------------------------------------------------
    # PDF cascade
    # ------------------------------------------------------------------

    async def _extract_pdf(self, data: bytes) -> ExtractionResult:
        if not pdf_syntax.has_pdf_signature(data):
            raise CorruptionError(
                f"Invalid PDF signature (size={len(data)} head={data[:8]!r})"
            )

        if self._ocr_mode == "primary":
            return await self._run_primary_ocr(data)

        attempts: list[StrategyAttempt] = []
        best: ExtractionResult | None = None
        last_error: BaseException | None = None

        for strategy in self._strategies:
            attempt = StrategyAttempt(strategy.name)
            attempts.append(attempt)

            try:
                output = await self._run_strategy(strategy, data)
                attempt.quality = score_text_quality(output.text)
                text = normalize_text(output.text, self._min_text_length)
            except Exception as exc:
                last_error = exc
                attempt.error = str(exc) or type(exc).__name__
                logger.warning(
                    "Strategy failed | strategy=%s error=%s: %s",
                    strategy.name, type(exc).__name__, exc,
                )
                continue

            attempt.chars = len(text)
            logger.info(
                "Strategy result | strategy=%s quality=%.2f chars=%d",
                strategy.name, attempt.quality, attempt.chars,
            )

            candidate = ExtractionResult(
                text=text,
                method=strategy.name,
                quality=attempt.quality,
                metadata=output.metadata,
                attempts=attempts,
                ocr_used=strategy.remote,
            )
            if attempt.quality >= self._high_threshold:
                return candidate
            if best is None or candidate.quality > best.quality:
                best = candidate

        if best is not None and best.quality >= self._min_threshold:
            logger.info(
                "Accepting best candidate below high threshold | strategy=%s quality=%.2f",
                best.method, best.quality,
            )
            return best

        detail = f"{last_error}" if last_error else "no strategy produced text"
        if best is not None:
            detail = f"best quality {best.quality:.2f} from {best.method} below minimum; last error: {detail}"
        raise ExtractionExhausted(
            f"All {len(self._strategies)} extraction strategies failed: {detail}",
            details={"attempts": [a.to_dict() for a in attempts]},
        )

    async def _run_strategy(self, strategy: ExtractionStrategy, data: bytes) -> StrategyOutput:
        if strategy.in_executor:
            loop = asyncio.get_event_loop()
            return await loop.run_in_executor(None, strategy.extract, data)
        return await strategy.extract(data)

    async def _run_primary_ocr(self, data: bytes) -> ExtractionResult:
        strategy = remote_ocr_strategy(self._ocr_client)
        try:
            output = await strategy.extract(data)
        except ProcessingError:
            logger.error("Primary remote OCR failed", exc_info=True)
            raise

        quality = score_text_quality(output.text)
        text = normalize_text(output.text, self._min_text_length)
        return ExtractionResult(
            text=text,
            method=strategy.name,
            quality=quality,
            metadata=output.metadata,
            attempts=[StrategyAttempt(strategy.name, quality=quality, chars=len(text))],
            ocr_used=True,
        )
