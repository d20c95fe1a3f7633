"""
Document Processing Package
════════════════════════════

Everything between raw file bytes and embedded chunks:

  Extraction cascade → Normalization → Chunking → Embedding

Modules
───────
  quality.py      Heuristic quality score + document quality report
  normalizer.py   Text cleanup with a minimum-length guard
  pdf_syntax.py   Regex-level PDF object / stream / operator helpers
  strategies.py   Ordered table of the six extraction strategies
  ocr.py          LLMWhisperer async job client (submit / poll / retrieve)
  extractor.py    Orchestrator running the cascade and picking the winner
  chunking.py     Sliding-window chunker with natural-boundary detection
  embeddings.py   Per-chunk embedding generator with retry / back-off
  validation.py   Record, size, signature and content checks

Design principles
─────────────────
  • Components are stateless and receive their collaborators explicitly.
  • Strategies run sequentially; the first one above the high threshold wins.
  • Every step emits structured log lines.
"""

from docproc.processing.chunking import TextChunk, chunk_text
from docproc.processing.embeddings import EmbeddingGenerator, EmbeddingVector
from docproc.processing.extractor import ExtractionOrchestrator, ExtractionResult

__all__ = [
    "TextChunk",
    "chunk_text",
    "EmbeddingGenerator",
    "EmbeddingVector",
    "ExtractionOrchestrator",
    "ExtractionResult",
]
