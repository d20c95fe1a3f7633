"""
Embedding Generator  —  One Vector per Chunk with Retry
════════════════════════════════════════════════════════

Design goals:
  • One OpenAI embeddings call per chunk (chunks are processed in index order)
  • Bounded input: chunk text truncated to max_input_chars before the call
  • Bounded time: every call wrapped in asyncio.wait_for(timeout)
  • Bounded retries: max_attempts calls in total, exponential back-off

Retry policy:
  attempt n fails → wait retry_base_delay × 2^n → attempt n+1
  Every failure kind counts against the same ceiling. The kind is only
  used for logging and for the EmbeddingFailed raised at the end:

    AuthenticationError (401)   → "auth"
    RateLimitError (429)        → "rate_limit"
    timeout                     → "timeout"
    APIStatusError (5xx, other) → "server"
    APIConnectionError          → "network"
    anything else               → "unknown"

The OpenAI SDK's own retries are disabled (max_retries=0) so that this
class is the single owner of the retry budget.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from docproc.core.errors import EmbeddingFailed

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_MODEL           = "text-embedding-ada-002"
DEFAULT_DIMENSIONS      = 1536
DEFAULT_MAX_INPUT_CHARS = 6000
DEFAULT_MAX_ATTEMPTS    = 3
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRY_BASE      = 1.0      # seconds
RETRY_MAX_DELAY         = 60.0     # cap


@dataclass
class EmbeddingVector:
    """
    vector     : embedding values (len == dimensions)
    attempts   : number of API calls it took
    elapsed_ms : wall time including back-off sleeps
    """
    vector:     list[float]
    attempts:   int
    elapsed_ms: float


def classify_failure(exc: BaseException) -> str:
    """Map an exception raised by the embeddings call to a failure kind."""
    import openai

    if isinstance(exc, openai.AuthenticationError):
        return "auth"
    if isinstance(exc, openai.RateLimitError):
        return "rate_limit"
    if isinstance(exc, (asyncio.TimeoutError, openai.APITimeoutError)):
        return "timeout"
    if isinstance(exc, openai.APIStatusError):
        return "server"
    if isinstance(exc, openai.APIConnectionError):
        return "network"
    return "unknown"


class EmbeddingGenerator:
    """
    Usage:
        generator = EmbeddingGenerator.from_settings(settings)
        result    = await generator.generate(chunk.content)
        result.vector  # list[float]

    Tests inject `client` (anything exposing `embeddings.create`).
    """

    def __init__(
        self,
        api_key:          str   = "",
        model:            str   = DEFAULT_MODEL,
        dimensions:       int   = DEFAULT_DIMENSIONS,
        *,
        max_input_chars:  int   = DEFAULT_MAX_INPUT_CHARS,
        max_attempts:     int   = DEFAULT_MAX_ATTEMPTS,
        timeout:          float = DEFAULT_TIMEOUT_SECONDS,
        retry_base_delay: float = DEFAULT_RETRY_BASE,
        client=None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._api_key          = api_key
        self._model            = model
        self._dimensions       = dimensions
        self._max_input_chars  = max_input_chars
        self._max_attempts     = max_attempts
        self._timeout          = timeout
        self._retry_base_delay = retry_base_delay
        self._client           = client

    @classmethod
    def from_settings(cls, settings) -> "EmbeddingGenerator":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            max_input_chars=settings.embedding_max_input_chars,
            max_attempts=settings.embedding_max_attempts,
            timeout=settings.embedding_timeout_seconds,
            retry_base_delay=settings.embedding_retry_base_delay,
        )

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(
                api_key=self._api_key,
                timeout=self._timeout,
                max_retries=0,
            )
        return self._client

    def retry_delay(self, attempt: int) -> float:
        return min(self._retry_base_delay * (2 ** attempt), RETRY_MAX_DELAY)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def generate(self, text: str) -> EmbeddingVector:
        """
        Embed one chunk of text.

        Raises:
            ValueError       for empty input
            EmbeddingFailed  once max_attempts calls have failed
        """
        text = text.strip()
        if not text:
            raise ValueError("cannot embed empty text")
        if len(text) > self._max_input_chars:
            text = text[: self._max_input_chars]

        t0 = time.monotonic()
        last_error: BaseException | None = None
        failure_kind = "unknown"

        for attempt in range(1, self._max_attempts + 1):
            try:
                vector = await asyncio.wait_for(self._call_api(text), timeout=self._timeout)
            except Exception as exc:
                last_error = exc
                failure_kind = classify_failure(exc)

                log = logger.error if failure_kind in ("auth", "rate_limit") else logger.warning
                log(
                    "Embedding attempt failed | attempt=%d/%d kind=%s error=%s: %s",
                    attempt, self._max_attempts, failure_kind, type(exc).__name__, exc,
                )

                if attempt < self._max_attempts:
                    await asyncio.sleep(self.retry_delay(attempt))
                continue

            elapsed_ms = (time.monotonic() - t0) * 1000
            if attempt > 1:
                logger.info("Embedding succeeded after retry | attempts=%d", attempt)
            return EmbeddingVector(vector=vector, attempts=attempt, elapsed_ms=elapsed_ms)

        raise EmbeddingFailed(
            f"Failed to generate embedding after {self._max_attempts} attempts "
            f"({failure_kind}): {last_error}",
            attempts=self._max_attempts,
            failure_kind=failure_kind,
        )

    async def _call_api(self, text: str) -> list[float]:
        client = self._get_client()
        response = await client.embeddings.create(model=self._model, input=[text])

        vector = list(response.data[0].embedding)
        if self._dimensions and len(vector) != self._dimensions:
            raise ValueError(
                f"Embedding has {len(vector)} dimensions; expected {self._dimensions}"
            )
        return vector
