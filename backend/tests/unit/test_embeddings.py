"""
Unit Tests — Embedding Generator
════════════════════════════════

The OpenAI client is replaced by a MagicMock whose `embeddings.create` is an
AsyncMock; asyncio.sleep is patched so back-off costs no wall time.

Coverage targets:
  ✅ Two transient failures then success → exactly three calls, delays 2s and 4s
  ✅ 401 → three failed calls → EmbeddingFailed(kind=auth, embedding-provider)
  ✅ Input truncated to max_input_chars
  ✅ Empty text → ValueError without any API call
  ✅ Dimension mismatch counts as a failed attempt
  ✅ Failure classification table
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from docproc.core.errors import EmbeddingFailed, ErrorCategory
from docproc.processing.embeddings import EmbeddingGenerator, classify_failure
from tests.conftest import embedding_response

_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"


def _status_error(cls, status_code: int):
    response = httpx.Response(status_code, request=httpx.Request("POST", _EMBEDDINGS_URL))
    return cls(f"HTTP {status_code}", response=response, body=None)


def _generator(create: AsyncMock, **kwargs) -> EmbeddingGenerator:
    client = MagicMock()
    client.embeddings.create = create
    kwargs.setdefault("dimensions", 3)
    return EmbeddingGenerator(client=client, **kwargs)


@pytest.mark.unit
@pytest.mark.processing
class TestEmbeddingRetry:

    async def test_succeeds_on_third_attempt(self):
        create = AsyncMock(side_effect=[
            RuntimeError("connection reset"),
            RuntimeError("connection reset"),
            embedding_response([0.1, 0.2, 0.3]),
        ])
        generator = _generator(create, retry_base_delay=1.0)

        with patch("docproc.processing.embeddings.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await generator.generate("chunk text")

        assert result.vector == [0.1, 0.2, 0.3]
        assert result.attempts == 3
        assert create.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [2.0, 4.0]

    async def test_auth_error_exhausts_attempts(self):
        create = AsyncMock(side_effect=_status_error(openai.AuthenticationError, 401))
        generator = _generator(create)

        with patch("docproc.processing.embeddings.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(EmbeddingFailed) as exc_info:
                await generator.generate("chunk text")

        err = exc_info.value
        assert create.await_count == 3
        assert err.attempts == 3
        assert err.failure_kind == "auth"
        assert err.category is ErrorCategory.EMBEDDING_PROVIDER

    async def test_single_attempt_does_not_sleep(self):
        create = AsyncMock(side_effect=RuntimeError("down"))
        generator = _generator(create, max_attempts=1)

        with patch("docproc.processing.embeddings.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(EmbeddingFailed):
                await generator.generate("chunk text")

        sleep.assert_not_awaited()

    def test_retry_delay_is_capped(self):
        generator = _generator(AsyncMock(), retry_base_delay=1.0)

        assert generator.retry_delay(1) == 2.0
        assert generator.retry_delay(2) == 4.0
        assert generator.retry_delay(10) == 60.0


@pytest.mark.unit
@pytest.mark.processing
class TestEmbeddingInput:

    async def test_input_truncated(self):
        create = AsyncMock(return_value=embedding_response([0.0, 0.0, 1.0]))
        generator = _generator(create, max_input_chars=10)

        await generator.generate("x" * 50)

        assert create.await_args.kwargs["input"] == ["x" * 10]

    async def test_model_passed_through(self):
        create = AsyncMock(return_value=embedding_response([0.0, 0.0, 1.0]))
        generator = _generator(create, model="text-embedding-3-small")

        await generator.generate("hello")

        assert create.await_args.kwargs["model"] == "text-embedding-3-small"

    @pytest.mark.parametrize("text", ["", "   \n"])
    async def test_empty_text_rejected(self, text):
        create = AsyncMock()
        generator = _generator(create)

        with pytest.raises(ValueError):
            await generator.generate(text)
        create.assert_not_awaited()

    async def test_dimension_mismatch_fails(self):
        create = AsyncMock(return_value=embedding_response([0.1, 0.2]))
        generator = _generator(create, max_attempts=1)

        with pytest.raises(EmbeddingFailed, match="2 dimensions"):
            await generator.generate("hello")


@pytest.mark.unit
class TestClassifyFailure:

    @pytest.mark.parametrize("exc, kind", [
        (_status_error(openai.AuthenticationError, 401), "auth"),
        (_status_error(openai.RateLimitError, 429), "rate_limit"),
        (_status_error(openai.InternalServerError, 500), "server"),
        (asyncio.TimeoutError(), "timeout"),
        (openai.APIConnectionError(request=httpx.Request("POST", _EMBEDDINGS_URL)), "network"),
        (RuntimeError("boom"), "unknown"),
    ])
    def test_kinds(self, exc, kind):
        assert classify_failure(exc) == kind
