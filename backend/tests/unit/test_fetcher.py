"""
Unit Tests — HTTP File Fetcher

Coverage targets:
  ✅ 200 → body bytes
  ✅ 404 → NetworkError, not retryable; 503 → retryable
  ✅ Declared or streamed size above the limit → DocumentValidationError
  ✅ Connection failure → NetworkError
"""

from __future__ import annotations

import httpx
import pytest

from docproc.core.errors import DocumentValidationError, ErrorCategory, NetworkError
from docproc.services.fetcher import HttpFileFetcher

URL = "https://files.example.com/report.pdf"


def _fetcher(handler, **kwargs) -> HttpFileFetcher:
    return HttpFileFetcher(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


@pytest.mark.unit
class TestHttpFileFetcher:

    async def test_returns_body(self, hello_world_pdf):
        fetcher = _fetcher(lambda request: httpx.Response(200, content=hello_world_pdf))
        assert await fetcher.fetch(URL) == hello_world_pdf

    async def test_not_found_is_terminal(self):
        fetcher = _fetcher(lambda request: httpx.Response(404))

        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch(URL)

        assert exc_info.value.category is ErrorCategory.NETWORK
        assert exc_info.value.retryable is False
        assert "404" in exc_info.value.user_message

    async def test_server_error_is_retryable(self):
        fetcher = _fetcher(lambda request: httpx.Response(503))

        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch(URL)
        assert exc_info.value.retryable is True

    async def test_declared_size_over_limit(self):
        fetcher = _fetcher(
            lambda request: httpx.Response(200, headers={"Content-Length": "5000"}, content=b"x" * 5000),
            max_bytes=1024,
        )
        with pytest.raises(DocumentValidationError, match="limit is 1,024 bytes"):
            await fetcher.fetch(URL)

    async def test_streamed_size_over_limit(self):
        async def body():
            yield b"x" * 600
            yield b"x" * 600

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        with pytest.raises(DocumentValidationError):
            await _fetcher(handler, max_bytes=1024).fetch(URL)

    async def test_connection_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(NetworkError, match="connection refused"):
            await _fetcher(handler).fetch(URL)
