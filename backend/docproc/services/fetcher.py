"""
File Fetcher — URL → raw bytes.

The body is streamed so an oversized file is rejected as soon as the running
total passes the limit, without buffering the rest. A declared
Content-Length above the limit is rejected before the first chunk is read.

Error mapping:
  timeout            → NetworkError (retryable)
  connection error   → NetworkError (retryable)
  HTTP ≥ 400         → NetworkError (retryable only for 5xx / 429)
  too large          → DocumentValidationError
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

import httpx

from docproc.core.errors import DocumentValidationError, NetworkError

logger = logging.getLogger(__name__)

USER_AGENT = "docproc-pipeline/1.0"


class FileFetcher(Protocol):
    async def fetch(self, url: str) -> bytes: ...


class HttpFileFetcher:
    """
    Usage:
        fetcher = HttpFileFetcher.from_settings(settings)
        data    = await fetcher.fetch(document.url)
    """

    def __init__(
        self,
        timeout:   float = 300.0,
        max_bytes: int   = 50 * 1024 * 1024,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout     = timeout
        self._max_bytes   = max_bytes
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings) -> "HttpFileFetcher":
        return cls(
            timeout=settings.download_timeout_seconds,
            max_bytes=settings.max_file_size_bytes,
        )

    async def fetch(self, url: str) -> bytes:
        t0 = time.monotonic()
        if self._http_client is not None:
            data = await self._download(self._http_client, url)
        else:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            ) as client:
                data = await self._download(client, url)

        logger.info(
            "File fetched | bytes=%d elapsed_ms=%.0f",
            len(data), (time.monotonic() - t0) * 1000,
        )
        return data

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            async with client.stream("GET", url, timeout=self._timeout) as response:
                if response.status_code >= 400:
                    error = NetworkError(
                        f"Download failed with HTTP {response.status_code}: {url}",
                        user_message=f"The file could not be downloaded (HTTP {response.status_code}).",
                    )
                    error.retryable = response.status_code >= 500 or response.status_code == 429
                    raise error

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self._max_bytes:
                    raise self._too_large(int(declared))

                buffer = bytearray()
                async for chunk in response.aiter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > self._max_bytes:
                        raise self._too_large(len(buffer))
        except httpx.TimeoutException as exc:
            raise NetworkError(
                f"Download timed out after {self._timeout:.0f}s: {url}",
                user_message="Downloading the file timed out. Please try again.",
            ) from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"Download request failed: {exc}") from exc

        return bytes(buffer)

    def _too_large(self, size: int) -> DocumentValidationError:
        return DocumentValidationError(
            f"File has at least {size:,} bytes; limit is {self._max_bytes:,} bytes",
            user_message=f"File too large. Maximum size is {self._max_bytes // (1024 * 1024)} MB.",
        )
