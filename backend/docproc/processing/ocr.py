"""
Remote OCR Client  —  LLMWhisperer Async Jobs
══════════════════════════════════════════════

LLMWhisperer (Unstract) converts scanned or image-heavy PDFs into text on
its own infrastructure. The API is asynchronous: a submission is only an
acceptance, the text has to be fetched once the job finishes.

Job lifecycle
─────────────
  submit(bytes)  ──► POST /whisper              → 202 {whisper_hash}
                        state = SUBMITTED
  poll(job)      ──► GET  /whisper-status       → processing | processed | error
                        state = PROCESSING | PROCESSED | FAILED
  retrieve(job)  ──► GET  /whisper-retrieve     → {result_text, metadata}
                        valid only in PROCESSED

whisper(bytes) runs the whole cycle:

  ┌─────────────────────────────────────────────────────────────────┐
  │ submit once                                                     │
  │ repeat ≤ max_poll_attempts:                                     │
  │     sleep(poll_interval) → poll                                 │
  │     PROCESSED → retrieve → return                               │
  │     FAILED    → RemoteOCRError(remote message)                  │
  │ attempts exhausted → PollingTimeout                             │
  │ whole cycle bounded by asyncio.wait_for(deadline) → PollingTimeout │
  └─────────────────────────────────────────────────────────────────┘

There is no server-side cancel. Cancelling the awaiting task simply stops
the poll loop; the remote job is left to expire.

Every HTTP call carries its own request timeout (httpx). Status mapping:
  401 invalid key · 403 access denied · 429 rate limited · ≥500 server error
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator

import httpx

from docproc.core.errors import (
    ErrorCategory,
    InvalidJobState,
    NetworkError,
    PollingTimeout,
    RemoteOCRError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_BASE_URL = "https://llmwhisperer-api.us-central.unstract.com/api/v2"
API_KEY_HEADER   = "unstract-key"
PAGE_SEPARATOR   = "\f"

_STATUS_ERRORS: dict[int, str] = {
    401: "invalid API key",
    403: "access denied",
    429: "rate limit exceeded",
}

_REMOTE_STATES: dict[str, str] = {
    "accepted":   "processing",
    "processing": "processing",
    "processed":  "processed",
    "retrieved":  "processed",
    "error":      "failed",
    "failed":     "failed",
}


# ---------------------------------------------------------------------------
# Job types
# ---------------------------------------------------------------------------

class WhisperState(str, Enum):
    SUBMITTED  = "submitted"
    PROCESSING = "processing"
    PROCESSED  = "processed"
    FAILED     = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WhisperState.PROCESSED, WhisperState.FAILED)


@dataclass
class WhisperJob:
    """
    Handle of one remote OCR job. Lives only for the duration of a call.

    whisper_hash : job id returned by the submit endpoint
    state        : last known state
    polls        : number of status requests issued so far
    message      : last status message from the service (error text on FAILED)
    """
    whisper_hash: str
    state:        WhisperState = WhisperState.SUBMITTED
    submitted_at: float        = field(default_factory=time.monotonic)
    polls:        int          = 0
    message:      str          = ""


@dataclass
class WhisperResult:
    text:         str
    whisper_hash: str
    pages:        int
    metadata:     dict[str, Any] = field(default_factory=dict)
    elapsed_ms:   float          = 0.0


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class WhisperClient:
    """
    Usage:
        client = WhisperClient.from_settings(settings)
        result = await client.whisper(pdf_bytes)

    Tests pass `http_client=httpx.AsyncClient(transport=httpx.MockTransport(...))`.
    """

    def __init__(
        self,
        api_key:           str,
        base_url:          str   = DEFAULT_BASE_URL,
        *,
        processing_mode:   str   = "high_quality",
        output_mode:       str   = "layout_preserving",
        language:          str   = "por",
        request_timeout:   float = 60.0,
        poll_interval:     float = 5.0,
        max_poll_attempts: int   = 12,
        deadline:          float = 180.0,
        http_client:       httpx.AsyncClient | None = None,
    ) -> None:
        if max_poll_attempts < 1:
            raise ValueError("max_poll_attempts must be at least 1")
        self._api_key           = api_key
        self._base_url          = base_url.rstrip("/")
        self._processing_mode   = processing_mode
        self._output_mode       = output_mode
        self._language          = language
        self._request_timeout   = request_timeout
        self._poll_interval     = poll_interval
        self._max_poll_attempts = max_poll_attempts
        self._deadline          = deadline
        self._http_client       = http_client

    @classmethod
    def from_settings(cls, settings) -> "WhisperClient":
        return cls(
            api_key=settings.llmwhisperer_api_key,
            base_url=settings.llmwhisperer_base_url,
            processing_mode=settings.ocr_processing_mode,
            output_mode=settings.ocr_output_mode,
            language=settings.ocr_language,
            request_timeout=settings.ocr_request_timeout_seconds,
            poll_interval=settings.ocr_poll_interval_seconds,
            max_poll_attempts=settings.ocr_max_poll_attempts,
            deadline=settings.ocr_deadline_seconds,
        )

    # ------------------------------------------------------------------
    # Full cycle
    # ------------------------------------------------------------------

    async def whisper(self, data: bytes) -> WhisperResult:
        """Submit, poll until terminal, retrieve. Bounded by the overall deadline."""
        t0 = time.monotonic()
        try:
            result = await asyncio.wait_for(self._run_job(data), timeout=self._deadline)
        except asyncio.TimeoutError as exc:
            raise PollingTimeout(
                f"Remote OCR exceeded the {self._deadline:.0f}s deadline"
            ) from exc

        result.elapsed_ms = (time.monotonic() - t0) * 1000
        logger.info(
            "RemoteOCR | hash=%s pages=%d chars=%d elapsed_ms=%.0f",
            result.whisper_hash, result.pages, len(result.text), result.elapsed_ms,
        )
        return result

    async def _run_job(self, data: bytes) -> WhisperResult:
        job = await self.submit(data)

        for attempt in range(1, self._max_poll_attempts + 1):
            await asyncio.sleep(self._poll_interval)
            state = await self.poll(job)

            if state is WhisperState.PROCESSED:
                return await self.retrieve(job)
            if state is WhisperState.FAILED:
                raise RemoteOCRError(
                    f"Remote OCR job {job.whisper_hash} failed: {job.message or 'no message'}"
                )

            logger.debug(
                "RemoteOCR poll | hash=%s attempt=%d/%d state=%s",
                job.whisper_hash, attempt, self._max_poll_attempts, state.value,
            )

        raise PollingTimeout(
            f"Remote OCR job {job.whisper_hash} still {job.state.value} "
            f"after {job.polls} polls",
            details={"whisper_hash": job.whisper_hash, "polls": job.polls},
        )

    # ------------------------------------------------------------------
    # Individual API calls
    # ------------------------------------------------------------------

    async def submit(self, data: bytes) -> WhisperJob:
        params = {
            "mode":        self._processing_mode,
            "output_mode": self._output_mode,
            "lang":        self._language,
        }
        payload = await self._request(
            "POST", "/whisper",
            action="submit",
            params=params,
            content=data,
            headers={"Content-Type": "application/octet-stream"},
        )

        whisper_hash = payload.get("whisper_hash")
        if not whisper_hash:
            raise RemoteOCRError("Remote OCR accepted the file but returned no whisper_hash")

        logger.info("RemoteOCR submitted | hash=%s bytes=%d", whisper_hash, len(data))
        return WhisperJob(whisper_hash=whisper_hash)

    async def poll(self, job: WhisperJob) -> WhisperState:
        payload = await self._request(
            "GET", "/whisper-status",
            action="status",
            params={"whisper_hash": job.whisper_hash},
        )
        job.polls += 1

        remote = str(payload.get("status", "")).lower()
        job.state = WhisperState(_REMOTE_STATES.get(remote, "processing"))
        job.message = str(payload.get("message") or payload.get("detail") or "")
        return job.state

    async def retrieve(self, job: WhisperJob) -> WhisperResult:
        if job.state is not WhisperState.PROCESSED:
            raise InvalidJobState(
                f"Cannot retrieve job {job.whisper_hash} in state {job.state.value}"
            )

        payload = await self._request(
            "GET", "/whisper-retrieve",
            action="retrieve",
            params={"whisper_hash": job.whisper_hash, "text_only": "false"},
        )

        text = payload.get("result_text") or payload.get("text") or ""
        metadata = dict(payload.get("metadata") or {})
        pages = int(metadata.get("pages") or (text.count(PAGE_SEPARATOR) + 1 if text else 0))

        return WhisperResult(
            text=text,
            whisper_hash=job.whisper_hash,
            pages=pages,
            metadata={
                "ocr_used":      True,
                "polls":         job.polls,
                "remote_fields": sorted(metadata),
            },
        )

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=self._request_timeout) as client:
            yield client

    async def _request(self, method: str, path: str, *, action: str, **kwargs: Any) -> dict:
        headers = {API_KEY_HEADER: self._api_key, **kwargs.pop("headers", {})}

        async with self._client() as client:
            try:
                response = await client.request(
                    method,
                    f"{self._base_url}{path}",
                    headers=headers,
                    timeout=self._request_timeout,
                    **kwargs,
                )
            except httpx.TimeoutException as exc:
                raise RemoteOCRError(
                    f"Remote OCR {action} timed out after {self._request_timeout:.0f}s",
                    category=ErrorCategory.TIMEOUT,
                ) from exc
            except httpx.RequestError as exc:
                raise NetworkError(f"Remote OCR {action} request failed: {exc}") from exc

        if response.status_code >= 400:
            reason = _STATUS_ERRORS.get(response.status_code)
            if reason is None:
                reason = "server error" if response.status_code >= 500 else "request rejected"
            raise RemoteOCRError(
                f"Remote OCR {action} failed ({response.status_code}): {reason}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteOCRError(f"Remote OCR {action} returned invalid JSON") from exc
