"""
Unit Tests — Remote OCR Client (LLMWhisperer)
═════════════════════════════════════════════

Every HTTP call goes through httpx.MockTransport; the handler routes on the
URL path and records the requests it saw. poll_interval=0 keeps the poll
loop instant.

Coverage targets:
  ✅ submit → processing → processed → retrieve, api key header on every call
  ✅ Page count from the form-feed separator
  ✅ Still processing after max_poll_attempts → PollingTimeout (timeout category)
  ✅ Overall deadline shorter than the poll budget → PollingTimeout
  ✅ Remote "error" status → RemoteOCRError with the remote message
  ✅ 401 on submit → RemoteOCRError carrying the HTTP status
  ✅ Submit without whisper_hash → RemoteOCRError
  ✅ retrieve() outside PROCESSED → InvalidJobState, no HTTP call
"""

from __future__ import annotations

import httpx
import pytest

from docproc.core.errors import (
    ErrorCategory,
    InvalidJobState,
    PollingTimeout,
    RemoteOCRError,
)
from docproc.processing.ocr import WhisperClient, WhisperJob, WhisperState

BASE_URL = "https://ocr.example.com/api/v2"


class FakeWhisperService:
    """MockTransport handler emulating the three LLMWhisperer endpoints."""

    def __init__(self, statuses, *, text="Page one text\fPage two text",
                 submit_status=202, submit_body=None, message=""):
        self.statuses = list(statuses)
        self.text = text
        self.submit_status = submit_status
        self.submit_body = submit_body if submit_body is not None else {"whisper_hash": "wh-1"}
        self.message = message
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/whisper"):
            return httpx.Response(self.submit_status, json=self.submit_body)
        if path.endswith("/whisper-status"):
            status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json={"status": status, "message": self.message})
        if path.endswith("/whisper-retrieve"):
            return httpx.Response(200, json={"result_text": self.text, "metadata": {}})
        return httpx.Response(404, json={"detail": "unknown endpoint"})

    @property
    def paths(self) -> list[str]:
        return [r.url.path.rsplit("/", 1)[-1] for r in self.requests]


def _client(service: FakeWhisperService, **kwargs) -> WhisperClient:
    kwargs.setdefault("poll_interval", 0)
    return WhisperClient(
        api_key="test-key",
        base_url=BASE_URL,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(service)),
        **kwargs,
    )


@pytest.mark.unit
@pytest.mark.processing
class TestWhisperCycle:

    async def test_full_cycle(self, hello_world_pdf):
        service = FakeWhisperService(["processing", "processed"])

        result = await _client(service).whisper(hello_world_pdf)

        assert result.text == "Page one text\fPage two text"
        assert result.whisper_hash == "wh-1"
        assert result.pages == 2
        assert result.metadata["ocr_used"] is True
        assert result.metadata["polls"] == 2
        assert service.paths == ["whisper", "whisper-status", "whisper-status", "whisper-retrieve"]

    async def test_api_key_and_params_sent(self, hello_world_pdf):
        service = FakeWhisperService(["processed"])

        await _client(service, language="eng").whisper(hello_world_pdf)

        submit = service.requests[0]
        assert submit.method == "POST"
        assert submit.content == hello_world_pdf
        assert submit.url.params["lang"] == "eng"
        assert submit.url.params["mode"] == "high_quality"
        assert all(r.headers["unstract-key"] == "test-key" for r in service.requests)
        assert service.requests[1].url.params["whisper_hash"] == "wh-1"

    async def test_polling_exhausted_raises_timeout(self, hello_world_pdf):
        service = FakeWhisperService(["processing"])

        with pytest.raises(PollingTimeout) as exc_info:
            await _client(service, max_poll_attempts=12).whisper(hello_world_pdf)

        err = exc_info.value
        assert err.category is ErrorCategory.TIMEOUT
        assert err.details["polls"] == 12
        assert service.paths.count("whisper-status") == 12
        assert "whisper-retrieve" not in service.paths

    async def test_overall_deadline_cuts_polling_short(self, hello_world_pdf):
        service = FakeWhisperService(["processing"])
        client = _client(service, poll_interval=0.05, max_poll_attempts=1000, deadline=0.3)

        with pytest.raises(PollingTimeout, match="deadline") as exc_info:
            await client.whisper(hello_world_pdf)

        assert exc_info.value.category is ErrorCategory.TIMEOUT
        assert 1 <= service.paths.count("whisper-status") < 1000
        assert "whisper-retrieve" not in service.paths

    async def test_remote_failure_raises(self, hello_world_pdf):
        service = FakeWhisperService(["processing", "error"], message="unsupported scan")

        with pytest.raises(RemoteOCRError, match="unsupported scan"):
            await _client(service).whisper(hello_world_pdf)


@pytest.mark.unit
@pytest.mark.processing
class TestWhisperErrors:

    async def test_unauthorized_submit(self, hello_world_pdf):
        service = FakeWhisperService(["processed"], submit_status=401,
                                     submit_body={"message": "bad key"})

        with pytest.raises(RemoteOCRError) as exc_info:
            await _client(service).whisper(hello_world_pdf)

        assert exc_info.value.http_status == 401
        assert "invalid API key" in exc_info.value.message
        assert service.paths == ["whisper"]

    async def test_server_error_on_status(self, hello_world_pdf):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/whisper"):
                return httpx.Response(202, json={"whisper_hash": "wh-9"})
            return httpx.Response(503, text="unavailable")

        client = WhisperClient(
            api_key="test-key",
            base_url=BASE_URL,
            poll_interval=0,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        with pytest.raises(RemoteOCRError) as exc_info:
            await client.whisper(hello_world_pdf)
        assert exc_info.value.http_status == 503

    async def test_missing_whisper_hash(self, hello_world_pdf):
        service = FakeWhisperService(["processed"], submit_body={"status": "accepted"})

        with pytest.raises(RemoteOCRError, match="no whisper_hash"):
            await _client(service).whisper(hello_world_pdf)

    async def test_retrieve_requires_processed_state(self):
        service = FakeWhisperService(["processed"])
        job = WhisperJob(whisper_hash="wh-1", state=WhisperState.PROCESSING)

        with pytest.raises(InvalidJobState):
            await _client(service).retrieve(job)
        assert service.requests == []

    def test_terminal_states(self):
        assert WhisperState.PROCESSED.is_terminal
        assert WhisperState.FAILED.is_terminal
        assert not WhisperState.SUBMITTED.is_terminal
