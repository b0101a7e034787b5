"""
OpenAIWhisperService: POST /audio/transcriptions (multipart) via httpx.AsyncClient.

Status classification:
- 400, 413, 415, 422: invalid audio/format, not retried
- 401, 403: bad credentials, fatal for the whole run
- 429: rate limited, retried (Retry-After honoured)
- 408, 409, 5xx, timeouts, transport errors: transient, retried
"""
from __future__ import annotations

import logging
from pathlib import Path

import httpx

from lecture_pipeline.asr.base import TranscriptionOptions, TranscriptionService
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import (
    InvalidAudioFormatError,
    RateLimitedError,
    TranscriptionAuthError,
    TranscriptionError,
    TransientTranscriptionError,
)

logger = logging.getLogger(__name__)

_FORMAT_STATUSES = {400, 413, 415, 422}
_AUTH_STATUSES = {401, 403}


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return (resp.text or "").strip()[:300]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict):
            return str(err.get("message") or err)
        if err:
            return str(err)
    return str(data)[:300]


def _retry_after(resp: httpx.Response) -> float | None:
    raw = resp.headers.get("retry-after")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def classify_response(resp: httpx.Response) -> TranscriptionError:
    """Map a non-2xx response to the matching TranscriptionError."""
    status = resp.status_code
    detail = _error_message(resp)
    msg = f"Whisper API {status}: {detail}" if detail else f"Whisper API {status}"
    if status in _AUTH_STATUSES:
        return TranscriptionAuthError(msg)
    if status == 429:
        return RateLimitedError(msg, retry_after=_retry_after(resp))
    if status in _FORMAT_STATUSES:
        return InvalidAudioFormatError(msg)
    return TransientTranscriptionError(msg)


def parse_transcription(resp: httpx.Response, response_format: str) -> str:
    if response_format in ("json", "verbose_json"):
        try:
            data = resp.json()
        except ValueError as e:
            raise TransientTranscriptionError(f"Whisper API returned invalid JSON: {e}") from e
        return str(data.get("text", "") if isinstance(data, dict) else "").strip()
    return (resp.text or "").strip()


class OpenAIWhisperService(TranscriptionService):
    name = "openai"

    def __init__(
        self,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        s = settings or get_settings()
        self._api_key = (s.OPENAI_API_KEY or "").strip()
        self._url = s.OPENAI_BASE_URL.rstrip("/") + "/audio/transcriptions"
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def transcribe(self, path: Path, options: TranscriptionOptions, timeout: float) -> str:
        if not self._api_key:
            raise TranscriptionAuthError("OPENAI_API_KEY is not set")
        path = Path(path)
        data = {"model": options.model, "response_format": options.response_format}
        if options.language:
            data["language"] = options.language
        if options.prompt:
            data["prompt"] = options.prompt
        try:
            audio = path.read_bytes()
        except OSError as e:
            raise InvalidAudioFormatError(f"Could not read {path.name}: {e}") from e

        try:
            resp = await self._get_client().post(
                self._url,
                data=data,
                files={"file": (path.name, audio, "audio/mpeg")},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientTranscriptionError(f"Whisper API timeout after {timeout:.0f}s") from e
        except httpx.TransportError as e:
            raise TransientTranscriptionError(f"Whisper API network error: {e}") from e

        if resp.status_code >= 400:
            raise classify_response(resp)
        return parse_transcription(resp, options.response_format)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
