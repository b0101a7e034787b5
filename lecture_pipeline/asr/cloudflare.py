"""
CloudflareWhisperService: Whisper via Cloudflare Workers AI.

Sends the chunk bytes as a JSON int array to @cf/openai/whisper.
Error statuses are classified the same way as the OpenAI API.
"""
from __future__ import annotations

import logging
from pathlib import Path

import httpx

from lecture_pipeline.asr.base import TranscriptionOptions, TranscriptionService
from lecture_pipeline.asr.openai_whisper import classify_response
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import (
    InvalidAudioFormatError,
    TranscriptionAuthError,
    TransientTranscriptionError,
)

logger = logging.getLogger(__name__)


class CloudflareWhisperService(TranscriptionService):
    """
    Remote Whisper via Cloudflare Workers AI. Model and response_format options
    are fixed by the endpoint; language and prompt are not supported and ignored.
    """

    name = "cloudflare"

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        s = settings or get_settings()
        self._account_id = (s.CLOUDFLARE_ACCOUNT_ID or "").strip()
        self._token = (s.CLOUDFLARE_API_TOKEN or "").strip()
        self._client = client
        self._owns_client = client is None

    @property
    def url(self) -> str:
        return f"https://api.cloudflare.com/client/v4/accounts/{self._account_id}/ai/run/@cf/openai/whisper"

    async def transcribe(self, path: Path, options: TranscriptionOptions, timeout: float) -> str:
        if not self._account_id or not self._token:
            raise TranscriptionAuthError("CLOUDFLARE_ACCOUNT_ID and CLOUDFLARE_API_TOKEN are required")
        path = Path(path)
        try:
            audio = path.read_bytes()
        except OSError as e:
            raise InvalidAudioFormatError(f"Could not read {path.name}: {e}") from e

        if self._client is None:
            self._client = httpx.AsyncClient()
        try:
            resp = await self._client.post(
                self.url,
                headers={"Authorization": f"Bearer {self._token}"},
                json={"audio": list(audio)},
                timeout=timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientTranscriptionError(f"Workers AI timeout after {timeout:.0f}s") from e
        except httpx.TransportError as e:
            raise TransientTranscriptionError(f"Workers AI network error: {e}") from e

        if resp.status_code >= 400:
            raise classify_response(resp)

        try:
            data = resp.json()
        except ValueError as e:
            raise TransientTranscriptionError(f"Workers AI returned invalid JSON: {e}") from e
        # { "result": { "text": "..." } } or direct { "text": "..." }
        result = data.get("result", data) if isinstance(data, dict) else data
        if isinstance(result, dict):
            text = result.get("text", result.get("transcript", ""))
        elif isinstance(result, str):
            text = result
        else:
            text = ""
        return (text or "").strip()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
