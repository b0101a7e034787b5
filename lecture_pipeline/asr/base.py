"""
TranscriptionService: abstract interface for Whisper-compatible speech-to-text.

Implementations: OpenAIWhisperService (HTTP API), CloudflareWhisperService,
LocalWhisperService (faster-whisper). All classify failures into the
TranscriptionError hierarchy so RetryPolicy can decide what to retry.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from lecture_pipeline.config import Settings, get_settings


@dataclass(frozen=True)
class TranscriptionOptions:
    model: str = "whisper-1"
    response_format: str = "text"
    language: str | None = "pt"
    prompt: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TranscriptionOptions":
        s = settings or get_settings()
        return cls(
            model=s.WHISPER_MODEL,
            response_format=s.WHISPER_RESPONSE_FORMAT,
            language=s.WHISPER_LANGUAGE or None,
            prompt=s.WHISPER_PROMPT or None,
        )


class TranscriptionService(ABC):
    """transcribe() is async; implementations must not block the event loop."""

    name: str = "base"

    @abstractmethod
    async def transcribe(self, path: Path, options: TranscriptionOptions, timeout: float) -> str:
        """
        Transcribe one audio file and return its text.
        Raises InvalidAudioFormatError, TranscriptionAuthError, RateLimitedError
        or TransientTranscriptionError.
        """
        ...

    async def aclose(self) -> None:
        """Release network clients. Default: nothing to release."""
        return None
