"""ASR: swappable Whisper-compatible transcription services."""
from __future__ import annotations

from typing import Any

from lecture_pipeline.config import Settings, get_settings

from .base import TranscriptionOptions, TranscriptionService
from .cloudflare import CloudflareWhisperService
from .local_whisper import LocalWhisperService, load_whisper_model
from .openai_whisper import OpenAIWhisperService


def create_transcription_service(settings: Settings | None = None, model: Any = None) -> TranscriptionService:
    """Return the service selected by ASR_BACKEND. Local uses the singleton model."""
    s = settings or get_settings()
    if s.ASR_BACKEND == "cloudflare":
        return CloudflareWhisperService(settings=s)
    if s.ASR_BACKEND == "local":
        return LocalWhisperService(model=model, settings=s)
    return OpenAIWhisperService(settings=s)


__all__ = [
    "CloudflareWhisperService",
    "LocalWhisperService",
    "OpenAIWhisperService",
    "TranscriptionOptions",
    "TranscriptionService",
    "create_transcription_service",
    "load_whisper_model",
]
