"""
LocalWhisperService: Whisper-compatible transcription using faster-whisper.

- Model loaded ONCE at startup (singleton, injected at construction).
- Decoding runs in the default executor so the event loop stays responsive.
- The per-attempt timeout bounds the wait; the executor thread itself cannot be interrupted.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from lecture_pipeline.asr.base import TranscriptionOptions, TranscriptionService
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import (
    FatalTranscriptionError,
    InvalidAudioFormatError,
    TransientTranscriptionError,
)

logger = logging.getLogger(__name__)

# Type for shared WhisperModel (loaded at startup)
WhisperModelT = Any


def load_whisper_model(settings: Settings | None = None) -> WhisperModelT:
    """Load faster-whisper model once. Called at startup when ASR_BACKEND=local."""
    try:
        from faster_whisper import WhisperModel
    except ImportError as err:
        raise ImportError(
            "faster-whisper is required for ASR_BACKEND=local. "
            "Install with: pip install 'lecture-transcription-pipeline[local]'"
        ) from err
    s = settings or get_settings()
    logger.info("Loading faster-whisper model %s on %s (%s)", s.LOCAL_WHISPER_MODEL, s.LOCAL_WHISPER_DEVICE, s.LOCAL_WHISPER_COMPUTE_TYPE)
    return WhisperModel(
        s.LOCAL_WHISPER_MODEL,
        device=s.LOCAL_WHISPER_DEVICE,
        compute_type=s.LOCAL_WHISPER_COMPUTE_TYPE,
    )


class LocalWhisperService(TranscriptionService):
    name = "local"

    def __init__(self, model: WhisperModelT | None = None, settings: Settings | None = None) -> None:
        """
        model: shared WhisperModel instance (loaded at app startup).
        If None, every call fails fatally: the run cannot make progress without a model.
        """
        self._model = model
        self._beam_size = (settings or get_settings()).LOCAL_WHISPER_BEAM_SIZE

    def _transcribe_sync(self, path: str, options: TranscriptionOptions) -> str:
        segments, _ = self._model.transcribe(
            path,
            language=options.language,
            initial_prompt=options.prompt,
            beam_size=self._beam_size,
            vad_filter=True,
        )
        parts = [(seg.text or "").strip() for seg in segments]
        return " ".join(p for p in parts if p).strip()

    async def transcribe(self, path: Path, options: TranscriptionOptions, timeout: float) -> str:
        if self._model is None:
            raise FatalTranscriptionError("Local Whisper model is not loaded")
        loop = asyncio.get_event_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self._transcribe_sync, str(path), options),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise TransientTranscriptionError(f"Local Whisper timeout after {timeout:.0f}s") from e
        except (RuntimeError, MemoryError) as e:
            raise TransientTranscriptionError(f"Local Whisper failed: {e}") from e
        except (ValueError, OSError) as e:
            raise InvalidAudioFormatError(f"Local Whisper could not decode {Path(path).name}: {e}") from e
