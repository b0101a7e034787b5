"""
Pipeline errors.

Input errors surface to the caller immediately. Transcription errors carry
a retryable flag that drives RetryPolicy; fatal ones also stop new
submissions for the rest of the run. StorageError aborts the run.
"""
from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class InputValidationError(PipelineError):
    """Missing or invalid caller input."""


class SessionNotFoundError(InputValidationError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class RunInProgressError(PipelineError):
    """A transcription run is still active for the session."""


class StorageError(PipelineError):
    """Filesystem failure on session artifacts. Critical: aborts the run."""


class TranscoderError(PipelineError):
    """ffmpeg/ffprobe failed for a segment or the source file."""


class SegmentValidationError(PipelineError):
    """
    Segment file failed validation.

    reason: missing | empty | too_small | too_large | unreadable
    """

    def __init__(self, reason: str, message: str, size: int | None = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.size = size


class TranscriptionError(PipelineError):
    """Base for STT service failures."""

    retryable: bool = False
    fatal: bool = False


class TransientTranscriptionError(TranscriptionError):
    """Timeout, network error or 5xx."""

    retryable = True


class RateLimitedError(TransientTranscriptionError):
    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class InvalidAudioFormatError(TranscriptionError):
    """Service rejected the file content. Retrying cannot help."""


class FatalTranscriptionError(TranscriptionError):
    """Service unusable for the whole run (bad credentials, missing model)."""

    fatal = True


class TranscriptionAuthError(FatalTranscriptionError):
    pass
