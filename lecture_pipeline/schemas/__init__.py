"""Pydantic schemas for API request/response and persisted progress."""
from lecture_pipeline.schemas.progress import (
    ErrorEntry,
    FinalStats,
    ProgressRecord,
    SegmentState,
)
from lecture_pipeline.schemas.session import (
    Acknowledgement,
    CompletenessReport,
    FailedChunk,
    FinalizeResponse,
    RetryRequest,
    SessionRequest,
    SplitMetadata,
    SplitRequest,
    SplitResponse,
    TranscribeChunkRequest,
    TranscriptionResult,
    UploadResponse,
)

__all__ = [
    "Acknowledgement",
    "CompletenessReport",
    "ErrorEntry",
    "FailedChunk",
    "FinalStats",
    "FinalizeResponse",
    "ProgressRecord",
    "RetryRequest",
    "SegmentState",
    "SessionRequest",
    "SplitMetadata",
    "SplitRequest",
    "SplitResponse",
    "TranscribeChunkRequest",
    "TranscriptionResult",
    "UploadResponse",
]
