"""
Schemas for the audio-session HTTP API.

Flow: upload → split → transcribe-all (background) → poll progress →
optional retry of failed chunks → finalize (destructive).
"""
from __future__ import annotations

from pydantic import BaseModel, Field


class UploadResponse(BaseModel):
    session_id: str
    filename: str


class SplitRequest(BaseModel):
    session_id: str
    filename: str = Field(..., description="Name of the uploaded file inside the session")


class SplitMetadata(BaseModel):
    total_chunks: int
    duration_seconds: float
    processing_time_seconds: float
    chunks_per_second: float


class SplitResponse(BaseModel):
    chunks: list[str] = Field(..., description="Chunk file names in index order")
    metadata: SplitMetadata


class TranscribeChunkRequest(BaseModel):
    session_id: str
    chunk_name: str


class TranscriptionResult(BaseModel):
    """Outcome of one successfully transcribed (or cached) chunk."""

    segment_id: int
    segment_name: str
    text: str
    timestamp: str = Field(..., description="ISO-8601 capture time")
    processing_time: float = Field(0.0, description="Seconds spent on this chunk")
    cached: bool = False
    attempts: int = 0


class SessionRequest(BaseModel):
    """Body for transcribe-all and finalize."""

    session_id: str


class RetryRequest(BaseModel):
    session_id: str
    chunks: list[int] = Field(..., min_length=1, description="Chunk ids (1-based) to re-transcribe")


class Acknowledgement(BaseModel):
    success: bool = True
    message: str
    session_id: str
    chunks: list[int] | None = None


class FailedChunk(BaseModel):
    chunk_id: int
    chunk: str
    status: str
    error: str | None = None
    timestamp: float | None = None


class CompletenessReport(BaseModel):
    total_chunks: int
    transcribed_chunks: int
    lost_chunks: int
    completion_rate: float = Field(..., description="Percent, 2 decimals")
    loss_rate: float = Field(..., description="Percent, 2 decimals")
    is_complete: bool
    has_significant_loss: bool = Field(..., description="loss_rate > 20")
    failed_chunks: list[FailedChunk] = Field(default_factory=list)


class FinalizeResponse(BaseModel):
    transcription: str
    completeness: CompletenessReport
