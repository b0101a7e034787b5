"""
Schemas for the persisted progress record (progress.json).

The record is the single source of truth for in-flight status of a session.
It is rewritten in full after every segment transition.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SegmentStatus = Literal["pending", "processing", "completed", "error"]
RunStatus = Literal["not_started", "processing", "done", "error"]


class SegmentState(BaseModel):
    """Status of one chunk. Times are unix seconds."""

    id: int = Field(..., description="1-based chunk index")
    name: str = Field(..., description="Chunk file name, e.g. chunk_3.mp3")
    status: SegmentStatus = "pending"
    start_time: float | None = None
    end_time: float | None = None
    processing_time: float | None = Field(None, description="Seconds from start_time to end_time")
    error: str | None = None
    attempts: int = 0


class ErrorEntry(BaseModel):
    """One entry of the ordered error log."""

    chunk_id: int | None = None
    chunk: str | None = None
    error: str
    timestamp: float
    kind: Literal["segment", "fatal", "critical"] = "segment"


class FinalStats(BaseModel):
    total_time: float
    success_count: int
    error_count: int
    chunks_per_second: float


class ProgressRecord(BaseModel):
    """Response body for GET /audio-session/progress and content of progress.json."""

    total: int = 0
    done: int = 0
    status: RunStatus = "not_started"
    errors: list[ErrorEntry] = Field(default_factory=list)
    current: str | None = None
    start_time: float | None = None
    estimated_time_remaining: float | None = Field(
        None, description="Seconds; derived from done/elapsed, null until one chunk completes"
    )
    chunks: list[SegmentState] = Field(default_factory=list)
    final_stats: FinalStats | None = None

    def segment(self, segment_id: int) -> SegmentState | None:
        for state in self.chunks:
            if state.id == segment_id:
                return state
        return None

    def in_flight(self) -> list[SegmentState]:
        return [s for s in self.chunks if s.status in ("pending", "processing")]
