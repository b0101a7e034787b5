"""
ProgressTracker: durable progress record of one session (progress.json).

Every transition rewrites the full record (temp file + os.replace) while holding
the session's asyncio.Lock. The main transcription loop and the retry path share
the same tracker instance, so updates never interleave.
"""
from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Iterable

from pydantic import ValidationError

from lecture_pipeline.errors import StorageError
from lecture_pipeline.schemas.progress import ErrorEntry, FinalStats, ProgressRecord, SegmentState
from lecture_pipeline.transcript.writer import TranscriptStore, atomic_write_text

logger = logging.getLogger(__name__)


def segment_name(segment_id: int) -> str:
    return f"chunk_{segment_id}.mp3"


def segment_id_from_name(name: str) -> int | None:
    """chunk_12.mp3 -> 12; anything else -> None."""
    stem = Path(name).stem
    if not stem.startswith("chunk_"):
        return None
    try:
        return int(stem[len("chunk_"):])
    except ValueError:
        return None


class ProgressTracker:
    def __init__(self, path: Path, transcripts: TranscriptStore) -> None:
        self._path = Path(path)
        self._transcripts = transcripts
        self._lock = asyncio.Lock()
        self._record: ProgressRecord | None = None

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> ProgressRecord | None:
        if self._record is not None:
            return self._record
        if not self._path.is_file():
            return None
        try:
            self._record = ProgressRecord.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.warning("Unreadable progress record %s, ignoring: %s", self._path, e)
            return None
        return self._record

    def _persist(self) -> None:
        if self._record is None:
            return
        atomic_write_text(self._path, self._record.model_dump_json(indent=2))

    def _require(self) -> ProgressRecord:
        record = self._load()
        if record is None:
            raise StorageError(f"Progress record not initialized: {self._path}")
        return record

    def _state(self, record: ProgressRecord, segment_id: int) -> SegmentState:
        state = record.segment(segment_id)
        if state is None:
            state = SegmentState(id=segment_id, name=segment_name(segment_id))
            record.chunks.append(state)
            record.chunks.sort(key=lambda s: s.id)
            record.total = len(record.chunks)
        return state

    @staticmethod
    def _recount(record: ProgressRecord) -> None:
        record.total = len(record.chunks)
        record.done = sum(1 for s in record.chunks if s.status == "completed")

    async def clear(self) -> None:
        """Forget the record on disk and in memory."""
        async with self._lock:
            self._record = None
            try:
                self._path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Could not remove {self._path}: {e}") from e

    async def initialize(self, names: list[str]) -> ProgressRecord:
        """
        Start a run over the given chunk names. An existing record for the same
        chunks is resumed: processing segments go back to pending, completed ones stay.
        """
        ids = [segment_id_from_name(n) for n in names]
        if any(i is None for i in ids):
            raise ValueError(f"Unexpected chunk names: {names}")
        async with self._lock:
            now = time.time()
            existing = self._load()
            if existing is not None and {s.id for s in existing.chunks} == set(ids):
                for state in existing.chunks:
                    if state.status == "processing":
                        state.status = "pending"
                        state.start_time = None
                self._recount(existing)
                existing.status = "processing"
                existing.start_time = now
                existing.current = None
                existing.final_stats = None
                self._record = existing
                logger.info("Resuming progress for %s: %d/%d already done", self._path.parent.name, existing.done, existing.total)
            else:
                self._record = ProgressRecord(
                    total=len(names),
                    done=0,
                    status="processing",
                    start_time=now,
                    chunks=[SegmentState(id=i, name=n) for i, n in sorted(zip(ids, names))],
                )
            self._persist()
            return self._record.model_copy(deep=True)

    async def mark_processing(self, segment_id: int) -> None:
        async with self._lock:
            record = self._require()
            state = self._state(record, segment_id)
            state.status = "processing"
            state.start_time = time.time()
            state.end_time = None
            state.error = None
            record.current = state.name
            self._persist()

    async def mark_pending(self, segment_id: int) -> None:
        """Put an interrupted chunk back so a later run picks it up."""
        async with self._lock:
            record = self._require()
            state = self._state(record, segment_id)
            state.status = "pending"
            state.start_time = None
            state.end_time = None
            if record.current == state.name:
                record.current = None
            self._persist()

    async def mark_completed(self, segment_id: int, processing_time: float | None = None, attempts: int = 0) -> None:
        async with self._lock:
            record = self._require()
            state = self._state(record, segment_id)
            now = time.time()
            state.status = "completed"
            state.end_time = now
            if processing_time is None and state.start_time is not None:
                processing_time = now - state.start_time
            state.processing_time = processing_time
            state.error = None
            state.attempts = attempts
            self._recount(record)
            self._persist()

    async def mark_error(self, segment_id: int, error: str, attempts: int = 0) -> None:
        async with self._lock:
            record = self._require()
            state = self._state(record, segment_id)
            now = time.time()
            state.status = "error"
            state.end_time = now
            if state.start_time is not None:
                state.processing_time = now - state.start_time
            state.error = error
            state.attempts = attempts
            record.errors.append(ErrorEntry(chunk_id=segment_id, chunk=state.name, error=error, timestamp=now))
            self._recount(record)
            self._persist()

    async def record_failure(self, kind: str, message: str) -> None:
        """Log a run-level failure (fatal or critical). Sets run status to error."""
        async with self._lock:
            record = self._require()
            record.errors.append(ErrorEntry(error=message, timestamp=time.time(), kind=kind))
            record.status = "error"
            self._persist()

    async def finish(self, stats: FinalStats) -> None:
        """End the run. Status stays error if a fatal/critical failure was recorded."""
        async with self._lock:
            record = self._require()
            record.final_stats = stats
            record.current = None
            if record.status != "error":
                record.status = "done"
            self._persist()

    async def reset_for_retry(self, segment_ids: Iterable[int]) -> ProgressRecord:
        """Drop artifacts of the given chunks and put them back to pending."""
        async with self._lock:
            record = self._load()
            if record is None:
                record = ProgressRecord()
                self._record = record
            for segment_id in segment_ids:
                self._transcripts.delete(segment_id)
                state = self._state(record, segment_id)
                state.status = "pending"
                state.start_time = None
                state.end_time = None
                state.processing_time = None
                state.error = None
                state.attempts = 0
            self._recount(record)
            record.status = "processing"
            record.final_stats = None
            if record.start_time is None:
                record.start_time = time.time()
            self._persist()
            return record.model_copy(deep=True)

    def query(self) -> ProgressRecord | None:
        """Snapshot with derived ETA; None if the session was never started."""
        record = self._load()
        if record is None:
            return None
        snapshot = record.model_copy(deep=True)
        snapshot.estimated_time_remaining = None
        if snapshot.done > 0 and snapshot.start_time is not None:
            elapsed = max(time.time() - snapshot.start_time, 1e-6)
            rate = snapshot.done / elapsed
            snapshot.estimated_time_remaining = round(max(snapshot.total - snapshot.done, 0) / rate, 1)
        return snapshot

    def is_completed(self, segment_id: int) -> bool:
        record = self._load()
        if record is None:
            return False
        state = record.segment(segment_id)
        return state is not None and state.status == "completed"
