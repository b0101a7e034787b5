"""
TranscriptionWorker: validate -> repair -> transcribe -> persist, for each chunk of a session.

Chunks run in batches sized by ParallelismPlanner with a pause between batches.
Per-chunk failures are recorded in progress and never abort siblings. Two
conditions stop the run early:
- FatalTranscriptionError (bad credentials): session.halted is set; chunks not yet
  submitted are marked error without calling the service.
- StorageError: session artifacts can no longer be written; the run aborts.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable

from lecture_pipeline.asr.base import TranscriptionOptions, TranscriptionService
from lecture_pipeline.audio.transcoder import EncodingParams, Transcoder
from lecture_pipeline.audio.validation import is_repairable, validate_audio_file
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import (
    FatalTranscriptionError,
    InputValidationError,
    PipelineError,
    SegmentValidationError,
    StorageError,
    TranscoderError,
)
from lecture_pipeline.schemas.progress import FinalStats
from lecture_pipeline.schemas.session import TranscriptionResult
from lecture_pipeline.services.monitor import PerformanceMonitor
from lecture_pipeline.services.planner import ParallelismPlanner
from lecture_pipeline.services.progress import segment_id_from_name, segment_name
from lecture_pipeline.services.retry import RetryPolicy

if TYPE_CHECKING:
    from lecture_pipeline.session_store import Session

logger = logging.getLogger(__name__)

HALTED_MESSAGE = "Not submitted: transcription service rejected the run"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def list_chunk_ids(chunks_dir: Path) -> list[int]:
    """Ids of chunk_<i>.mp3 files in index order."""
    ids = []
    for path in Path(chunks_dir).glob("chunk_*.mp3"):
        segment_id = segment_id_from_name(path.name)
        if segment_id is not None:
            ids.append(segment_id)
    return sorted(ids)


class TranscriptionWorker:
    def __init__(
        self,
        service: TranscriptionService,
        transcoder: Transcoder,
        settings: Settings | None = None,
        planner: ParallelismPlanner | None = None,
        retry_policy: RetryPolicy | None = None,
        options: TranscriptionOptions | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or get_settings()
        self._service = service
        self._transcoder = transcoder
        self._planner = planner or ParallelismPlanner(self._settings)
        self._retry = retry_policy or RetryPolicy.from_settings(self._settings)
        self._options = options or TranscriptionOptions.from_settings(self._settings)
        self._sleep = sleep

    @property
    def service(self) -> TranscriptionService:
        return self._service

    def _cached(self, session: "Session", segment_id: int) -> bool:
        if not session.transcripts.exists(segment_id):
            return False
        return session.progress.is_completed(segment_id) or self._settings.SKIP_EXISTING_TRANSCRIPTIONS

    async def _repair(self, path: Path, error: SegmentValidationError) -> None:
        """Re-encode into chunk_<i>_repaired.mp3, re-validate, then replace the original."""
        repaired = path.with_name(f"{path.stem}_repaired{path.suffix}")
        logger.warning("Repairing %s (%s)", path.name, error.reason)
        try:
            await self._transcoder.transcode(path, repaired, 0.0, None, EncodingParams.from_settings(self._settings))
            validate_audio_file(repaired, self._settings)
        except (TranscoderError, SegmentValidationError) as e:
            repaired.unlink(missing_ok=True)
            raise SegmentValidationError(error.reason, f"{error} (repair failed: {e})", error.size) from e
        try:
            os.replace(repaired, path)
        except OSError as e:
            raise StorageError(f"Could not replace {path.name} with repaired file: {e}") from e
        logger.info("Repaired %s", path.name)

    async def _validated_path(self, session: "Session", name: str) -> Path:
        path = session.chunks_dir / name
        try:
            validate_audio_file(path, self._settings)
        except SegmentValidationError as e:
            if not (self._settings.REPAIR_INVALID_CHUNKS and is_repairable(e)):
                raise
            await self._repair(path, e)
        return path

    async def transcribe_segment(self, session: "Session", segment_id: int) -> TranscriptionResult:
        """
        Transcribe one chunk and persist its artifacts. Cached chunks return
        without calling the service. Raises PipelineError subclasses.
        """
        name = segment_name(segment_id)
        if self._cached(session, segment_id):
            meta = session.transcripts.read_metadata(segment_id) or {}
            logger.info("Chunk %s already transcribed, skipping", name)
            return TranscriptionResult(
                segment_id=segment_id,
                segment_name=name,
                text=session.transcripts.read(segment_id) or "",
                timestamp=meta.get("timestamp") or _now_iso(),
                processing_time=0.0,
                cached=True,
                attempts=0,
            )

        path = await self._validated_path(session, name)
        started = time.time()

        async def _attempt(attempt: int, timeout: float) -> str:
            if session.halted:
                raise FatalTranscriptionError(HALTED_MESSAGE)
            logger.debug("Transcribing %s attempt %d (timeout %.0fs)", name, attempt, timeout)
            return await self._service.transcribe(path, self._options, timeout)

        text, attempts = await self._retry.run(_attempt, label=name, sleep=self._sleep)
        result = TranscriptionResult(
            segment_id=segment_id,
            segment_name=name,
            text=text.strip(),
            timestamp=_now_iso(),
            processing_time=time.time() - started,
            cached=False,
            attempts=attempts,
        )
        session.transcripts.write(result)
        return result

    async def process_segment(
        self,
        session: "Session",
        segment_id: int,
        monitor: PerformanceMonitor | None = None,
    ) -> TranscriptionResult | None:
        """transcribe_segment plus progress bookkeeping. None on a recorded failure."""
        name = segment_name(segment_id)
        progress = session.progress
        if session.halted:
            await progress.mark_error(segment_id, HALTED_MESSAGE)
            return None

        await progress.mark_processing(segment_id)
        if monitor is not None:
            try:
                size = (session.chunks_dir / name).stat().st_size
            except OSError:
                size = None
            monitor.record_start(name, size)
        try:
            result = await self.transcribe_segment(session, segment_id)
        except StorageError as e:
            if monitor is not None:
                monitor.record_end(name, success=False, error=str(e))
            try:
                await progress.mark_pending(segment_id)
            except StorageError as reset_err:
                logger.error("Could not reset %s to pending: %s", name, reset_err)
            raise
        except FatalTranscriptionError as e:
            attempts = getattr(e, "attempts", 1)
            if monitor is not None:
                monitor.record_end(name, success=False, error=str(e))
            await progress.mark_error(segment_id, str(e), attempts)
            if not session.halted:
                session.halted = True
                logger.error("Fatal transcription error on %s, halting run: %s", name, e)
                await progress.record_failure("fatal", str(e))
            return None
        except PipelineError as e:
            attempts = getattr(e, "attempts", 1)
            logger.error("Chunk %s failed after %d attempt(s): %s", name, attempts, e)
            if monitor is not None:
                monitor.record_end(name, success=False, error=str(e))
            await progress.mark_error(segment_id, str(e), attempts)
            return None
        except Exception as e:
            logger.exception("Unexpected error on chunk %s: %s", name, e)
            if monitor is not None:
                monitor.record_end(name, success=False, error=str(e))
            await progress.mark_error(segment_id, f"Unexpected error: {e}", getattr(e, "attempts", 1))
            return None

        if monitor is not None:
            monitor.record_end(name, success=True)
        await progress.mark_completed(segment_id, result.processing_time, result.attempts)
        return result

    async def run_all(self, session: "Session") -> FinalStats:
        """Transcribe every chunk of the session (resuming a previous run if any)."""
        ids = list_chunk_ids(session.chunks_dir)
        if not ids:
            raise InputValidationError("No chunks to transcribe; split the upload first")
        await session.progress.initialize([segment_name(i) for i in ids])
        return await self._run(session, ids)

    async def run_segments(self, session: "Session", segment_ids: list[int]) -> FinalStats:
        """Transcribe specific chunks. Progress must already be reset for them."""
        return await self._run(session, sorted(set(segment_ids)))

    async def _run(self, session: "Session", ids: list[int]) -> FinalStats:
        s = self._settings
        session.halted = False
        started = time.time()
        monitor = PerformanceMonitor(session.session_id, "transcription", session.reports_dir, s)
        degree = self._planner.plan(
            self._planner.average_size(session.chunks_dir / segment_name(i) for i in ids),
            len(ids),
        )
        logger.info("Transcription of session %s: %d chunks, %d per batch", session.session_id, len(ids), degree)

        success = 0
        failed = 0
        try:
            for offset in range(0, len(ids), degree):
                batch = ids[offset:offset + degree]
                outcomes = await asyncio.gather(
                    *(self.process_segment(session, i, monitor) for i in batch),
                    return_exceptions=True,
                )
                for outcome in outcomes:
                    if isinstance(outcome, BaseException):
                        raise outcome
                    if outcome is None:
                        failed += 1
                    else:
                        success += 1
                if offset + degree < len(ids):
                    await self._sleep(s.BATCH_DELAY_SECONDS)
        except StorageError as e:
            logger.error("Critical storage error, aborting run for %s: %s", session.session_id, e)
            await session.progress.record_failure("critical", str(e))
            failed = len(ids) - success

        elapsed = time.time() - started
        stats = FinalStats(
            total_time=round(elapsed, 3),
            success_count=success,
            error_count=failed,
            chunks_per_second=round(len(ids) / elapsed, 3) if elapsed > 0 else 0.0,
        )
        await session.progress.finish(stats)
        monitor.log_final_summary()
        logger.info(
            "Transcription finished for %s: %d ok, %d failed in %.1fs",
            session.session_id, success, failed, elapsed,
        )
        return stats
