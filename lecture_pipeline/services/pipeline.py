"""
SessionPipeline: the audio-session operations behind the HTTP API.

upload -> split -> transcribe-all (background task) -> poll progress ->
retry failed chunks (background, queued behind an active run) -> finalize.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, BinaryIO, Coroutine

from lecture_pipeline.audio.splitter import Splitter
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import InputValidationError, RunInProgressError, SessionNotFoundError
from lecture_pipeline.schemas.progress import ProgressRecord
from lecture_pipeline.schemas.session import (
    Acknowledgement,
    FinalizeResponse,
    SplitMetadata,
    SplitResponse,
    TranscriptionResult,
    UploadResponse,
)
from lecture_pipeline.services.aggregator import Aggregator
from lecture_pipeline.services.monitor import PerformanceMonitor
from lecture_pipeline.services.progress import segment_id_from_name, segment_name
from lecture_pipeline.services.worker import TranscriptionWorker, list_chunk_ids
from lecture_pipeline.session_store import Session, SessionStore

logger = logging.getLogger(__name__)


class SessionPipeline:
    def __init__(
        self,
        store: SessionStore,
        splitter: Splitter,
        worker: TranscriptionWorker,
        settings: Settings | None = None,
        aggregator: Aggregator | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.store = store
        self.splitter = splitter
        self.worker = worker
        self.aggregator = aggregator or Aggregator(store, self._settings)

    async def upload(self, filename: str, stream: BinaryIO) -> UploadResponse:
        session = self.store.create()
        loop = asyncio.get_event_loop()
        try:
            path = await loop.run_in_executor(None, self.store.save_upload, session, filename, stream)
        except Exception:
            self.store.teardown(session.session_id)
            raise
        return UploadResponse(session_id=session.session_id, filename=path.name)

    async def split(self, session_id: str, filename: str) -> SplitResponse:
        session = self.store.get(session_id)
        if session.is_running:
            raise RunInProgressError(f"Transcription running for session {session_id}; cannot re-split")
        source = self.store.upload_path(session, filename)
        # new chunks invalidate any previous transcription state
        await session.progress.clear()
        session.transcripts.clear()

        monitor = PerformanceMonitor(session_id, "splitting", session.reports_dir, self._settings)
        result = await self.splitter.split(source, session.chunks_dir, monitor=monitor)
        monitor.log_final_summary()
        return SplitResponse(
            chunks=result.names,
            metadata=SplitMetadata(
                total_chunks=len(result.segments),
                duration_seconds=round(result.duration, 3),
                processing_time_seconds=round(result.processing_time, 3),
                chunks_per_second=round(result.chunks_per_second, 3),
            ),
        )

    async def transcribe_chunk(self, session_id: str, chunk_name: str) -> TranscriptionResult:
        """Single-chunk entry point. Errors propagate to the caller."""
        session = self.store.get(session_id)
        if session.is_running:
            raise RunInProgressError(f"Transcription running for session {session_id}; poll progress instead")
        path = session.chunk_path(chunk_name)
        segment_id = segment_id_from_name(chunk_name)
        if segment_id is None or path.name != segment_name(segment_id):
            raise InputValidationError(f"Invalid chunk name: {chunk_name!r}")
        if not path.is_file():
            raise InputValidationError(f"Chunk not found in session: {chunk_name}")
        result = await self.worker.transcribe_segment(session, segment_id)
        if session.progress.query() is not None:
            await session.progress.mark_completed(segment_id, result.processing_time, result.attempts)
        return result

    def _spawn(self, session: Session, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(self._guarded(session, coro))
        session.run_task = task
        return task

    async def _guarded(self, session: Session, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.info("Transcription cancelled for session %s", session.session_id)
            raise
        except Exception as e:
            logger.exception("Transcription run failed for session %s: %s", session.session_id, e)
            try:
                await session.progress.record_failure("critical", str(e))
            except Exception as record_err:
                logger.error("Could not record failure for %s: %s", session.session_id, record_err)

    async def start_transcribe_all(self, session_id: str) -> Acknowledgement:
        session = self.store.get(session_id)
        if session.is_running:
            raise RunInProgressError(f"Transcription already running for session {session_id}")
        if not list_chunk_ids(session.chunks_dir):
            raise InputValidationError("No chunks to transcribe; split the upload first")
        self._spawn(session, self.worker.run_all(session))
        return Acknowledgement(message="Transcription started in background", session_id=session_id)

    def progress(self, session_id: str) -> ProgressRecord | None:
        return self.store.get(session_id).progress.query()

    async def _retry_after(self, previous: asyncio.Task, session: Session, ids: list[int]) -> None:
        await asyncio.wait([previous])
        await session.progress.reset_for_retry(ids)
        await self.worker.run_segments(session, ids)

    async def retry(self, session_id: str, chunk_ids: list[int]) -> Acknowledgement:
        session = self.store.get(session_id)
        ids = sorted(set(chunk_ids))
        missing = [i for i in ids if i < 1 or not (session.chunks_dir / segment_name(i)).is_file()]
        if missing:
            raise InputValidationError(f"Chunks not found in session: {missing}")
        logger.info("Retrying %d chunks for session %s: %s", len(ids), session_id, ids)
        if session.is_running:
            self._spawn(session, self._retry_after(session.run_task, session, ids))
            message = "Retry queued behind the active run"
        else:
            await session.progress.reset_for_retry(ids)
            self._spawn(session, self.worker.run_segments(session, ids))
            message = "Retry started in background"
        return Acknowledgement(message=message, session_id=session_id, chunks=ids)

    async def finalize(self, session_id: str) -> FinalizeResponse:
        session = self.store.get(session_id)
        return self.aggregator.finalize(session)

    def abandon(self, session_id: str) -> None:
        if not self.store.teardown(session_id):
            raise SessionNotFoundError(session_id)

    async def shutdown(self) -> None:
        """Cancel background runs and close the transcription client."""
        tasks = [s.run_task for s in self.store.sessions().values() if s.is_running]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.worker.service.aclose()
