"""
Aggregator: final transcript + completeness report, then session teardown.

Missing chunks never fail aggregation; 0% completion is a valid result.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import RunInProgressError
from lecture_pipeline.schemas.progress import ProgressRecord
from lecture_pipeline.schemas.session import CompletenessReport, FailedChunk, FinalizeResponse
from lecture_pipeline.services.progress import segment_name
from lecture_pipeline.services.worker import list_chunk_ids
from lecture_pipeline.transcript.merger import merge_transcripts

if TYPE_CHECKING:
    from lecture_pipeline.session_store import Session, SessionStore

logger = logging.getLogger(__name__)

SIGNIFICANT_LOSS_PERCENT = 20.0


def completeness(total: int, transcribed: int, failed: list[FailedChunk] | None = None) -> CompletenessReport:
    """completion = round(t/total*100, 2); loss = round(100 - completion, 2); significant iff loss > 20."""
    transcribed = min(transcribed, total)
    rate = transcribed / total * 100 if total > 0 else 0.0
    loss = 100.0 - rate if total > 0 else 0.0
    lost = total - transcribed
    return CompletenessReport(
        total_chunks=total,
        transcribed_chunks=transcribed,
        lost_chunks=lost,
        completion_rate=round(rate, 2),
        loss_rate=round(loss, 2),
        is_complete=total > 0 and lost == 0,
        has_significant_loss=round(loss, 2) > SIGNIFICANT_LOSS_PERCENT,
        failed_chunks=failed or [],
    )


def _failed_chunks(record: ProgressRecord | None, missing: list[int]) -> list[FailedChunk]:
    out: list[FailedChunk] = []
    for segment_id in missing:
        state = record.segment(segment_id) if record is not None else None
        if state is None:
            out.append(FailedChunk(chunk_id=segment_id, chunk=segment_name(segment_id), status="unknown"))
            continue
        out.append(
            FailedChunk(
                chunk_id=state.id,
                chunk=state.name,
                status=state.status,
                error=state.error,
                timestamp=state.end_time,
            )
        )
    return out


class Aggregator:
    def __init__(self, store: "SessionStore", settings: Settings | None = None) -> None:
        self._store = store
        self._settings = settings or get_settings()

    def aggregate(self, session: "Session") -> FinalizeResponse:
        """Merge transcripts in index order and compute completeness. Non-destructive."""
        if session.is_running:
            raise RunInProgressError(f"Transcription still running for session {session.session_id}")
        record = session.progress.query()
        if record is not None and record.status == "processing" and record.in_flight():
            raise RunInProgressError(
                f"Session {session.session_id} has {len(record.in_flight())} chunks still pending; "
                "resume with transcribe-all first"
            )
        # chunk files on disk count even if no run ever recorded them
        ids = set(list_chunk_ids(session.chunks_dir))
        if record is not None:
            ids.update(s.id for s in record.chunks)
        ids = sorted(ids)
        merged = merge_transcripts(session.transcripts, ids, self._settings.TRANSCRIPT_SEPARATOR)
        report = completeness(len(ids), len(merged.present), _failed_chunks(record, merged.missing))
        logger.info(
            "Session %s: %d/%d chunks transcribed (%.2f%%)",
            session.session_id, report.transcribed_chunks, report.total_chunks, report.completion_rate,
        )
        if report.has_significant_loss:
            logger.warning(
                "Significant loss in session %s: %.2f%% of chunks missing (%s)",
                session.session_id, report.loss_rate, [c.chunk_id for c in report.failed_chunks],
            )
        return FinalizeResponse(transcription=merged.text, completeness=report)

    def finalize(self, session: "Session") -> FinalizeResponse:
        """aggregate() then tear the session down. Destructive."""
        response = self.aggregate(session)
        self._store.teardown(session.session_id)
        return response
