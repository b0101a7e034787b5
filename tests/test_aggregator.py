import asyncio

import pytest

from conftest import FakeService, FakeTranscoder, no_sleep, write_chunks
from lecture_pipeline.errors import RunInProgressError
from lecture_pipeline.schemas.progress import FinalStats
from lecture_pipeline.schemas.session import TranscriptionResult
from lecture_pipeline.services.aggregator import Aggregator, completeness
from lecture_pipeline.services.worker import TranscriptionWorker


def _write(session, segment_id, text):
    session.transcripts.write(
        TranscriptionResult(segment_id=segment_id, segment_name=f"chunk_{segment_id}.mp3", text=text, timestamp="t")
    )


def test_completeness_ten_segments_eight_ok():
    report = completeness(10, 8)
    assert report.completion_rate == 80.0
    assert report.loss_rate == 20.0
    assert report.lost_chunks == 2
    assert report.has_significant_loss is False
    assert report.is_complete is False


def test_completeness_five_segments_three_ok():
    report = completeness(5, 3)
    assert report.completion_rate == 60.0
    assert report.loss_rate == 40.0
    assert report.has_significant_loss is True


def test_completeness_rounds_to_two_decimals():
    report = completeness(3, 2)
    assert report.completion_rate == 66.67
    assert report.loss_rate == 33.33


def test_completeness_of_nothing_is_zero_not_error():
    report = completeness(0, 0)
    assert report.completion_rate == 0
    assert report.is_complete is False
    assert report.has_significant_loss is False


def test_aggregate_concatenates_in_index_order(store, settings):
    session = store.create()
    write_chunks(session, 12)
    # written out of order; chunk_10 must come after chunk_2
    for segment_id in (10, 2, 1, 12, 11, 3, 4, 5, 6, 7, 8, 9):
        _write(session, segment_id, f"part {segment_id}")

    response = Aggregator(store, settings).aggregate(session)
    assert response.transcription.split("\n") == [f"part {i}" for i in range(1, 13)]
    assert response.completeness.is_complete is True
    assert response.completeness.completion_rate == 100.0


def test_finalize_reports_missing_chunks_and_tears_down(store, settings):
    session = store.create()
    write_chunks(session, 5)

    async def progress():
        await session.progress.initialize([f"chunk_{i}.mp3" for i in range(1, 6)])
        for segment_id in (1, 2, 4):
            _write(session, segment_id, f"part {segment_id}")
            await session.progress.mark_completed(segment_id)
        await session.progress.mark_error(3, "Whisper API 400")
        await session.progress.finish(FinalStats(total_time=1.0, success_count=3, error_count=1, chunks_per_second=3.0))

    asyncio.run(progress())
    response = Aggregator(store, settings).finalize(session)

    assert response.transcription == "part 1\npart 2\npart 4"
    report = response.completeness
    assert report.total_chunks == 5
    assert report.transcribed_chunks == 3
    assert report.has_significant_loss is True
    failed = {c.chunk_id: c for c in report.failed_chunks}
    assert failed[3].status == "error"
    assert failed[3].error == "Whisper API 400"
    assert failed[5].status == "pending"
    assert not session.base_dir.exists()
    assert session.session_id not in store.sessions()


def test_finalize_refused_while_run_active(store, settings):
    session = store.create()

    async def scenario():
        session.run_task = asyncio.create_task(asyncio.sleep(10))
        try:
            with pytest.raises(RunInProgressError):
                Aggregator(store, settings).finalize(session)
        finally:
            session.run_task.cancel()

    asyncio.run(scenario())
    assert session.base_dir.exists()


def test_custom_separator(store, settings):
    settings.TRANSCRIPT_SEPARATOR = " "
    session = store.create()
    write_chunks(session, 2)
    _write(session, 1, "a")
    _write(session, 2, "b")
    assert Aggregator(store, settings).aggregate(session).transcription == "a b"


def test_retry_before_any_run_still_counts_every_chunk(store, settings):
    session = store.create()
    write_chunks(session, 5)
    worker = TranscriptionWorker(FakeService(), FakeTranscoder(), settings, sleep=no_sleep)

    async def scenario():
        await session.progress.reset_for_retry([1])
        await worker.run_segments(session, [1])

    asyncio.run(scenario())
    report = Aggregator(store, settings).aggregate(session).completeness
    assert report.total_chunks == 5
    assert report.transcribed_chunks == 1
    assert report.completion_rate == 20.0
    assert report.is_complete is False
    assert [c.chunk_id for c in report.failed_chunks] == [2, 3, 4, 5]
    assert report.failed_chunks[0].status == "unknown"


def test_finalize_refused_while_chunks_still_pending(store, settings):
    session = store.create()
    write_chunks(session, 3)

    async def interrupted_run():
        await session.progress.initialize([f"chunk_{i}.mp3" for i in range(1, 4)])
        _write(session, 1, "part 1")
        await session.progress.mark_completed(1)

    asyncio.run(interrupted_run())
    with pytest.raises(RunInProgressError):
        Aggregator(store, settings).finalize(session)
    assert session.base_dir.exists()


def test_finalize_right_after_split_reports_zero(store, settings):
    session = store.create()
    write_chunks(session, 2)
    report = Aggregator(store, settings).finalize(session).completeness
    assert report.total_chunks == 2
    assert report.completion_rate == 0
    assert report.has_significant_loss is True
