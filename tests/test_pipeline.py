import asyncio
import io

import pytest

from conftest import FakeService, FakeTranscoder, no_sleep
from lecture_pipeline.audio.splitter import Splitter
from lecture_pipeline.errors import RunInProgressError, TranscoderError
from lecture_pipeline.services.pipeline import SessionPipeline
from lecture_pipeline.services.worker import TranscriptionWorker


def _pipeline(store, settings, service=None, transcoder=None):
    transcoder = transcoder or FakeTranscoder(duration=1500)
    service = service or FakeService()
    worker = TranscriptionWorker(service, transcoder, settings, sleep=no_sleep)
    return SessionPipeline(store, Splitter(transcoder, settings), worker, settings), service


async def _prepared(pipeline):
    upload = await pipeline.upload("aula.mp3", io.BytesIO(b"\x00" * 2048))
    await pipeline.split(upload.session_id, upload.filename)
    return upload.session_id


def test_retry_is_queued_behind_active_run(store, settings):
    pipeline, service = _pipeline(store, settings)

    async def scenario():
        session_id = await _prepared(pipeline)
        await pipeline.start_transcribe_all(session_id)
        ack = await pipeline.retry(session_id, [1])
        session = store.get(session_id)
        await session.run_task
        return session_id, ack

    session_id, ack = asyncio.run(scenario())
    assert "queued" in ack.message
    assert service.calls_for("chunk_1.mp3") == 2
    record = store.get(session_id).progress.query()
    assert record.done == 3
    assert record.status == "done"


def test_second_transcribe_all_while_running_conflicts(store, settings):
    pipeline, _ = _pipeline(store, settings)

    async def scenario():
        session_id = await _prepared(pipeline)
        await pipeline.start_transcribe_all(session_id)
        with pytest.raises(RunInProgressError):
            await pipeline.start_transcribe_all(session_id)
        with pytest.raises(RunInProgressError):
            await pipeline.finalize(session_id)
        await store.get(session_id).run_task

    asyncio.run(scenario())


def test_resplit_discards_previous_transcripts(store, settings):
    pipeline, _ = _pipeline(store, settings)

    async def scenario():
        session_id = await _prepared(pipeline)
        await pipeline.start_transcribe_all(session_id)
        await store.get(session_id).run_task
        await pipeline.split(session_id, "aula.mp3")
        return session_id

    session_id = asyncio.run(scenario())
    session = store.get(session_id)
    assert session.progress.query() is None
    assert not any(session.transcripts_dir.iterdir())


def test_failed_split_surfaces_transcoder_error(store, settings):
    pipeline, _ = _pipeline(store, settings, transcoder=FakeTranscoder(duration=1500, fail_on={"chunk_2.mp3"}))

    async def scenario():
        upload = await pipeline.upload("aula.mp3", io.BytesIO(b"\x00" * 2048))
        with pytest.raises(TranscoderError):
            await pipeline.split(upload.session_id, upload.filename)
        return upload.session_id

    session_id = asyncio.run(scenario())
    assert list(store.get(session_id).chunks_dir.iterdir()) == []


def test_shutdown_cancels_runs_and_closes_service(store, settings):
    class SlowService(FakeService):
        async def transcribe(self, path, options, timeout):
            await asyncio.sleep(10)
            return "late"

    pipeline, service = _pipeline(store, settings, service=SlowService())

    async def scenario():
        session_id = await _prepared(pipeline)
        await pipeline.start_transcribe_all(session_id)
        await asyncio.sleep(0.01)
        await pipeline.shutdown()
        return store.get(session_id).run_task

    task = asyncio.run(scenario())
    assert task.cancelled()
    assert service.closed is True


def test_single_chunk_refused_while_run_active(store, settings):
    pipeline, service = _pipeline(store, settings)

    async def scenario():
        session_id = await _prepared(pipeline)
        await pipeline.start_transcribe_all(session_id)
        with pytest.raises(RunInProgressError):
            await pipeline.transcribe_chunk(session_id, "chunk_1.mp3")
        await store.get(session_id).run_task

    asyncio.run(scenario())
    assert service.calls_for("chunk_1.mp3") == 1
