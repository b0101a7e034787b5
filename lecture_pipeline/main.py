"""
FastAPI app: lecture audio transcription pipeline.

HTTP API (prefix /audio-session):
  POST   /upload          multipart "audio" -> { session_id, filename }
  POST   /split           { session_id, filename } -> { chunks, metadata }
  POST   /transcribe      { session_id, chunk_name } -> single chunk result
  POST   /transcribe-all  { session_id } -> ack; runs in background
  GET    /progress        ?session_id= -> progress record | { status: "not_started" }
  POST   /retry           { session_id, chunks: [int] } -> ack; runs in background
  POST   /finalize        { session_id } -> { transcription, completeness }; deletes the session
  DELETE /{session_id}    abandon session
"""
from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile

from lecture_pipeline.asr import create_transcription_service, load_whisper_model
from lecture_pipeline.audio.splitter import Splitter
from lecture_pipeline.audio.transcoder import FFmpegTranscoder
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import (
    InputValidationError,
    InvalidAudioFormatError,
    PipelineError,
    RunInProgressError,
    SegmentValidationError,
    SessionNotFoundError,
    TranscriptionError,
)
from lecture_pipeline.schemas import (
    Acknowledgement,
    FinalizeResponse,
    RetryRequest,
    SessionRequest,
    SplitRequest,
    SplitResponse,
    TranscribeChunkRequest,
    TranscriptionResult,
    UploadResponse,
)
from lecture_pipeline.services.pipeline import SessionPipeline
from lecture_pipeline.services.worker import TranscriptionWorker
from lecture_pipeline.session_store import SessionStore

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Apply LOG_LEVEL to the root logger; add a file handler when LOG_FILE is set."""
    s = settings or get_settings()
    level = getattr(logging, (s.LOG_LEVEL or "INFO").upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if s.LOG_FILE:
        handlers.append(logging.FileHandler(s.LOG_FILE, encoding="utf-8"))
    logging.basicConfig(level=level, format=_LOG_FORMAT, handlers=handlers)
    logging.getLogger().setLevel(level)


def build_pipeline(settings: Settings | None = None, whisper_model: Any = None) -> SessionPipeline:
    """Wire store, transcoder, STT service and worker from settings."""
    s = settings or get_settings()
    transcoder = FFmpegTranscoder(settings=s)
    service = create_transcription_service(s, whisper_model)
    return SessionPipeline(
        store=SessionStore(s),
        splitter=Splitter(transcoder, s),
        worker=TranscriptionWorker(service, transcoder, s),
        settings=s,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings)
    # Load Whisper model once at startup when using local backend (singleton)
    if settings.ASR_BACKEND == "local":
        app.state.whisper_model = load_whisper_model(settings)
    else:
        app.state.whisper_model = None
    app.state.pipeline = build_pipeline(settings, app.state.whisper_model)
    logger.info("Pipeline ready: backend=%s storage=%s", settings.ASR_BACKEND, settings.STORAGE_DIR)
    yield
    await app.state.pipeline.shutdown()
    app.state.pipeline = None
    app.state.whisper_model = None


app = FastAPI(
    title="Lecture Transcription Pipeline",
    description="Split long recordings, transcribe chunks in parallel, merge with completeness report",
    lifespan=lifespan,
)


def get_pipeline(request: Request) -> SessionPipeline:
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise RuntimeError("App not initialized (lifespan not run?)")
    return pipeline


def _http_error(e: PipelineError) -> HTTPException:
    if isinstance(e, SessionNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InputValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, RunInProgressError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (SegmentValidationError, InvalidAudioFormatError)):
        return HTTPException(status_code=422, detail=str(e))
    if isinstance(e, TranscriptionError):
        return HTTPException(status_code=502, detail=str(e))
    logger.error("Pipeline error: %s", e)
    return HTTPException(status_code=500, detail=str(e))


@app.get("/health")
async def health() -> dict:
    return {"status": "ok", "asr_backend": get_settings().ASR_BACKEND}


@app.post("/audio-session/upload", response_model=UploadResponse)
async def upload(
    audio: UploadFile = File(...),
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> UploadResponse:
    """Store the recording in a new session. session_id is generated here."""
    try:
        return await pipeline.upload(audio.filename or "", audio.file)
    except PipelineError as e:
        raise _http_error(e)
    finally:
        await audio.close()


@app.post("/audio-session/split", response_model=SplitResponse)
async def split(request: SplitRequest, pipeline: SessionPipeline = Depends(get_pipeline)) -> SplitResponse:
    try:
        return await pipeline.split(request.session_id, request.filename)
    except PipelineError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Split failed: %s", e)
        raise HTTPException(status_code=500, detail="Split failed")


@app.post("/audio-session/transcribe", response_model=TranscriptionResult)
async def transcribe_chunk(
    request: TranscribeChunkRequest,
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> TranscriptionResult:
    try:
        return await pipeline.transcribe_chunk(request.session_id, request.chunk_name)
    except PipelineError as e:
        raise _http_error(e)
    except Exception as e:
        logger.exception("Transcription failed: %s", e)
        raise HTTPException(status_code=502, detail="Transcription failed")


@app.post("/audio-session/transcribe-all", response_model=Acknowledgement)
async def transcribe_all(request: SessionRequest, pipeline: SessionPipeline = Depends(get_pipeline)) -> Acknowledgement:
    """Start transcription of every chunk in the background. Poll /progress."""
    try:
        return await pipeline.start_transcribe_all(request.session_id)
    except PipelineError as e:
        raise _http_error(e)


@app.get("/audio-session/progress")
async def progress(
    session_id: str = Query(...),
    pipeline: SessionPipeline = Depends(get_pipeline),
) -> dict:
    try:
        record = pipeline.progress(session_id)
    except PipelineError as e:
        raise _http_error(e)
    if record is None:
        return {"status": "not_started"}
    return record.model_dump()


@app.post("/audio-session/retry", response_model=Acknowledgement)
async def retry(request: RetryRequest, pipeline: SessionPipeline = Depends(get_pipeline)) -> Acknowledgement:
    """Re-transcribe failed or stuck chunks in the background."""
    try:
        return await pipeline.retry(request.session_id, request.chunks)
    except PipelineError as e:
        raise _http_error(e)


@app.post("/audio-session/finalize", response_model=FinalizeResponse)
async def finalize(request: SessionRequest, pipeline: SessionPipeline = Depends(get_pipeline)) -> FinalizeResponse:
    """Merge transcripts, report completeness and delete the session. Refused while a run is active."""
    try:
        return await pipeline.finalize(request.session_id)
    except PipelineError as e:
        raise _http_error(e)


@app.delete("/audio-session/{session_id}")
async def abandon(session_id: str, pipeline: SessionPipeline = Depends(get_pipeline)) -> dict:
    try:
        pipeline.abandon(session_id)
    except PipelineError as e:
        raise _http_error(e)
    return {"success": True, "session_id": session_id}
