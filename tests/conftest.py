"""Pytest configuration helpers and fakes for ffmpeg and the STT service."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path


def _ensure_repo_on_path() -> None:
    """Allow tests to import from repo modules without setting PYTHONPATH."""
    repo_root = Path(__file__).resolve().parents[1]
    path_str = str(repo_root)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


_ensure_repo_on_path()

import pytest  # noqa: E402

from lecture_pipeline.asr.base import TranscriptionOptions, TranscriptionService  # noqa: E402
from lecture_pipeline.audio.transcoder import EncodingParams, Transcoder  # noqa: E402
from lecture_pipeline.config import Settings  # noqa: E402
from lecture_pipeline.errors import TranscoderError  # noqa: E402
from lecture_pipeline.session_store import SessionStore  # noqa: E402


class FakeTranscoder(Transcoder):
    """Writes `size` bytes instead of running ffmpeg. delays/fail_on keyed by output file name."""

    def __init__(self, duration: float = 1500.0, size: int = 4096, delays=None, fail_on=None) -> None:
        self.duration = duration
        self.size = size
        self.delays = delays or {}
        self.fail_on = set(fail_on or ())
        self.calls: list[tuple[str, float, float | None]] = []
        self.completed: list[str] = []

    async def transcode(self, source, output, start=0.0, duration=None, params: EncodingParams | None = None):
        output = Path(output)
        self.calls.append((output.name, start, duration))
        await asyncio.sleep(self.delays.get(output.name, 0))
        if output.name in self.fail_on:
            raise TranscoderError(f"ffmpeg exited with 1 for {output.name}")
        output.write_bytes(b"\xff" * self.size)
        self.completed.append(output.name)
        return output

    async def probe_duration(self, source) -> float:
        return self.duration


class FakeService(TranscriptionService):
    """
    outcomes: chunk name -> list of str | Exception, consumed one per call.
    Unlisted chunks (or exhausted lists) return "text of <name>".
    """

    name = "fake"

    def __init__(self, outcomes=None) -> None:
        self.outcomes = {k: list(v) for k, v in (outcomes or {}).items()}
        self.calls: list[tuple[str, float]] = []
        self.closed = False

    async def transcribe(self, path, options: TranscriptionOptions, timeout: float) -> str:
        name = Path(path).name
        self.calls.append((name, timeout))
        await asyncio.sleep(0)
        queue = self.outcomes.get(name)
        if queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"text of {name}"

    def calls_for(self, name: str) -> int:
        return sum(1 for n, _ in self.calls if n == name)

    async def aclose(self) -> None:
        self.closed = True


async def no_sleep(_seconds: float) -> None:
    return None


def write_chunks(session, count: int, size: int = 4096) -> list[Path]:
    paths = []
    for i in range(1, count + 1):
        path = session.chunks_dir / f"chunk_{i}.mp3"
        path.write_bytes(b"\xff" * size)
        paths.append(path)
    return paths


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(
        STORAGE_DIR=str(tmp_path / "sessions"),
        BATCH_DELAY_SECONDS=0.0,
        RETRY_BASE_DELAY_SECONDS=0.0,
        ENABLE_DETAILED_LOGS=False,
        OPENAI_API_KEY="sk-test",
    )


@pytest.fixture()
def store(settings) -> SessionStore:
    return SessionStore(settings)
