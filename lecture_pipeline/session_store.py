"""
Session registry and on-disk layout. session_id is generated on the backend (upload).

<STORAGE_DIR>/<session_id>/
    uploads/        original recording
    chunks/         chunk_<i>.mp3
    transcripts/    chunk_<i>.txt + chunk_<i>.meta.json
    reports/        <operation>_performance_<ms>.json
    progress.json   ProgressRecord
"""
from __future__ import annotations

import asyncio
import logging
import re
import shutil
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import InputValidationError, SessionNotFoundError, StorageError
from lecture_pipeline.services.progress import ProgressTracker
from lecture_pipeline.transcript.writer import TranscriptStore

logger = logging.getLogger(__name__)

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9-]{1,64}$")
_SUBDIRS = ("uploads", "chunks", "transcripts", "reports")
_COPY_BUFSIZE = 1024 * 1024


def generate_session_id() -> str:
    """Generate a new session_id (UUID4). Backend only."""
    return str(uuid.uuid4())


def _check_session_id(session_id: str) -> str:
    session_id = (session_id or "").strip()
    if not _SESSION_ID_RE.match(session_id):
        raise InputValidationError(f"Invalid session_id: {session_id!r}")
    return session_id


@dataclass
class Session:
    """
    One processing run for one uploaded recording. Owns every artifact under base_dir.
    run_task is the active background transcription (None when idle).
    halted is set when the STT service rejected our credentials; no new submissions.
    """

    session_id: str
    base_dir: Path
    created_at: float = field(default_factory=time.time)
    run_task: asyncio.Task | None = None
    halted: bool = False
    save_metadata: bool = True
    progress: ProgressTracker = field(init=False)
    transcripts: TranscriptStore = field(init=False)

    def __post_init__(self) -> None:
        self.transcripts = TranscriptStore(self.transcripts_dir, save_metadata=self.save_metadata)
        self.progress = ProgressTracker(self.progress_path, self.transcripts)

    @property
    def uploads_dir(self) -> Path:
        return self.base_dir / "uploads"

    @property
    def chunks_dir(self) -> Path:
        return self.base_dir / "chunks"

    @property
    def transcripts_dir(self) -> Path:
        return self.base_dir / "transcripts"

    @property
    def reports_dir(self) -> Path:
        return self.base_dir / "reports"

    @property
    def progress_path(self) -> Path:
        return self.base_dir / "progress.json"

    @property
    def is_running(self) -> bool:
        return self.run_task is not None and not self.run_task.done()

    def chunk_path(self, chunk_name: str) -> Path:
        name = Path(chunk_name).name
        if not name or name != chunk_name:
            raise InputValidationError(f"Invalid chunk name: {chunk_name!r}")
        return self.chunks_dir / name


class SessionStore:
    """Explicit registry: session_id -> Session. Replaces process-wide session dicts."""

    def __init__(self, settings: Settings | None = None, storage_dir: str | Path | None = None) -> None:
        settings = settings or get_settings()
        self._settings = settings
        self._root = Path(storage_dir or settings.STORAGE_DIR)
        self._sessions: dict[str, Session] = {}

    @property
    def root(self) -> Path:
        return self._root

    def create(self, session_id: str | None = None) -> Session:
        """Create session folders. Idempotent: an existing session is returned as-is."""
        session_id = _check_session_id(session_id or generate_session_id())
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing
        base = self._root / session_id
        try:
            for sub in _SUBDIRS:
                (base / sub).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create session folders for {session_id}: {e}") from e
        session = Session(
            session_id=session_id,
            base_dir=base,
            save_metadata=self._settings.SAVE_PROCESSING_METADATA,
        )
        self._sessions[session_id] = session
        logger.info("Session created: %s (%s)", session_id, base)
        return session

    def get(self, session_id: str) -> Session:
        """
        Return the session. A session whose folder survived a restart is re-registered
        so progress and artifacts stay usable; unknown ids raise SessionNotFoundError.
        """
        session_id = _check_session_id(session_id)
        session = self._sessions.get(session_id)
        if session is not None:
            return session
        base = self._root / session_id
        if not base.is_dir():
            raise SessionNotFoundError(session_id)
        logger.info("Session %s recovered from disk", session_id)
        return self.create(session_id)

    def teardown(self, session_id: str) -> bool:
        """
        Remove all session artifacts and forget the session. Cancels a running
        transcription. Safe on partially created or already removed sessions.
        Returns True if anything existed.
        """
        session_id = _check_session_id(session_id)
        session = self._sessions.pop(session_id, None)
        if session is not None and session.is_running:
            session.run_task.cancel()
        base = self._root / session_id
        existed = session is not None or base.exists()
        if base.exists():
            try:
                shutil.rmtree(base)
            except FileNotFoundError:
                pass
            except OSError as e:
                raise StorageError(f"Could not remove session {session_id}: {e}") from e
        if existed:
            logger.info("Session removed: %s", session_id)
        return existed

    def save_upload(self, session: Session, filename: str, source: BinaryIO) -> Path:
        """Copy an uploaded stream into uploads/ under its base name. Blocking; run in executor."""
        name = Path(filename or "").name
        if not name:
            raise InputValidationError("Upload has no file name")
        limit = self._settings.MAX_UPLOAD_MB * 1024 * 1024
        dest = session.uploads_dir / name
        written = 0
        try:
            with open(dest, "wb") as out:
                while True:
                    block = source.read(_COPY_BUFSIZE)
                    if not block:
                        break
                    written += len(block)
                    if written > limit:
                        break
                    out.write(block)
        except OSError as e:
            raise StorageError(f"Could not save upload {name}: {e}") from e
        if written > limit:
            dest.unlink(missing_ok=True)
            raise InputValidationError(f"Upload exceeds {self._settings.MAX_UPLOAD_MB}MB")
        if written == 0:
            dest.unlink(missing_ok=True)
            raise InputValidationError("Upload is empty")
        logger.info("Upload saved: %s (%d bytes) for session %s", name, written, session.session_id)
        return dest

    def upload_path(self, session: Session, filename: str) -> Path:
        name = Path(filename or "").name
        path = session.uploads_dir / name
        if not name or not path.is_file():
            raise InputValidationError(f"File not found in session: {filename!r}")
        return path

    def sessions(self) -> dict[str, Session]:
        """Sessions currently held in memory, keyed by id."""
        return self._sessions
