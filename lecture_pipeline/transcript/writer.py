"""
TranscriptStore: per-chunk transcript artifacts of one session.

transcripts/chunk_<id>.txt        transcribed text (stripped, trailing newline)
transcripts/chunk_<id>.meta.json  timestamp, processing time, text length, attempts

The .txt file is the completion artifact: its existence means the chunk was
transcribed. Writes go through a temp file + os.replace so a crash never
leaves a truncated transcript behind.
"""
from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from lecture_pipeline.errors import StorageError
from lecture_pipeline.schemas.session import TranscriptionResult

logger = logging.getLogger(__name__)


def atomic_write_text(path: Path, text: str) -> None:
    """Write text to path via a sibling temp file. Raises StorageError."""
    tmp = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, path)
    except OSError as e:
        try:
            tmp.unlink(missing_ok=True)
        except OSError:
            pass
        raise StorageError(f"Could not write {path}: {e}") from e


class TranscriptStore:
    def __init__(self, directory: Path, save_metadata: bool = True) -> None:
        self._dir = Path(directory)
        self._save_metadata = save_metadata

    @property
    def directory(self) -> Path:
        return self._dir

    def text_path(self, segment_id: int) -> Path:
        return self._dir / f"chunk_{segment_id}.txt"

    def meta_path(self, segment_id: int) -> Path:
        return self._dir / f"chunk_{segment_id}.meta.json"

    def exists(self, segment_id: int) -> bool:
        return self.text_path(segment_id).is_file()

    def write(self, result: TranscriptionResult) -> Path:
        """Persist text (and metadata when enabled). Returns the .txt path."""
        self._dir.mkdir(parents=True, exist_ok=True)
        path = self.text_path(result.segment_id)
        atomic_write_text(path, result.text.strip() + "\n")
        if self._save_metadata:
            meta = {
                "chunk": result.segment_name,
                "timestamp": result.timestamp,
                "processing_time": round(result.processing_time, 3),
                "text_length": len(result.text.strip()),
                "attempts": result.attempts,
            }
            atomic_write_text(self.meta_path(result.segment_id), json.dumps(meta, ensure_ascii=False, indent=2))
        return path

    def read(self, segment_id: int) -> str | None:
        """Return stripped transcript text, or None if the chunk has no artifact."""
        path = self.text_path(segment_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return f.read().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Could not read transcript %s: %s", path, e)
            return None

    def read_metadata(self, segment_id: int) -> dict[str, Any] | None:
        path = self.meta_path(segment_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read transcript metadata %s: %s", path, e)
            return None

    def clear(self) -> None:
        """Remove every transcript artifact (a new split invalidates them)."""
        if not self._dir.is_dir():
            return
        for path in self._dir.glob("chunk_*"):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Could not delete {path}: {e}") from e

    def delete(self, segment_id: int) -> None:
        """Remove text and metadata for one chunk. Missing files are fine."""
        for path in (self.text_path(segment_id), self.meta_path(segment_id)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StorageError(f"Could not delete {path}: {e}") from e
