"""Chunk file checks before submission to the STT service."""
from __future__ import annotations

import os
from pathlib import Path

from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import SegmentValidationError

# missing and empty chunks have nothing to re-encode from
REPAIRABLE_REASONS = frozenset({"too_small", "too_large", "unreadable"})


def validate_audio_file(path: Path, settings: Settings | None = None) -> int:
    """Return the file size in bytes. Raises SegmentValidationError."""
    s = settings or get_settings()
    path = Path(path)
    if not path.is_file():
        raise SegmentValidationError("missing", f"File not found: {path.name}")
    size = path.stat().st_size
    if size == 0:
        raise SegmentValidationError("empty", f"File is empty: {path.name}", size)
    if size < s.MIN_CHUNK_BYTES:
        raise SegmentValidationError("too_small", f"File too small ({size} bytes): {path.name}", size)
    max_bytes = int(s.MAX_CHUNK_MB * 1024 * 1024)
    if size > max_bytes:
        mb = size / 1024 / 1024
        raise SegmentValidationError("too_large", f"File too large ({mb:.2f}MB > {s.MAX_CHUNK_MB}MB): {path.name}", size)
    if not os.access(path, os.R_OK):
        raise SegmentValidationError("unreadable", f"File not readable: {path.name}", size)
    return size


def is_repairable(error: SegmentValidationError) -> bool:
    return error.reason in REPAIRABLE_REASONS
