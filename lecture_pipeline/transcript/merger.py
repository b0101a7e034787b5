"""
Ordered concatenation of per-chunk transcripts.

Chunks are always joined in index order, never completion order. A chunk
without an artifact is reported as missing and simply left out.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from lecture_pipeline.transcript.writer import TranscriptStore


@dataclass
class MergedTranscript:
    text: str
    present: list[int] = field(default_factory=list)
    missing: list[int] = field(default_factory=list)


def merge_transcripts(store: TranscriptStore, segment_ids: Iterable[int], separator: str = "\n") -> MergedTranscript:
    parts: list[str] = []
    present: list[int] = []
    missing: list[int] = []
    for segment_id in sorted(set(segment_ids)):
        text = store.read(segment_id)
        if text is None:
            missing.append(segment_id)
            continue
        present.append(segment_id)
        if text:
            parts.append(text)
    return MergedTranscript(text=separator.join(parts), present=present, missing=missing)
