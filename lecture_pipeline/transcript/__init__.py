"""Transcript artifacts: per-chunk persistence and ordered merge."""
from .merger import MergedTranscript, merge_transcripts
from .writer import TranscriptStore, atomic_write_text

__all__ = ["MergedTranscript", "TranscriptStore", "atomic_write_text", "merge_transcripts"]
