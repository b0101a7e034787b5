"""Lecture audio transcription pipeline: split, transcribe in parallel, merge."""
