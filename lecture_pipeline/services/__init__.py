"""Pipeline services: planning, retry, transcription worker, progress, aggregation, monitoring."""
