"""Audio: ffmpeg transcoding, fixed-window splitting, chunk validation."""
from .splitter import SegmentSpec, Splitter, SplitResult, plan_segments
from .transcoder import EncodingParams, FFmpegTranscoder, Transcoder
from .validation import is_repairable, validate_audio_file

__all__ = [
    "EncodingParams",
    "FFmpegTranscoder",
    "SegmentSpec",
    "SplitResult",
    "Splitter",
    "Transcoder",
    "is_repairable",
    "plan_segments",
    "validate_audio_file",
]
