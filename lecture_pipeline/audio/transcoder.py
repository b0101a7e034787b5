"""
Transcoder: ffmpeg wrapper for chunk extraction and repair.

ffmpeg runs as an asyncio subprocess so many transcodes can be in flight at
once without blocking the event loop. Duration probing goes through pydub's
mediainfo (ffprobe) in the default executor.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import TranscoderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EncodingParams:
    """Fixed output encoding for every chunk."""

    codec: str = "libmp3lame"
    bitrate: str = "128k"
    channels: int = 1
    frequency: int = 22050
    preset: str = "fast"
    threads: int = 2

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "EncodingParams":
        s = settings or get_settings()
        return cls(
            codec=s.AUDIO_CODEC,
            bitrate=s.AUDIO_BITRATE,
            channels=s.AUDIO_CHANNELS,
            frequency=s.AUDIO_FREQUENCY,
            preset=s.FFMPEG_PRESET,
            threads=s.FFMPEG_THREADS,
        )

    def ffmpeg_args(self) -> list[str]:
        return [
            "-acodec", self.codec,
            "-ab", self.bitrate,
            "-ac", str(self.channels),
            "-ar", str(self.frequency),
            "-preset", self.preset,
            "-threads", str(self.threads),
        ]


class Transcoder(ABC):
    """Audio re-encoding backend. Implementations must not block the event loop."""

    @abstractmethod
    async def transcode(
        self,
        source: Path,
        output: Path,
        start: float = 0.0,
        duration: float | None = None,
        params: EncodingParams | None = None,
    ) -> Path:
        """Encode [start, start+duration) of source into output. Raises TranscoderError."""
        ...

    @abstractmethod
    async def probe_duration(self, source: Path) -> float:
        """Source duration in seconds. Raises TranscoderError."""
        ...


def _probe_duration_sync(path: str) -> float:
    from pydub.utils import mediainfo

    info = mediainfo(path)
    raw = info.get("duration") if info else None
    if raw in (None, "", "N/A"):
        raise TranscoderError(f"Could not determine duration of {path}")
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise TranscoderError(f"Invalid duration {raw!r} for {path}") from e


class FFmpegTranscoder(Transcoder):
    def __init__(self, binary: str | None = None, settings: Settings | None = None) -> None:
        s = settings or get_settings()
        self._binary = binary or s.FFMPEG_BINARY
        self._default_params = EncodingParams.from_settings(s)

    def build_command(
        self,
        source: Path,
        output: Path,
        start: float = 0.0,
        duration: float | None = None,
        params: EncodingParams | None = None,
    ) -> list[str]:
        params = params or self._default_params
        cmd = [self._binary, "-y", "-hide_banner", "-loglevel", "error"]
        if start > 0:
            cmd += ["-ss", f"{start:.3f}"]
        cmd += ["-i", str(source)]
        if duration is not None:
            cmd += ["-t", f"{duration:.3f}"]
        cmd += params.ffmpeg_args()
        cmd += ["-avoid_negative_ts", "make_zero", str(output)]
        return cmd

    async def transcode(
        self,
        source: Path,
        output: Path,
        start: float = 0.0,
        duration: float | None = None,
        params: EncodingParams | None = None,
    ) -> Path:
        cmd = self.build_command(source, output, start, duration, params)
        logger.debug("ffmpeg: %s", " ".join(cmd))
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscoderError(f"Could not start {self._binary}: {e}") from e
        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = (stderr or b"").decode("utf-8", errors="replace").strip()[-500:]
            raise TranscoderError(f"ffmpeg exited with {proc.returncode} for {Path(output).name}: {detail}")
        if not Path(output).is_file():
            raise TranscoderError(f"ffmpeg produced no output: {output}")
        return Path(output)

    async def probe_duration(self, source: Path) -> float:
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, _probe_duration_sync, str(source))
        except TranscoderError:
            raise
        except Exception as e:
            raise TranscoderError(f"Could not probe {source}: {e}") from e
