"""
Splitter: cut a long recording into fixed-duration chunks.

Chunk i (1-based) covers [(i-1)*W, min(i*W, D)). Transcodes run in batches of
at most max_parallel; within a batch they run concurrently, batches run one
after another. Any failure fails the whole split and removes what was produced.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from lecture_pipeline.audio.transcoder import EncodingParams, Transcoder
from lecture_pipeline.config import Settings, get_settings
from lecture_pipeline.errors import InputValidationError, TranscoderError
from lecture_pipeline.services.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentSpec:
    index: int  # 1-based, contiguous
    start: float
    duration: float
    output_path: Path

    @property
    def name(self) -> str:
        return self.output_path.name


@dataclass
class SplitResult:
    segments: list[SegmentSpec]
    duration: float
    processing_time: float
    chunks_per_second: float

    @property
    def names(self) -> list[str]:
        return [s.name for s in self.segments]


def plan_segments(total_duration: float, window: float, output_dir: Path) -> list[SegmentSpec]:
    """SegmentSpecs covering [0, total_duration). Last one holds the remainder."""
    if window <= 0:
        raise InputValidationError(f"Chunk duration must be positive, got {window}")
    if total_duration <= 0:
        return []
    # rounding keeps 1200.0000001 / 600 from producing a sliver third chunk
    count = math.ceil(round(total_duration / window, 6))
    specs: list[SegmentSpec] = []
    for i in range(count):
        start = i * window
        duration = min(window, total_duration - start)
        specs.append(
            SegmentSpec(
                index=i + 1,
                start=start,
                duration=duration,
                output_path=Path(output_dir) / f"chunk_{i + 1}.mp3",
            )
        )
    return specs


def _remove_outputs(specs: list[SegmentSpec]) -> None:
    for spec in specs:
        try:
            spec.output_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partial chunk %s: %s", spec.output_path, e)


class Splitter:
    def __init__(self, transcoder: Transcoder, settings: Settings | None = None) -> None:
        self._transcoder = transcoder
        self._settings = settings or get_settings()

    async def split(
        self,
        source: Path,
        output_dir: Path,
        duration: float | None = None,
        window: float | None = None,
        max_parallel: int | None = None,
        params: EncodingParams | None = None,
        on_segment: Callable[[SegmentSpec], None] | None = None,
        monitor: PerformanceMonitor | None = None,
    ) -> SplitResult:
        """
        Split source into chunk_<i>.mp3 files under output_dir.
        duration: probed from the source when not given.
        Raises TranscoderError on any failed transcode (no partial result).
        """
        s = self._settings
        window = window or s.CHUNK_DURATION_SECONDS
        max_parallel = max(1, max_parallel or s.MAX_PARALLEL_SPLITTING)
        params = params or EncodingParams.from_settings(s)
        if duration is None:
            duration = await self._transcoder.probe_duration(source)
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        for stale in output_dir.glob("chunk_*.mp3"):
            stale.unlink(missing_ok=True)

        specs = plan_segments(duration, window, output_dir)
        logger.info(
            "Splitting %s: %.1fs into %d chunks of %ss (%d parallel)",
            Path(source).name, duration, len(specs), window, max_parallel,
        )
        started = time.time()

        async def _one(spec: SegmentSpec) -> SegmentSpec:
            if monitor is not None:
                monitor.record_start(spec.name)
            try:
                await self._transcoder.transcode(source, spec.output_path, spec.start, spec.duration, params)
            except Exception as e:
                if monitor is not None:
                    monitor.record_end(spec.name, success=False, error=str(e))
                raise
            if monitor is not None:
                monitor.record_end(spec.name, success=True)
            if on_segment is not None:
                on_segment(spec)
            return spec

        for offset in range(0, len(specs), max_parallel):
            batch = specs[offset:offset + max_parallel]
            outcomes = await asyncio.gather(*(_one(spec) for spec in batch), return_exceptions=True)
            failures = [o for o in outcomes if isinstance(o, BaseException)]
            if failures:
                _remove_outputs(specs)
                first = failures[0]
                logger.error("Split failed for %s: %s", Path(source).name, first)
                if isinstance(first, TranscoderError):
                    raise first
                raise TranscoderError(f"Split failed: {first}") from first

        elapsed = time.time() - started
        rate = len(specs) / elapsed if elapsed > 0 else float(len(specs))
        logger.info("Split done: %d chunks in %.2fs (%.2f chunks/s)", len(specs), elapsed, rate)
        return SplitResult(segments=specs, duration=duration, processing_time=elapsed, chunks_per_second=rate)
