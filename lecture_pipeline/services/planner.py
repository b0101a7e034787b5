"""ParallelismPlanner: how many chunks to transcribe at once, by average chunk size."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from lecture_pipeline.config import Settings, get_settings

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass(frozen=True)
class Tier:
    name: str
    limit_bytes: float  # exclusive upper bound on average size
    max_parallel: int


class ParallelismPlanner:
    def __init__(self, settings: Settings | None = None) -> None:
        s = settings or get_settings()
        self.tiers = (
            Tier("small", s.SMALL_CHUNK_LIMIT_MB * _MB, s.SMALL_CHUNK_MAX_PARALLEL),
            Tier("medium", s.MEDIUM_CHUNK_LIMIT_MB * _MB, s.MEDIUM_CHUNK_MAX_PARALLEL),
            Tier("large", float("inf"), s.LARGE_CHUNK_MAX_PARALLEL),
        )

    def tier_for(self, avg_size: float) -> Tier:
        for tier in self.tiers:
            if avg_size < tier.limit_bytes:
                return tier
        return self.tiers[-1]

    def plan(self, avg_size: float, total: int) -> int:
        """Concurrency degree, clamped to total. 0 only when there is no work."""
        if total <= 0:
            return 0
        tier = self.tier_for(avg_size)
        degree = max(1, min(tier.max_parallel, total))
        logger.info(
            "Parallelism: avg chunk %.2fMB -> %s tier, %d concurrent (%d chunks)",
            avg_size / _MB, tier.name, degree, total,
        )
        return degree

    @staticmethod
    def average_size(paths: Iterable[Path]) -> float:
        """Mean size in bytes of the readable files; 0.0 if none."""
        sizes: list[int] = []
        for path in paths:
            try:
                sizes.append(Path(path).stat().st_size)
            except OSError as e:
                logger.debug("Skipping %s for size average: %s", path, e)
        return sum(sizes) / len(sizes) if sizes else 0.0
