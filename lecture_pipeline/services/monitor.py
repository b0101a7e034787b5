"""
PerformanceMonitor: timing and throughput of one operation (splitting | transcription).

Purely observational. Nothing here raises into the caller: report I/O failures
are logged and swallowed.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable

from lecture_pipeline.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class UnitMetrics:
    name: str
    size: int | None = None
    start_time: float = 0.0
    end_time: float | None = None
    duration: float | None = None
    success: bool | None = None
    error: str | None = None


@dataclass
class PerformanceWarning:
    timestamp: float
    message: str


@dataclass
class _Metrics:
    operation: str
    session_id: str
    start_time: float
    units: list[UnitMetrics] = field(default_factory=list)
    total_processed: int = 0
    errors: int = 0
    warnings: list[PerformanceWarning] = field(default_factory=list)


class PerformanceMonitor:
    def __init__(
        self,
        session_id: str,
        operation: str,
        reports_dir: Path | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        self._reports_dir = Path(reports_dir) if reports_dir else None
        self.operation = operation
        self.session_id = session_id
        self.metrics = _Metrics(operation=operation, session_id=session_id, start_time=clock())

    @property
    def expected_rate(self) -> float:
        if self.operation == "splitting":
            return self._settings.EXPECTED_SPLIT_CHUNKS_PER_SECOND
        return self._settings.EXPECTED_TRANSCRIBE_CHUNKS_PER_SECOND

    @property
    def warnings(self) -> list[str]:
        return [w.message for w in self.metrics.warnings]

    def _find(self, name: str) -> UnitMetrics | None:
        for unit in reversed(self.metrics.units):
            if unit.name == name:
                return unit
        return None

    def record_start(self, name: str, size: int | None = None) -> UnitMetrics:
        unit = UnitMetrics(name=name, size=size, start_time=self._clock())
        self.metrics.units.append(unit)
        if self._settings.ENABLE_DETAILED_LOGS:
            logger.info("[%s] start %s", self.operation, name)
        return unit

    def record_end(self, name: str, success: bool = True, error: str | None = None) -> None:
        unit = self._find(name)
        if unit is None or unit.end_time is not None:
            return
        unit.end_time = self._clock()
        unit.duration = unit.end_time - unit.start_time
        unit.success = success
        unit.error = error
        self.metrics.total_processed += 1
        if not success:
            self.metrics.errors += 1
        if self._settings.ENABLE_DETAILED_LOGS:
            logger.info("[%s] %s %s - %.2fs", self.operation, "ok" if success else "FAILED", name, unit.duration)
        interval = self._settings.LOG_PROGRESS_INTERVAL
        if interval > 0 and self.metrics.total_processed % interval == 0:
            self.log_progress()

    def rate(self) -> float:
        elapsed = self._clock() - self.metrics.start_time
        if elapsed <= 0:
            return 0.0
        return self.metrics.total_processed / elapsed

    def log_progress(self) -> None:
        processed = self.metrics.total_processed
        total = len(self.metrics.units)
        rate = self.rate()
        remaining = total - processed
        eta = remaining / rate if remaining > 0 and rate > 0 else 0.0
        pct = processed / total * 100 if total else 0.0
        logger.info("[%s] progress %d/%d (%.1f%%) rate=%.2f chunks/s eta=%.0fs", self.operation, processed, total, pct, rate, eta)
        expected = self.expected_rate
        if rate < expected * self._settings.PERFORMANCE_WARNING_RATIO:
            self.add_warning(f"Throughput below expected: {rate:.2f} chunks/s (expected {expected})")

    def add_warning(self, message: str) -> None:
        self.metrics.warnings.append(PerformanceWarning(timestamp=self._clock(), message=message))
        logger.warning("[%s] %s", self.operation, message)

    def generate_report(self) -> dict[str, Any]:
        end_time = self._clock()
        total_duration = end_time - self.metrics.start_time
        finished = [u for u in self.metrics.units if u.end_time is not None]
        successful = [u for u in finished if u.success]
        failed = [u for u in finished if not u.success]
        avg_unit = sum(u.duration or 0.0 for u in successful) / len(successful) if successful else 0.0
        rate = self.metrics.total_processed / total_duration if total_duration > 0 else 0.0
        units = len(self.metrics.units)
        return {
            **asdict(self.metrics),
            "end_time": end_time,
            "total_duration": total_duration,
            "successful_units": len(successful),
            "failed_units": len(failed),
            "avg_unit_time_seconds": avg_unit,
            "chunks_per_second": rate,
            "efficiency": len(successful) / units * 100 if units else 0.0,
        }

    def save_report(self, report: dict[str, Any] | None = None) -> Path | None:
        """Write reports/<operation>_performance_<ms>.json. Returns path or None on failure."""
        if self._reports_dir is None:
            return None
        report = report if report is not None else self.generate_report()
        path = self._reports_dir / f"{self.operation}_performance_{int(self._clock() * 1000)}.json"
        try:
            self._reports_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(report, f, ensure_ascii=False, indent=2)
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Could not save performance report %s: %s", path, e)
            return None
        logger.info("Performance report saved: %s", path.name)
        return path

    def log_final_summary(self) -> dict[str, Any]:
        report = self.generate_report()
        if self._settings.ENABLE_PERFORMANCE_METRICS:
            self.save_report(report)
        logger.info(
            "[%s] session=%s total=%.2fs units=%d/%d success=%.1f%% rate=%.2f chunks/s avg=%.2fs warnings=%d failed=%d",
            self.operation.upper(),
            self.session_id,
            report["total_duration"],
            report["successful_units"],
            len(self.metrics.units),
            report["efficiency"],
            report["chunks_per_second"],
            report["avg_unit_time_seconds"],
            len(self.metrics.warnings),
            report["failed_units"],
        )
        return report
