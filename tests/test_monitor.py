import json

from lecture_pipeline.config import Settings
from lecture_pipeline.services.monitor import PerformanceMonitor


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_report_counts_and_rates(tmp_path):
    clock = Clock()
    monitor = PerformanceMonitor("s1", "transcription", tmp_path, Settings(LOG_PROGRESS_INTERVAL=0), clock=clock)
    monitor.record_start("chunk_1.mp3", 100)
    monitor.record_start("chunk_2.mp3", 100)
    clock.now += 2
    monitor.record_end("chunk_1.mp3", success=True)
    monitor.record_end("chunk_2.mp3", success=False, error="400")
    clock.now += 2

    report = monitor.generate_report()
    assert report["total_duration"] == 4
    assert report["successful_units"] == 1
    assert report["failed_units"] == 1
    assert report["avg_unit_time_seconds"] == 2
    assert report["chunks_per_second"] == 0.5
    assert report["efficiency"] == 50
    assert report["errors"] == 1


def test_slow_throughput_adds_warning():
    clock = Clock()
    settings = Settings(LOG_PROGRESS_INTERVAL=1, EXPECTED_SPLIT_CHUNKS_PER_SECOND=2.0)
    monitor = PerformanceMonitor("s1", "splitting", settings=settings, clock=clock)
    monitor.record_start("chunk_1.mp3")
    clock.now += 10
    monitor.record_end("chunk_1.mp3")
    assert len(monitor.warnings) == 1
    assert "below expected" in monitor.warnings[0]


def test_fast_throughput_has_no_warning():
    clock = Clock()
    monitor = PerformanceMonitor("s1", "splitting", settings=Settings(LOG_PROGRESS_INTERVAL=1), clock=clock)
    monitor.record_start("chunk_1.mp3")
    clock.now += 0.1
    monitor.record_end("chunk_1.mp3")
    assert monitor.warnings == []


def test_final_summary_saves_report(tmp_path):
    clock = Clock()
    monitor = PerformanceMonitor("s1", "splitting", tmp_path / "reports", Settings(), clock=clock)
    monitor.record_start("chunk_1.mp3")
    clock.now += 1
    monitor.record_end("chunk_1.mp3")
    monitor.log_final_summary()

    files = list((tmp_path / "reports").glob("splitting_performance_*.json"))
    assert len(files) == 1
    data = json.loads(files[0].read_text())
    assert data["operation"] == "splitting"
    assert data["successful_units"] == 1


def test_report_io_failure_is_swallowed(tmp_path):
    blocker = tmp_path / "reports"
    blocker.write_text("not a directory")
    monitor = PerformanceMonitor("s1", "splitting", blocker, Settings())
    assert monitor.save_report() is None


def test_unfinished_units_are_not_failures(tmp_path):
    clock = Clock()
    monitor = PerformanceMonitor("s1", "transcription", tmp_path, Settings(LOG_PROGRESS_INTERVAL=0), clock=clock)
    monitor.record_start("chunk_1.mp3")
    monitor.record_start("chunk_2.mp3")
    clock.now += 1
    monitor.record_end("chunk_1.mp3", success=True)

    report = monitor.generate_report()
    assert report["successful_units"] == 1
    assert report["failed_units"] == 0
    assert report["efficiency"] == 50.0
