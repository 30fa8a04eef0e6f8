"""End-to-end trigger scenario driven by explicit timestamps."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

from tests.helpers.fakes import FakeChangeSource, NullEventLog, RecordingExecutor
from wftrig.core.bulk_change import BulkChangeDetector
from wftrig.core.config import BulkChangeTrigger, FileChangeTrigger
from wftrig.core.file_watch import FileChangeDetector

T0 = datetime(2025, 3, 3, 9, 0, 0, tzinfo=UTC)


class _NoObserver:
    def schedule(self, *args, **kwargs) -> None:
        return None

    def start(self) -> None:
        return None

    def stop(self) -> None:
        return None

    def join(self, timeout=None) -> None:
        return None

    def is_alive(self) -> bool:
        return False


def test_file_burst_then_bulk_change(tmp_path: Path) -> None:
    executor = RecordingExecutor()
    log = NullEventLog()

    file_detector = FileChangeDetector(
        FileChangeTrigger(debounce_ms=1000, actions=["lint-validate"]),
        tmp_path,
        executor,  # type: ignore[arg-type]
        log,
        observer_factory=_NoObserver,
    )

    # 6 file changes within 500ms
    for i in range(6):
        file_detector.record_change(str(tmp_path / "src" / f"c{i}.tsx"), T0 + timedelta(milliseconds=100 * i))
    now = T0 + timedelta(milliseconds=500)
    while now < T0 + timedelta(seconds=3):
        file_detector.poll(now)
        now += timedelta(milliseconds=100)

    file_batches = [ctx for name, ctx in executor.calls if name == "lint-validate"]
    assert len(file_batches) == 1
    assert len(file_batches[0].files) == 6

    seven = [f"src/m{i}.ts" for i in range(7)]
    bulk_detector = BulkChangeDetector(
        BulkChangeTrigger(threshold_count=5, time_window_ms=300_000, actions=["team-notification"]),
        FakeChangeSource(seven),
        executor,  # type: ignore[arg-type]
        log,
    )

    base = T0 + timedelta(minutes=1)
    bulk_detector.poll(base)
    bulk_detector.poll(base + timedelta(seconds=10))
    firings = [ctx for name, ctx in executor.calls if name == "team-notification"]
    assert len(firings) == 1
    assert firings[0].files == tuple(seven)

    bulk_detector.poll(base + timedelta(minutes=6))
    firings = [ctx for name, ctx in executor.calls if name == "team-notification"]
    assert len(firings) == 2
