from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from tests.helpers.fakes import FakeChangeSource, NullEventLog, RecordingExecutor
from wftrig.core.bulk_change import BulkChangeDetector
from wftrig.core.config import BulkChangeTrigger
from wftrig.core.errors import VcsError

T0 = datetime(2025, 3, 3, 9, 0, 0, tzinfo=UTC)
SIX_FILES = [f"src/file{i}.ts" for i in range(6)]


def _detector(
    files: list[str] | None = None, failing: tuple[str, ...] = ()
) -> tuple[BulkChangeDetector, RecordingExecutor, list[str]]:
    executor = RecordingExecutor(failing=failing)
    errors: list[str] = []
    detector = BulkChangeDetector(
        BulkChangeTrigger(),
        FakeChangeSource(files),
        executor,  # type: ignore[arg-type]
        NullEventLog(),
        errors.append,
    )
    return detector, executor, errors


def test_below_threshold_never_fires() -> None:
    detector, executor, _ = _detector(SIX_FILES[:4])
    assert detector.poll(T0) is None
    assert executor.calls == []
    assert detector.history == []


def test_fires_once_per_window() -> None:
    detector, executor, _ = _detector(SIX_FILES)

    results = detector.poll(T0)
    assert results is not None
    assert executor.names == ["lint-fix", "comprehensive-validation", "team-notification"]
    _, context = executor.calls[0]
    assert context.bulk is True
    assert context.files == tuple(SIX_FILES)

    # Same condition at the next polls inside the 5 minute window: no new firing
    for minutes in (1, 2, 4):
        assert detector.poll(T0 + timedelta(minutes=minutes)) is None
    assert len(executor.calls) == 3


def test_fires_again_after_window_elapses() -> None:
    detector, executor, _ = _detector(SIX_FILES)
    detector.poll(T0)
    assert detector.poll(T0 + timedelta(minutes=6)) is not None
    assert len(executor.calls) == 6
    assert len(detector.history) == 1
    assert detector.history[0].timestamp == T0 + timedelta(minutes=6)


def test_window_boundary_is_inclusive_for_pruning() -> None:
    detector, _, _ = _detector()
    assert detector.evaluate(SIX_FILES, T0) is True
    assert detector.evaluate(SIX_FILES, T0 + timedelta(milliseconds=299_999)) is False
    assert detector.evaluate(SIX_FILES, T0 + timedelta(milliseconds=300_000)) is True


def test_failed_action_records_error_category() -> None:
    detector, _, errors = _detector(SIX_FILES, failing=("lint-fix",))
    detector.poll(T0)
    assert errors == ["validation"]


def test_vcs_failure_is_absorbed_by_tick(monkeypatch: pytest.MonkeyPatch) -> None:
    detector, executor, _ = _detector(SIX_FILES)

    def _broken() -> list[str]:
        raise VcsError("git diff HEAD~1 failed (128): not a git repository")

    monkeypatch.setattr(detector.change_source, "changed_files", _broken)
    detector.tick()
    assert executor.calls == []
