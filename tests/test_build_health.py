from __future__ import annotations

import os
from datetime import datetime, timedelta
from pathlib import Path

from tests.helpers.fakes import NullEventLog, RecordingExecutor
from wftrig.core.build_health import BuildHealthMonitor, BuildOutcome
from wftrig.core.config import BuildFailureTrigger


def _monitor(
    tmp_path: Path, trigger: BuildFailureTrigger | None = None, failing: tuple[str, ...] = ()
) -> tuple[BuildHealthMonitor, RecordingExecutor, list[str]]:
    executor = RecordingExecutor(failing=failing)
    errors: list[str] = []
    monitor = BuildHealthMonitor(
        trigger or BuildFailureTrigger(),
        tmp_path,
        executor,  # type: ignore[arg-type]
        NullEventLog(),
        errors.append,
    )
    return monitor, executor, errors


def test_existing_output_is_healthy(tmp_path: Path) -> None:
    (tmp_path / ".next").mkdir()
    monitor, executor, errors = _monitor(tmp_path)
    assert monitor.check(datetime.now()) is BuildOutcome.HEALTHY
    assert executor.calls == []
    assert errors == []


def test_missing_output_recovers_after_fix_and_rebuild(tmp_path: Path) -> None:
    monitor, executor, errors = _monitor(tmp_path)
    outcome = monitor.check(datetime.now())

    assert outcome is BuildOutcome.RECOVERED
    assert executor.names == ["auto-fix", "build-test"]
    assert executor.calls[0][1].build_failure is True
    assert executor.calls[1][1].recovery is True
    assert errors == []


def test_failed_rebuild_walks_remaining_actions(tmp_path: Path) -> None:
    monitor, executor, errors = _monitor(tmp_path, failing=("build-test",))
    outcome = monitor.check(datetime.now())

    assert outcome is BuildOutcome.UNRECOVERED
    assert executor.names == ["auto-fix", "build-test", "dependency-check", "team-alert"]
    assert errors == ["build"]


def test_failed_fix_skips_rebuild(tmp_path: Path) -> None:
    monitor, executor, errors = _monitor(tmp_path, failing=("auto-fix",))
    assert monitor.check(datetime.now()) is BuildOutcome.UNRECOVERED
    assert "build-test" not in executor.names
    assert errors == ["build"]


def test_auto_recovery_disabled_never_rebuilds(tmp_path: Path) -> None:
    trigger = BuildFailureTrigger(auto_recovery=False)
    monitor, executor, _ = _monitor(tmp_path, trigger)
    assert monitor.check(datetime.now()) is BuildOutcome.UNRECOVERED
    assert executor.names == ["auto-fix", "dependency-check", "team-alert"]


def test_stale_output_counts_as_failure(tmp_path: Path) -> None:
    output = tmp_path / ".next"
    output.mkdir()
    old = (datetime.now() - timedelta(hours=2)).timestamp()
    os.utime(output, (old, old))

    monitor, _, _ = _monitor(tmp_path, BuildFailureTrigger(max_age_s=3600))
    problem = monitor.output_problem(datetime.now())
    assert problem is not None
    assert "old" in problem
