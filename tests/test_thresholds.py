from __future__ import annotations

from datetime import datetime

import pytest

from tests.helpers.fakes import NullEventLog, RecordingExecutor
from wftrig.core.config import ErrorThresholdTrigger
from wftrig.core.thresholds import ThresholdMonitor, _aligned_delay
from wftrig.core.timers import seconds_until_midnight, seconds_until_next_hour


def _monitor() -> tuple[ThresholdMonitor, RecordingExecutor]:
    executor = RecordingExecutor()
    monitor = ThresholdMonitor(
        ErrorThresholdTrigger(),
        executor,  # type: ignore[arg-type]
        NullEventLog(),
    )
    return monitor, executor


def test_record_increments_both_counters() -> None:
    monitor, _ = _monitor()
    monitor.record("build")
    monitor.record("build", count=2)
    monitor.record("misc")
    counters = monitor.counters()
    assert (counters["build"].hourly, counters["build"].daily) == (3, 3)
    assert counters["misc"].daily == 1


def test_hourly_breach_fires_once_per_period() -> None:
    monitor, executor = _monitor()
    monitor.record("build", count=3)

    assert monitor.evaluate() == ["build-hourly"]
    assert monitor.evaluate() == []
    monitor.record("build")
    assert monitor.evaluate() == []
    assert executor.names == ["emergency-alert", "rollback-consideration"]
    _, context = executor.calls[0]
    assert context.threshold == "build-hourly"


def test_hourly_reset_rearms_breach() -> None:
    monitor, executor = _monitor()
    monitor.record("build", count=3)
    monitor.evaluate()

    monitor.reset_hourly()
    assert monitor.counters()["build"].hourly == 0
    assert monitor.counters()["build"].daily == 3
    assert monitor.evaluate() == []

    monitor.record("build", count=3)
    assert monitor.evaluate() == ["build-hourly"]
    assert len(executor.calls) == 4


def test_reset_is_idempotent() -> None:
    monitor, _ = _monitor()
    monitor.record("validation", count=4)
    monitor.reset_daily()
    monitor.reset_daily()
    monitor.reset_hourly()
    counters = monitor.counters()
    assert (counters["validation"].hourly, counters["validation"].daily) == (0, 0)


def test_daily_limit_uses_greater_or_equal() -> None:
    monitor, executor = _monitor()
    monitor.record("validation", count=9)
    assert monitor.evaluate() == []
    monitor.record("validation")
    assert monitor.breaches() == ["validation-daily"]
    assert monitor.evaluate() == ["validation-daily"]
    assert executor.names == ["team-alert", "process-review"]

    # The hourly reset must not re-arm a daily breach
    monitor.reset_hourly()
    assert monitor.evaluate() == []
    monitor.reset_daily()
    monitor.record("validation", count=10)
    assert monitor.evaluate() == ["validation-daily"]


def test_calendar_delays() -> None:
    now = datetime(2025, 3, 3, 22, 59, 30)
    assert seconds_until_next_hour(now) == pytest.approx(30)
    assert seconds_until_midnight(now) == pytest.approx(3630)
    assert _aligned_delay(0.2, 3600.0) == pytest.approx(3600.2)
    assert _aligned_delay(30.0, 3600.0) == pytest.approx(30.0)
