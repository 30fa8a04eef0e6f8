"""Error-rate thresholds with calendar-aligned hourly and daily resets.

Counters only grow between resets. A breach id (``<category>-hourly`` or
``<category>-daily``) fires its actions at most once until the matching
counter is reset.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from wftrig.core.actions import ActionContext
from wftrig.core.config import ErrorThresholdTrigger
from wftrig.core.detector import DetectorSpec, PollingDetector
from wftrig.core.logging_setup import get_logger
from wftrig.core.timers import RepeatingTimer, seconds_until_midnight, seconds_until_next_hour

if TYPE_CHECKING:
    from wftrig.core.actions import ActionExecutor
    from wftrig.core.sink import EventLog

logger = get_logger(__name__)

_HOUR_S = 3600.0
_DAY_S = 86400.0
_MIN_RESET_DELAY_S = 1.0


@dataclass
class ErrorCounter:
    """Per-category counters."""

    hourly: int = 0
    daily: int = 0


def _aligned_delay(seconds_until: float, period_s: float) -> float:
    # Landing just before the boundary must not fire the reset twice
    if seconds_until < _MIN_RESET_DELAY_S:
        return seconds_until + period_s
    return seconds_until


class ThresholdMonitor(PollingDetector):
    """Counts errors per category and fires breach actions once per period."""

    def __init__(
        self,
        trigger: ErrorThresholdTrigger,
        executor: ActionExecutor,
        event_log: EventLog,
    ) -> None:
        super().__init__(executor, event_log)
        self.trigger = trigger
        self.spec = DetectorSpec(
            label="error_threshold", poll_interval_s=trigger.evaluation_interval_s
        )
        self._lock = threading.Lock()
        self._counters: dict[str, ErrorCounter] = {
            name: ErrorCounter() for name in trigger.categories
        }
        self._notified: set[str] = set()
        self._reset_timers: list[RepeatingTimer] = []

    def record(self, category: str, count: int = 1) -> None:
        """Add ``count`` errors to both counters of ``category``."""
        with self._lock:
            counter = self._counters.setdefault(category, ErrorCounter())
            counter.hourly += count
            counter.daily += count
        logger.debug(f"Recorded {count} error(s) in '{category}'")

    def counters(self) -> dict[str, ErrorCounter]:
        """Snapshot of all counters."""
        with self._lock:
            return {
                name: ErrorCounter(hourly=c.hourly, daily=c.daily)
                for name, c in self._counters.items()
            }

    def reset_hourly(self) -> None:
        with self._lock:
            for counter in self._counters.values():
                counter.hourly = 0
            self._notified = {b for b in self._notified if not b.endswith("-hourly")}
        logger.debug("Hourly error counters reset")

    def reset_daily(self) -> None:
        with self._lock:
            for counter in self._counters.values():
                counter.daily = 0
            self._notified = {b for b in self._notified if not b.endswith("-daily")}
        logger.debug("Daily error counters reset")

    def breaches(self) -> list[str]:
        """Breach ids currently over their limit (notified or not)."""
        with self._lock:
            return self._breaches_unlocked()

    def evaluate(self, now: datetime | None = None) -> list[str]:
        """Fire actions for new breaches; returns the breach ids that fired."""
        with self._lock:
            pending = [b for b in self._breaches_unlocked() if b not in self._notified]
            self._notified.update(pending)

        for breach in pending:
            category = breach.rsplit("-", 1)[0]
            logger.warning(f"🚨 Error threshold breached: {breach}")
            self.event_log.emit(self.label, "threshold_breach", breach=breach)
            context = ActionContext(trigger="errorThreshold", threshold=breach)
            self.executor.run_sequence(self.trigger.categories[category].actions, context)
        return pending

    def _breaches_unlocked(self) -> list[str]:
        found: list[str] = []
        for name, category in self.trigger.categories.items():
            counter = self._counters.get(name, ErrorCounter())
            if category.daily_limit is not None and counter.daily >= category.daily_limit:
                found.append(f"{name}-daily")
            if category.hourly_limit is not None and counter.hourly >= category.hourly_limit:
                found.append(f"{name}-hourly")
        return found

    def poll(self, now: datetime) -> list[str]:
        return self.evaluate(now)

    def start(self) -> None:
        if not self._reset_timers:
            self._reset_timers = [
                RepeatingTimer(
                    name="threshold-hourly-reset",
                    interval_s=_HOUR_S,
                    callback=self.reset_hourly,
                    delay_fn=lambda: _aligned_delay(seconds_until_next_hour(self.now()), _HOUR_S),
                ),
                RepeatingTimer(
                    name="threshold-daily-reset",
                    interval_s=_DAY_S,
                    callback=self.reset_daily,
                    delay_fn=lambda: _aligned_delay(seconds_until_midnight(self.now()), _DAY_S),
                ),
            ]
            for timer in self._reset_timers:
                timer.start()
        super().start()

    def stop(self, timeout: float = 5.0) -> None:
        for timer in self._reset_timers:
            timer.cancel()
        for timer in self._reset_timers:
            timer.join(timeout)
        super().stop(timeout)
