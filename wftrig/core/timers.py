"""Cancellation-aware repeating timers.

Each timer owns one daemon thread that waits on its cancellation event between
firings, so cancelling wakes it immediately instead of after a full interval.
Callback exceptions are logged and the timer keeps firing.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

from wftrig.core.logging_setup import get_logger

logger = get_logger(__name__)


class RepeatingTimer:
    """Fire ``callback`` every ``interval_s`` seconds until cancelled."""

    def __init__(
        self,
        name: str,
        interval_s: float,
        callback: Callable[[], object],
        first_delay_s: float | None = None,
        delay_fn: Callable[[], float] | None = None,
    ) -> None:
        """Initialize timer.

        Args:
            name: Thread name, also used in log messages.
            interval_s: Seconds between firings.
            callback: Called on the timer thread at each firing.
            first_delay_s: Delay before the first firing (defaults to interval_s).
            delay_fn: Computes every delay, including the first (calendar-aligned timers).
        """
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive: {interval_s}")
        self.name = name
        self.interval_s = interval_s
        self.callback = callback
        self.first_delay_s = interval_s if first_delay_s is None else first_delay_s
        self._delay_fn = delay_fn
        self._cancel = threading.Event()
        self._thread: threading.Thread | None = None
        self.fire_count = 0

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the timer thread. Starting twice is an error."""
        if self._thread is not None:
            raise RuntimeError(f"Timer {self.name} already started")
        self._thread = threading.Thread(target=self._run, daemon=True, name=self.name)
        self._thread.start()

    def _next_delay(self, first: bool) -> float:
        if self._delay_fn is not None:
            return max(0.0, self._delay_fn())
        if first:
            return self.first_delay_s
        return self.interval_s

    def _run(self) -> None:
        delay = self._next_delay(first=True)
        while not self._cancel.wait(delay):
            try:
                self.callback()
            except Exception:
                logger.exception(f"Timer {self.name} callback failed; continuing")
            self.fire_count += 1
            delay = self._next_delay(first=False)

    def cancel(self) -> None:
        """Request cancellation. The current callback, if any, runs to completion."""
        self._cancel.set()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)


def seconds_until_next_hour(now: datetime) -> float:
    """Seconds from ``now`` to the next top of the hour."""
    boundary = now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)
    return (boundary - now).total_seconds()


def seconds_until_midnight(now: datetime) -> float:
    """Seconds from ``now`` to the next local midnight."""
    boundary = now.replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)
    return (boundary - now).total_seconds()
