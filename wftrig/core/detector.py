"""Detector contracts for the trigger engine.

A detector observes one condition source and dispatches its trigger's action
list when the condition holds. Each detector:
- Has a unique label (used in logs and by the registry)
- Owns its own runtime state; no other component mutates it
- Runs on its own cancellation-aware timer thread
- Never lets an exception escape a tick (errors are logged, next tick proceeds)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from wftrig.core.errors import DetectorError
from wftrig.core.logging_setup import get_logger
from wftrig.core.timers import RepeatingTimer

if TYPE_CHECKING:
    from wftrig.core.actions import ActionExecutor
    from wftrig.core.sink import EventLog

logger = get_logger(__name__)

ErrorRecorder = Callable[[str], None]


def _ignore_error(category: str) -> None:
    return None


@dataclass(frozen=True, slots=True)
class DetectorSpec:
    """Detector registration metadata.

    Attributes:
        label: Unique identifier for this detector (e.g., "bulk_change").
        poll_interval_s: Seconds between ticks.
        first_delay_s: Delay before the first tick; None means one full interval.
    """

    label: str
    poll_interval_s: float
    first_delay_s: float | None = None

    def __post_init__(self) -> None:
        """Validate detector metadata fields."""
        if not self.label:
            raise ValueError("Detector label cannot be empty")
        if not self.label.isidentifier():
            raise ValueError(f"Detector label must be a valid identifier: {self.label}")
        if self.poll_interval_s <= 0:
            raise ValueError(f"poll_interval_s must be positive: {self.poll_interval_s}")


class Detector(ABC):
    """Abstract base class for all detectors."""

    spec: DetectorSpec

    def __init__(
        self,
        executor: ActionExecutor,
        event_log: EventLog,
        record_error: ErrorRecorder | None = None,
    ) -> None:
        self.executor = executor
        self.event_log = event_log
        self.record_error = record_error or _ignore_error

    @property
    def label(self) -> str:
        return self.spec.label

    @abstractmethod
    def start(self) -> None:
        """Begin observing. Must return promptly."""
        ...

    @abstractmethod
    def stop(self, timeout: float = 5.0) -> None:
        """Cancel pending timers/watches; in-flight actions may finish."""
        ...

    @property
    @abstractmethod
    def active(self) -> bool:
        """True while the detector is still observing."""
        ...


class PollingDetector(Detector):
    """Detector driven by a fixed-interval timer calling ``poll``.

    Subclasses implement ``poll(now)``; it runs on the timer thread.
    """

    def __init__(
        self,
        executor: ActionExecutor,
        event_log: EventLog,
        record_error: ErrorRecorder | None = None,
    ) -> None:
        super().__init__(executor, event_log, record_error)
        self._timer: RepeatingTimer | None = None

    @abstractmethod
    def poll(self, now: datetime) -> object:
        """Evaluate the condition once."""
        ...

    def now(self) -> datetime:
        return datetime.now().astimezone()

    def tick(self) -> None:
        """One timer firing: poll, converting detector errors into log entries."""
        try:
            self.poll(self.now())
        except DetectorError as e:
            logger.warning(f"[{self.label}] {e}")
            self.event_log.emit(self.label, "detector_error", error=str(e))

    def start(self) -> None:
        if self._timer is not None:
            return
        self._timer = RepeatingTimer(
            name=f"detector-{self.label}",
            interval_s=self.spec.poll_interval_s,
            callback=self.tick,
            first_delay_s=self.spec.first_delay_s,
        )
        self._timer.start()
        logger.info(f"[{self.label}] active (every {self.spec.poll_interval_s:g}s)")

    def stop(self, timeout: float = 5.0) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer.join(timeout)

    @property
    def active(self) -> bool:
        return self._timer is not None and not self._timer.cancelled and self._timer.is_alive()
