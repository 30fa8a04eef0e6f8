"""Scheduled-task trigger: cron-subset rules checked on a fixed tick."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from wftrig.core.actions import ActionContext
from wftrig.core.config import ScheduledTasksTrigger
from wftrig.core.cron import ScheduleRule, parse_schedule
from wftrig.core.detector import DetectorSpec, ErrorRecorder, PollingDetector
from wftrig.core.logging_setup import get_logger

if TYPE_CHECKING:
    from wftrig.core.actions import ActionExecutor
    from wftrig.core.sink import EventLog

logger = get_logger(__name__)


class TaskScheduler(PollingDetector):
    """Fires each task at most once per schedule occurrence."""

    def __init__(
        self,
        trigger: ScheduledTasksTrigger,
        executor: ActionExecutor,
        event_log: EventLog,
        record_error: ErrorRecorder | None = None,
    ) -> None:
        super().__init__(executor, event_log, record_error)
        self.trigger = trigger
        self.spec = DetectorSpec(label="scheduled_tasks", poll_interval_s=trigger.tick_s)
        self.rules: dict[str, ScheduleRule] = {
            name: parse_schedule(task.schedule) for name, task in trigger.tasks.items()
        }
        self._last_fired: dict[str, str] = {}

    def due(self, now: datetime) -> list[tuple[str, str]]:
        """Tasks whose current occurrence has not fired yet, as (name, occurrence)."""
        result: list[tuple[str, str]] = []
        for name, rule in self.rules.items():
            occurrence = rule.occurrence(now)
            if occurrence is not None and self._last_fired.get(name) != occurrence:
                result.append((name, occurrence))
        return result

    def evaluate(self, now: datetime) -> list[str]:
        """Run every due task; returns the names that fired."""
        fired: list[str] = []
        for name, occurrence in self.due(now):
            self._last_fired[name] = occurrence
            logger.info(f"⏰ Running scheduled task: {name} ({occurrence})")
            self.event_log.emit(self.label, "task_fired", task=name, occurrence=occurrence)
            context = ActionContext(trigger="scheduledTask", task=name)
            self.executor.run_sequence(self.trigger.tasks[name].actions, context)
            fired.append(name)
        return fired

    def poll(self, now: datetime) -> list[str]:
        return self.evaluate(now)
