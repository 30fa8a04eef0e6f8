"""Bulk-change trigger.

Polls the changed-file list and fires once per sliding window when the count
reaches the threshold. The history holds the firings still inside the window;
a non-empty history after pruning means this window already fired.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from wftrig.core.actions import ActionContext, ActionResult
from wftrig.core.config import BulkChangeTrigger
from wftrig.core.detector import DetectorSpec, ErrorRecorder, PollingDetector
from wftrig.core.logging_setup import get_logger
from wftrig.core.vcs import ChangeSource

if TYPE_CHECKING:
    from wftrig.core.actions import ActionExecutor
    from wftrig.core.sink import EventLog

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class BulkChangeEntry:
    """One firing kept in the window history."""

    timestamp: datetime
    files: tuple[str, ...]


class BulkChangeDetector(PollingDetector):
    """Fires BulkChange actions at most once per ``timeWindowMs``."""

    def __init__(
        self,
        trigger: BulkChangeTrigger,
        change_source: ChangeSource,
        executor: ActionExecutor,
        event_log: EventLog,
        record_error: ErrorRecorder | None = None,
    ) -> None:
        super().__init__(executor, event_log, record_error)
        self.trigger = trigger
        self.change_source = change_source
        self.spec = DetectorSpec(label="bulk_change", poll_interval_s=trigger.poll_interval_s)
        self.history: list[BulkChangeEntry] = []

    @property
    def window_s(self) -> float:
        return self.trigger.time_window_ms / 1000.0

    def prune(self, now: datetime) -> None:
        self.history = [
            entry for entry in self.history
            if (now - entry.timestamp).total_seconds() < self.window_s
        ]

    def evaluate(self, files: list[str], now: datetime) -> bool:
        """Decide whether ``files`` constitutes a new bulk change.

        Records the firing in the history when it does; dispatch is the
        caller's job.
        """
        self.prune(now)
        if len(files) < self.trigger.threshold_count or self.history:
            return False
        self.history.append(BulkChangeEntry(timestamp=now, files=tuple(files)))
        return True

    def poll(self, now: datetime) -> list[ActionResult] | None:
        files = self.change_source.changed_files()
        if not self.evaluate(files, now):
            return None

        logger.warning(f"📦 Bulk changes detected: {len(files)} files")
        self.event_log.emit(self.label, "bulk_change", count=len(files), files=files)
        context = ActionContext(trigger="bulkChange", files=tuple(files), bulk=True)
        results = self.executor.run_sequence(self.trigger.actions, context)
        if any(not r.ok for r in results):
            self.record_error(self.trigger.error_category)
        return results
