"""Build-health trigger with fix-then-rebuild recovery."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from wftrig.core.actions import ActionContext
from wftrig.core.config import BuildFailureTrigger
from wftrig.core.detector import DetectorSpec, ErrorRecorder, PollingDetector
from wftrig.core.logging_setup import get_logger

if TYPE_CHECKING:
    from wftrig.core.actions import ActionExecutor
    from wftrig.core.sink import EventLog

logger = get_logger(__name__)


class BuildOutcome(Enum):
    """Result of one build-health cycle."""

    HEALTHY = "healthy"
    RECOVERED = "recovered"
    UNRECOVERED = "unrecovered"


class BuildHealthMonitor(PollingDetector):
    """Polls the build output and runs the BuildFailure chain when it is stale."""

    def __init__(
        self,
        trigger: BuildFailureTrigger,
        project_dir: Path,
        executor: ActionExecutor,
        event_log: EventLog,
        record_error: ErrorRecorder | None = None,
    ) -> None:
        super().__init__(executor, event_log, record_error)
        self.trigger = trigger
        self.build_output = Path(project_dir) / trigger.build_output
        self.spec = DetectorSpec(label="build_health", poll_interval_s=trigger.poll_interval_s)
        self.last_outcome: BuildOutcome | None = None

    def output_problem(self, now: datetime) -> str | None:
        """Describe why the build output looks broken, or None if it is fine."""
        try:
            mtime = self.build_output.stat().st_mtime
        except FileNotFoundError:
            return f"build output missing: {self.build_output}"
        except OSError as e:
            return f"build output unreadable: {e}"
        if self.trigger.max_age_s is not None:
            age = now.timestamp() - mtime
            if age > self.trigger.max_age_s:
                return f"build output is {age:.0f}s old (max {self.trigger.max_age_s:g}s)"
        return None

    def check(self, now: datetime) -> BuildOutcome:
        """Run one cycle: detect, then walk the action chain with recovery.

        Returns:
            HEALTHY when the output is fine, RECOVERED when a recovery action
            plus rebuild succeeded, otherwise UNRECOVERED.
        """
        problem = self.output_problem(now)
        if problem is None:
            self.last_outcome = BuildOutcome.HEALTHY
            return BuildOutcome.HEALTHY

        logger.warning(f"🔨 Potential build failure: {problem}")
        self.event_log.emit(self.label, "build_failure_detected", reason=problem)
        context = ActionContext(trigger="buildFailure", build_failure=True)

        outcome = BuildOutcome.UNRECOVERED
        for name in self.trigger.actions:
            result = self.executor.execute(name, context)
            if not (self.trigger.auto_recovery and name in self.trigger.recovery_actions and result.ok):
                continue
            logger.info(f"Recovery step {name} succeeded; rebuilding with {self.trigger.rebuild_action}")
            rebuild = self.executor.execute(
                self.trigger.rebuild_action, context.with_changes(recovery=True)
            )
            if rebuild.ok:
                outcome = BuildOutcome.RECOVERED
                break

        if outcome is BuildOutcome.RECOVERED:
            logger.info("✓ Build recovered automatically")
        else:
            logger.error("✗ Automatic build recovery failed")
            self.record_error(self.trigger.error_category)
        self.event_log.emit(self.label, "build_recovery", outcome=outcome.value)
        self.last_outcome = outcome
        return outcome

    def poll(self, now: datetime) -> BuildOutcome:
        return self.check(now)
