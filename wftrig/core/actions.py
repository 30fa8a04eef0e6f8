"""Action execution with timeout, bounded retry and per-action exclusion.

Two action families share one path:
- ``command`` actions run an opaque command line with a hard timeout.
- ``notify`` actions fan a rendered message out through the notifiers.

Every invocation starts from the configured retry budget; the budget in the
configuration is never consumed. The same action name is never executed
concurrently, while distinct actions run independently on their callers'
threads.
"""

from __future__ import annotations

import os
import shlex
import subprocess
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from wftrig.core.config import ActionSpec, Config, NotificationPolicy
from wftrig.core.errors import (
    ActionError,
    ActionExitError,
    ActionSpawnError,
    ActionTimeoutError,
    ConfigError,
    UnknownActionError,
)
from wftrig.core.logging_setup import get_logger
from wftrig.core.notify import Notifier, NotificationDispatcher, build_notifiers, render_message
from wftrig.core.sink import EventLog

logger = get_logger(__name__)

NotifierFactory = Callable[[NotificationPolicy], dict[str, Notifier]]

_OUTPUT_TAIL_CHARS = 2000


@dataclass(frozen=True)
class ActionContext:
    """Why an action is being run; passed unchanged to every attempt."""

    trigger: str
    files: tuple[str, ...] = ()
    bulk: bool = False
    build_failure: bool = False
    recovery: bool = False
    threshold: str | None = None
    task: str | None = None
    urgency: str | None = None
    test: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    def with_changes(self, **changes: Any) -> ActionContext:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Compact dict with only the fields that carry information."""
        data: dict[str, Any] = {"trigger": self.trigger}
        if self.files:
            data["files"] = list(self.files)
        for key in ("bulk", "build_failure", "recovery", "test"):
            if getattr(self, key):
                data[key] = True
        for key in ("threshold", "task", "urgency"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        data.update(self.extra)
        return data


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one ``execute`` call (all attempts included)."""

    name: str
    ok: bool
    attempts: int
    detail: str = ""


class ActionExecutor:
    """Runs named actions from the current configuration."""

    def __init__(
        self,
        config_source: Callable[[], Config],
        event_log: EventLog,
        project_dir: Path,
        notifier_factory: NotifierFactory = build_notifiers,
        backoff_s: float | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            config_source: Returns the configuration to use for one invocation.
                Called on every ``execute`` so edits apply without a restart.
            event_log: Structured log for attempts and outcomes.
            project_dir: Working directory for command actions.
            notifier_factory: Builds channel transports from the policy.
            backoff_s: Fixed wait between attempts; defaults to the config value.
        """
        self._config_source = config_source
        self._last_config: Config | None = None
        self.event_log = event_log
        self.project_dir = Path(project_dir)
        self.notifier_factory = notifier_factory
        self.backoff_s = backoff_s
        self._cancel = threading.Event()
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def cancel(self) -> None:
        """Abort pending retry waits; running commands finish or time out."""
        self._cancel.set()

    def _current_config(self) -> Config:
        try:
            config = self._config_source()
        except ConfigError as e:
            if self._last_config is None:
                raise
            logger.warning(f"Config re-read failed, using last good snapshot: {e}")
            return self._last_config
        self._last_config = config
        return config

    def _lock_for(self, name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(name)
            if lock is None:
                lock = threading.Lock()
                self._locks[name] = lock
            return lock

    def execute(self, name: str, context: ActionContext | None = None) -> ActionResult:
        """Run action ``name`` with retries.

        Never raises for action-level failures; the result says what happened.
        """
        context = context or ActionContext(trigger="manual")
        try:
            config = self._current_config()
        except ConfigError as e:
            logger.error(f"Cannot run {name}: {e}")
            self.event_log.emit("executor", "action_failed", action=name, error=str(e))
            return ActionResult(name=name, ok=False, attempts=0, detail=str(e))

        spec = config.actions.get(name)
        if spec is None:
            err = UnknownActionError(name)
            logger.warning(str(err))
            self.event_log.emit("executor", "unknown_action", action=name, context=context.to_dict())
            return ActionResult(name=name, ok=False, attempts=0, detail=str(err))

        backoff = self.backoff_s if self.backoff_s is not None else config.daemon.retry_backoff_s

        with self._lock_for(name):
            remaining = spec.retries
            attempts = 0
            while True:
                attempts += 1
                logger.info(f"▶ {name} (attempt {attempts}, trigger {context.trigger})")
                self.event_log.emit(
                    "executor", "action_started", action=name, attempt=attempts,
                    context=context.to_dict(),
                )
                try:
                    self._run_once(name, spec, context, config)
                except ActionError as e:
                    logger.warning(f"✗ {e}")
                    self.event_log.emit(
                        "executor", "action_failed", action=name, attempt=attempts,
                        error=str(e), retries_left=remaining,
                    )
                    if remaining <= 0:
                        return ActionResult(name=name, ok=False, attempts=attempts, detail=str(e))
                    remaining -= 1
                    logger.info(f"Retrying {name} in {backoff:g}s ({remaining} retries left after this)")
                    if self._cancel.wait(backoff):
                        return ActionResult(
                            name=name, ok=False, attempts=attempts,
                            detail=f"{e} (retry cancelled by shutdown)",
                        )
                    continue
                logger.info(f"✓ {name} completed")
                self.event_log.emit("executor", "action_succeeded", action=name, attempt=attempts)
                return ActionResult(name=name, ok=True, attempts=attempts)

    def run_sequence(self, names: Iterable[str], context: ActionContext) -> list[ActionResult]:
        """Execute actions in order; a failure does not stop the sequence."""
        return [self.execute(name, context) for name in names]

    def _run_once(self, name: str, spec: ActionSpec, context: ActionContext, config: Config) -> None:
        if spec.kind == "notify":
            self._notify(name, spec, context, config)
        else:
            self._run_command(name, spec, context)

    def _notify(self, name: str, spec: ActionSpec, context: ActionContext, config: Config) -> None:
        urgency = context.urgency or spec.urgency or "medium"
        message = render_message(name, context.to_dict())
        dispatcher = NotificationDispatcher(config.notifications, self.notifier_factory(config.notifications))
        report = dispatcher.dispatch(message, urgency)
        if not report.ok:
            raise ActionError(
                name,
                f"notification not delivered (failed={report.failed}, skipped={report.skipped})",
            )
        logger.debug(f"{name}: delivered to {report.delivered}")

    def _run_command(self, name: str, spec: ActionSpec, context: ActionContext) -> None:
        try:
            argv = shlex.split(spec.command)
        except ValueError as e:
            raise ActionSpawnError(name, f"cannot parse command: {e}") from e
        if not argv:
            raise ActionSpawnError(name, "no command configured")

        env = dict(os.environ)
        env["WFTRIG_TRIGGER"] = context.trigger
        env["WFTRIG_FILES"] = "\n".join(context.files)

        try:
            completed = subprocess.run(
                argv,
                cwd=self.project_dir,
                env=env,
                capture_output=True,
                text=True,
                timeout=spec.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            # subprocess.run kills the child before re-raising
            raise ActionTimeoutError(name, spec.timeout_s) from e
        except OSError as e:
            raise ActionSpawnError(name, f"cannot start '{argv[0]}': {e}") from e

        if completed.returncode != 0:
            output = (completed.stderr or completed.stdout or "")[-_OUTPUT_TAIL_CHARS:]
            raise ActionExitError(name, completed.returncode, output)
