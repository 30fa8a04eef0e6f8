"""Trigger engine: lifecycle, wiring and health checks for the daemon.

The engine:
- Takes the single-instance lock
- Opens the structured event log and builds the action executor
- Constructs and starts one detector per enabled trigger
- Runs a periodic health check until asked to stop
- Releases everything on every shutdown path (signal, stop, atexit)
"""

from __future__ import annotations

import atexit
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import psutil
from rich.console import Console

from wftrig.common.paths import ProjectPaths
from wftrig.core.actions import ActionContext, ActionExecutor, ActionResult, NotifierFactory
from wftrig.core.build_health import BuildHealthMonitor
from wftrig.core.bulk_change import BulkChangeDetector
from wftrig.core.config import Config, create_default_config, load_config
from wftrig.core.errors import AlreadyRunningError, ConfigError
from wftrig.core.file_watch import FileChangeDetector
from wftrig.core.instance_lock import SingleInstanceGuard
from wftrig.core.logging_setup import get_logger
from wftrig.core.notify import build_notifiers
from wftrig.core.registry import DetectorRegistry
from wftrig.core.scheduler import TaskScheduler
from wftrig.core.sink import EventLog
from wftrig.core.thresholds import ThresholdMonitor
from wftrig.core.vcs import ChangeSource, GitChangeSource

logger = get_logger(__name__)

HOOK_STAGES = ("pre-commit", "pre-push")


class EngineState(Enum):
    """Engine lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class HealthReport:
    """Result of one health check."""

    lock_ok: bool
    config_ok: bool
    active_detectors: list[str]
    memory_mb: float | None
    memory_ok: bool
    problems: list[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return not self.problems

    def to_dict(self) -> dict[str, Any]:
        return {
            "lock_ok": self.lock_ok,
            "config_ok": self.config_ok,
            "active_detectors": self.active_detectors,
            "memory_mb": self.memory_mb,
            "memory_ok": self.memory_ok,
            "problems": self.problems,
        }


def current_memory_mb() -> float | None:
    """Current resident memory of this process in MB, or None when unavailable."""
    try:
        rss_bytes = psutil.Process().memory_info().rss
    except psutil.Error:
        return None
    return rss_bytes / (1024 * 1024)


def initialize_project(paths: ProjectPaths) -> list[Path]:
    """Write the default config and create the log directory if missing.

    Returns:
        The paths that were created (empty when everything already existed).
    """
    created: list[Path] = []
    if not paths.config_path.exists():
        paths.config_path.parent.mkdir(parents=True, exist_ok=True)
        create_default_config(paths.config_path)
        created.append(paths.config_path)
    log_dir = paths.log_path.parent
    if not log_dir.exists():
        log_dir.mkdir(parents=True, exist_ok=True)
        created.append(log_dir)
    return created


class TriggerEngine:
    """Owns every detector and the shared action path for one project."""

    def __init__(
        self,
        config: Config,
        paths: ProjectPaths,
        console: Console | None = None,
        notifier_factory: NotifierFactory = build_notifiers,
        change_source: ChangeSource | None = None,
        observer_factory: Callable[[], Any] | None = None,
    ) -> None:
        """Initialize engine.

        Args:
            config: Configuration snapshot used for detector parameters.
            paths: Config, lock and log locations for the project.
            console: Optional rich console for lifecycle output.
            notifier_factory: Builds notification transports (tests inject fakes).
            change_source: Changed-file query for the bulk trigger (defaults to git).
            observer_factory: Filesystem observer factory for the file trigger.
        """
        self.config = config
        self.paths = paths
        self.console = console or Console()
        self.notifier_factory = notifier_factory
        self._change_source = change_source
        self._observer_factory = observer_factory

        self.state = EngineState.STOPPED
        self.guard = SingleInstanceGuard(paths.lock_path)
        self.registry = DetectorRegistry()
        self.event_log: EventLog | None = None
        self.executor: ActionExecutor | None = None
        self.thresholds: ThresholdMonitor | None = None

        self._state_lock = threading.Lock()
        self._stop_requested = threading.Event()
        self._atexit_registered = False

    def _config_source(self) -> Config:
        if self.paths.config_path.exists():
            return load_config(self.paths.config_path)
        return self.config

    def _ensure_runtime(self) -> ActionExecutor:
        if self.event_log is None:
            self.event_log = EventLog(self.paths.log_path)
        if self.executor is None:
            self.executor = ActionExecutor(
                config_source=self._config_source,
                event_log=self.event_log,
                project_dir=self.paths.project_dir,
                notifier_factory=self.notifier_factory,
            )
        return self.executor

    def start(self) -> None:
        """Acquire the lock and start every enabled detector.

        Raises:
            AlreadyRunningError: If another live daemon holds the lock.
        """
        with self._state_lock:
            if self.state is not EngineState.STOPPED:
                return
            self.state = EngineState.STARTING

        status = self.guard.acquire()
        if not status.acquired:
            with self._state_lock:
                self.state = EngineState.STOPPED
            raise AlreadyRunningError(status.existing_pid)
        if status.detail == "acquired_after_stale_cleanup":
            logger.info("Removed stale lock left by a previous run")
        if not self._atexit_registered:
            atexit.register(self._release_at_exit)
            self._atexit_registered = True

        self._stop_requested.clear()
        try:
            self._ensure_runtime()
            for owner, action in self.config.unknown_action_references():
                logger.warning(f"{owner} references unknown action '{action}'")
            self._build_detectors()
            self.registry.start_all()
        except Exception:
            self._shutdown()
            raise

        assert self.event_log is not None
        self.event_log.emit(
            "engine", "daemon_started", pid=os.getpid(), detectors=self.registry.to_dict()
        )
        with self._state_lock:
            self.state = EngineState.RUNNING
        self.console.print(
            f"[bold green]Workflow triggers active[/bold green] "
            f"({len(self.registry)} detectors, pid {os.getpid()})"
        )

    def _build_detectors(self) -> None:
        assert self.executor is not None and self.event_log is not None
        triggers = self.config.triggers
        project_dir = self.paths.project_dir

        # Registered first so the other detectors can report errors into it
        if triggers.error_threshold.enabled:
            self.thresholds = ThresholdMonitor(triggers.error_threshold, self.executor, self.event_log)
            self.registry.add(self.thresholds)

        if triggers.file_change.enabled:
            kwargs: dict[str, Any] = {}
            if self._observer_factory is not None:
                kwargs["observer_factory"] = self._observer_factory
            self.registry.add(
                FileChangeDetector(
                    triggers.file_change, project_dir, self.executor, self.event_log,
                    self.record_error, **kwargs,
                )
            )

        if triggers.bulk_change.enabled:
            source = self._change_source or GitChangeSource(
                project_dir, baseline=triggers.bulk_change.baseline_revision
            )
            self.registry.add(
                BulkChangeDetector(
                    triggers.bulk_change, source, self.executor, self.event_log, self.record_error
                )
            )

        if triggers.build_failure.enabled:
            self.registry.add(
                BuildHealthMonitor(
                    triggers.build_failure, project_dir, self.executor, self.event_log,
                    self.record_error,
                )
            )

        if triggers.scheduled_tasks.enabled:
            self.registry.add(
                TaskScheduler(
                    triggers.scheduled_tasks, self.executor, self.event_log, self.record_error
                )
            )

    def run(self, max_iterations: int | None = None) -> None:
        """Block running health checks until stop is requested.

        Args:
            max_iterations: Optional number of health checks (for testing).
        """
        if self.state is EngineState.STOPPED:
            self.start()

        interval = self.config.daemon.health_check_interval_s
        try:
            while not self._stop_requested.wait(interval):
                self.health_check()
                if max_iterations is not None:
                    max_iterations -= 1
                    if max_iterations <= 0:
                        break
        except KeyboardInterrupt:
            self.console.print("\n[yellow]Shutting down...[/yellow]")
        finally:
            self.stop()

    def request_stop(self) -> None:
        """Ask ``run`` to return. Safe to call from signal handlers."""
        self._stop_requested.set()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop detectors, release the lock and close the log. Idempotent."""
        with self._state_lock:
            if self.state in (EngineState.STOPPING, EngineState.STOPPED):
                was_running = False
            else:
                was_running = True
                self.state = EngineState.STOPPING
        if not was_running:
            self._close_log()
            return

        self._stop_requested.set()
        self.console.print("[yellow]Stopping workflow triggers...[/yellow]")
        self._shutdown(timeout)

    def _shutdown(self, timeout: float = 5.0) -> None:
        if self.executor is not None:
            self.executor.cancel()
        self.registry.stop_all(timeout)
        self.registry.clear()
        self.thresholds = None

        if self.event_log is not None:
            self.event_log.emit("engine", "daemon_stopped", pid=os.getpid())

        release = self.guard.release()
        if release.detail not in ("released", "not_held"):
            logger.warning(f"Lock release: {release.detail}")
        if self._atexit_registered:
            atexit.unregister(self._release_at_exit)
            self._atexit_registered = False

        self.executor = None
        self._close_log()
        with self._state_lock:
            self.state = EngineState.STOPPED

    def _close_log(self) -> None:
        if self.event_log is not None:
            self.event_log.close()
            self.event_log = None

    def _release_at_exit(self) -> None:
        if self.guard.held:
            self.guard.release()

    def record_error(self, category: str) -> None:
        """Count one error toward the category's thresholds."""
        if self.event_log is not None:
            self.event_log.emit("engine", "error_recorded", category=category)
        if self.thresholds is not None:
            self.thresholds.record(category)

    def health_check(self) -> HealthReport:
        """Check lock, config, detectors and memory; problems are logged only."""
        problems: list[str] = []

        lock_ok = self.guard.held and self.paths.lock_path.exists()
        if not lock_ok:
            problems.append(f"lock file missing: {self.paths.lock_path}")

        config_ok = True
        try:
            load_config(self.paths.config_path)
        except ConfigError as e:
            config_ok = False
            problems.append(f"config unreadable: {e}")

        active = self.registry.list_active()
        if not active:
            problems.append("no active detectors")

        memory_mb = current_memory_mb()
        ceiling = self.config.daemon.memory_ceiling_mb
        memory_ok = memory_mb is None or memory_mb <= ceiling
        if not memory_ok:
            problems.append(f"memory {memory_mb:.1f}MB over ceiling {ceiling:g}MB")

        report = HealthReport(
            lock_ok=lock_ok,
            config_ok=config_ok,
            active_detectors=active,
            memory_mb=memory_mb,
            memory_ok=memory_ok,
            problems=problems,
        )
        for problem in problems:
            logger.warning(f"Health check: {problem}")
        if problems and self.event_log is not None:
            self.event_log.emit("engine", "health_check_failed", **report.to_dict())
        return report

    def run_hook(self, stage: str) -> bool:
        """Run the commit-hook action list for ``stage`` synchronously.

        Returns:
            True when every action passed (or the hook trigger is disabled).
        """
        if stage not in HOOK_STAGES:
            raise ValueError(f"Unknown hook stage '{stage}', expected one of {HOOK_STAGES}")
        hook = self.config.triggers.commit_hook
        if not hook.enabled:
            logger.info(f"Commit hooks disabled; skipping {stage}")
            return True

        names = hook.pre_commit if stage == "pre-commit" else hook.pre_push
        executor = self._ensure_runtime()
        results = executor.run_sequence(names, ActionContext(trigger=f"commitHook:{stage}"))
        return all(r.ok for r in results)

    def smoke_test(self) -> list[ActionResult]:
        """Run the configured smoke-test actions once each."""
        executor = self._ensure_runtime()
        context = ActionContext(trigger="test", test=True)
        return executor.run_sequence(self.config.smoke_test_actions, context)
