from __future__ import annotations

import io
import json
import os
import subprocess
import sys
import threading
from pathlib import Path
from types import SimpleNamespace

import pytest
from rich.console import Console

from wftrig.common.paths import ProjectPaths
from wftrig.core import engine as engine_module
from wftrig.core.config import ActionSpec, Config, save_config
from wftrig.core.engine import EngineState, TriggerEngine, initialize_project
from wftrig.core.errors import AlreadyRunningError

PASS = f'"{sys.executable}" -c "import sys; sys.exit(0)"'
FAIL = f'"{sys.executable}" -c "import sys; sys.exit(1)"'


def _quiet_console() -> Console:
    return Console(file=io.StringIO())


def _config() -> Config:
    config = Config(
        actions={
            "ok": ActionSpec(command=PASS),
            "bad": ActionSpec(command=FAIL),
        },
        smoke_test_actions=["ok", "bad"],
    )
    config.daemon.memory_ceiling_mb = 100_000
    config.daemon.health_check_interval_s = 0.01
    config.daemon.retry_backoff_s = 0
    t = config.triggers
    t.file_change.enabled = False
    t.bulk_change.enabled = False
    t.build_failure.enabled = False
    t.scheduled_tasks.tasks = {}
    t.error_threshold.categories = {}
    t.commit_hook.pre_commit = ["ok"]
    t.commit_hook.pre_push = ["ok", "bad"]
    return config


def _engine(tmp_path: Path, config: Config | None = None) -> TriggerEngine:
    config = config or _config()
    paths = ProjectPaths.for_project(tmp_path)
    save_config(config, paths.config_path)
    return TriggerEngine(config, paths, console=_quiet_console())


def _events(paths: ProjectPaths) -> list[str]:
    lines = paths.log_path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line)["event"] for line in lines]


def test_initialize_project_is_idempotent(tmp_path: Path) -> None:
    paths = ProjectPaths.for_project(tmp_path)
    created = initialize_project(paths)
    assert created == [paths.config_path, paths.log_path.parent]
    assert paths.config_path.exists()
    assert initialize_project(paths) == []


def test_start_and_stop_lifecycle(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.start()
    try:
        assert engine.state is EngineState.RUNNING
        assert engine.paths.lock_path.exists()
        assert engine.registry.list_labels() == ["error_threshold", "scheduled_tasks"]
    finally:
        engine.stop(timeout=1.0)

    assert engine.state is EngineState.STOPPED
    assert not engine.paths.lock_path.exists()
    engine.stop()
    events = _events(engine.paths)
    assert events[0] == "daemon_started"
    assert events[-1] == "daemon_stopped"


def test_second_engine_is_rejected_while_first_runs(tmp_path: Path) -> None:
    first = _engine(tmp_path)
    first.start()
    try:
        second = TriggerEngine(first.config, first.paths, console=_quiet_console())
        with pytest.raises(AlreadyRunningError) as excinfo:
            second.start()
        assert second.state is EngineState.STOPPED
        assert excinfo.value.pid is not None
    finally:
        first.stop(timeout=1.0)


def test_start_after_killed_daemon_reclaims_lock(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    killed = subprocess.Popen([sys.executable, "-c", "pass"])
    killed.wait()
    engine.paths.lock_path.write_text(json.dumps({"pid": killed.pid}), encoding="utf-8")

    engine.start()
    try:
        assert engine.state is EngineState.RUNNING
        assert json.loads(engine.paths.lock_path.read_text(encoding="utf-8"))["pid"] == os.getpid()
    finally:
        engine.stop(timeout=1.0)


def test_health_check_reports_problems(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    engine = _engine(tmp_path)
    engine.start()
    try:
        report = engine.health_check()
        assert report.healthy, report.problems
        assert report.active_detectors == ["error_threshold", "scheduled_tasks"]

        monkeypatch.setattr(engine_module, "current_memory_mb", lambda: 1e9)
        engine.paths.config_path.write_text("{broken", encoding="utf-8")
        report = engine.health_check()
        assert not report.healthy
        assert report.config_ok is False
        assert report.memory_ok is False
    finally:
        engine.stop(timeout=1.0)
    assert "health_check_failed" in _events(engine.paths)


def test_health_check_flags_missing_detectors(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    report = engine.health_check()
    assert "no active detectors" in report.problems
    assert report.lock_ok is False


def test_record_error_feeds_thresholds(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.start()
    try:
        assert engine.thresholds is not None
        engine.record_error("build")
        engine.record_error("build")
        assert engine.thresholds.counters()["build"].hourly == 2
    finally:
        engine.stop(timeout=1.0)


def test_run_hook(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    try:
        assert engine.run_hook("pre-commit") is True
        assert engine.run_hook("pre-push") is False
        with pytest.raises(ValueError, match="Unknown hook stage"):
            engine.run_hook("post-merge")
        engine.config.triggers.commit_hook.enabled = False
        assert engine.run_hook("pre-push") is True
    finally:
        engine.stop()
    assert not engine.paths.lock_path.exists()


def test_smoke_test_reports_each_action(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    try:
        results = engine.smoke_test()
    finally:
        engine.stop()
    assert [(r.name, r.ok) for r in results] == [("ok", True), ("bad", False)]


def test_run_returns_after_max_iterations(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.run(max_iterations=2)
    assert engine.state is EngineState.STOPPED
    assert not engine.paths.lock_path.exists()


def test_request_stop_ends_run(tmp_path: Path) -> None:
    config = _config()
    config.daemon.health_check_interval_s = 30
    engine = _engine(tmp_path, config)
    engine.start()
    timer = threading.Timer(0.05, engine.request_stop)
    timer.start()
    engine.run()
    timer.join()
    assert engine.state is EngineState.STOPPED


def test_memory_reading_follows_current_rss(monkeypatch: pytest.MonkeyPatch) -> None:
    readings = iter([300 * 1024 * 1024, 40 * 1024 * 1024])

    class _Process:
        def memory_info(self):
            return SimpleNamespace(rss=next(readings))

    monkeypatch.setattr(engine_module.psutil, "Process", _Process)
    assert engine_module.current_memory_mb() == pytest.approx(300.0)
    assert engine_module.current_memory_mb() == pytest.approx(40.0)


def test_late_detector_event_after_stop_is_dropped(tmp_path: Path) -> None:
    engine = _engine(tmp_path)
    engine.start()
    assert engine.executor is not None
    in_flight_log = engine.executor.event_log
    engine.stop(timeout=1.0)

    in_flight_log.emit("file_change", "file_batch", files=["src/a.ts"])
    assert in_flight_log._file_handle is None
    assert _events(engine.paths)[-1] == "daemon_stopped"
