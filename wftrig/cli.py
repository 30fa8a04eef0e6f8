"""Command-line interface for wftrig using Typer.

Commands:
- init: Write the default config and log directory
- start: Run the trigger daemon in the foreground
- stop: Signal the running daemon and wait for it to exit
- status: Report whether a daemon holds the lock
- logs: Print the tail of the event log
- test: Run the smoke-test actions once
- run-hook: Run the pre-commit/pre-push action list (called from git hooks)
- install-hooks: Write git hook scripts that call run-hook
"""

from __future__ import annotations

import os
import signal
import stat
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from types import FrameType
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from wftrig.common.paths import ProjectPaths
from wftrig.core.config import Config, load_config, load_config_or_default
from wftrig.core.engine import HOOK_STAGES, TriggerEngine, initialize_project
from wftrig.core.errors import AlreadyRunningError, ConfigError
from wftrig.core.instance_lock import SingleInstanceGuard
from wftrig.core.logging_setup import get_logger, init_daemon_logging
from wftrig.core.sink import tail_lines

console = Console()
logger = get_logger(__name__)

app = typer.Typer(
    name="wftrig",
    help="wftrig - workflow automation trigger daemon",
    add_completion=False,
)

HOOK_MARKER = "# installed by wftrig"

# Typer option metadata constants to avoid function calls in annotations/defaults
PROJECT_DIR_OPTION = typer.Option(
    "--project-dir",
    "-C",
    help="Project root (defaults to $WFTRIG_PROJECT_DIR or the current directory)",
)
CONFIG_OPTION = typer.Option(
    "--config",
    "-c",
    help="Path to configuration file (.json, .toml, .yaml)",
)
TIMEOUT_OPTION = typer.Option(
    "--timeout",
    help="Seconds to wait for the daemon to exit",
)
LINES_ARGUMENT = typer.Argument(
    help="Number of log lines to show",
)
STAGE_ARGUMENT = typer.Argument(
    help="Hook stage: pre-commit or pre-push",
)


@dataclass
class CliState:
    """Global options shared by every command."""

    project_dir: Path | None = None
    config_path: Path | None = None

    def base_paths(self) -> ProjectPaths:
        return ProjectPaths.for_project(self.project_dir, self.config_path)

    def paths_for(self, config: Config) -> ProjectPaths:
        daemon = config.daemon
        return ProjectPaths.for_project(
            self.project_dir,
            self.config_path,
            log_dir=daemon.log_dir,
            log_file=daemon.log_file,
            lock_file=daemon.lock_file,
        )


def _state(ctx: typer.Context) -> CliState:
    state = ctx.obj
    if not isinstance(state, CliState):
        state = CliState()
        ctx.obj = state
    return state


def _config_or_exit(paths: ProjectPaths) -> Config:
    try:
        return load_config_or_default(paths.config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        sys.exit(2)


def _paths_tolerant(state: CliState) -> ProjectPaths:
    """Paths from the config when it loads, defaults otherwise."""
    base = state.base_paths()
    try:
        return state.paths_for(load_config_or_default(base.config_path))
    except ConfigError as e:
        logger.debug(f"Using default paths, config unreadable: {e}")
        return base


def _install_graceful_sigterm_handler(engine: TriggerEngine) -> None:
    """Route SIGTERM/SIGINT to an orderly engine stop."""

    def _handle(signum: int, frame: FrameType | None) -> None:
        logger.info(f"Received {signal.Signals(signum).name}, stopping")
        engine.request_stop()

    signal.signal(signal.SIGTERM, _handle)
    signal.signal(signal.SIGINT, _handle)


@app.callback()
def _global_options(
    ctx: typer.Context,
    project_dir: Annotated[Path | None, PROJECT_DIR_OPTION] = None,
    config_path: Annotated[Path | None, CONFIG_OPTION] = None,
) -> None:
    ctx.obj = CliState(project_dir=project_dir, config_path=config_path)


@app.command()
def init(ctx: typer.Context) -> None:
    """Write the default configuration and create the log directory."""
    paths = _state(ctx).base_paths()
    try:
        created = initialize_project(paths)
    except (ConfigError, OSError) as e:
        console.print(f"[red]Initialization failed: {e}[/red]")
        sys.exit(1)

    if not created:
        console.print(f"[cyan]Already initialized: {paths.config_path}[/cyan]")
        return
    for path in created:
        console.print(f"[green]Created {path}[/green]")
    console.print("Run [bold]wftrig start[/bold] to begin watching.")


@app.command()
def start(ctx: typer.Context) -> None:
    """Run the trigger daemon in the foreground until stopped."""
    state = _state(ctx)
    base = state.base_paths()
    try:
        config = load_config(base.config_path)
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        if not base.config_path.exists():
            console.print("[yellow]Run 'wftrig init' to create a default configuration.[/yellow]")
        sys.exit(2)

    init_daemon_logging(verbosity=config.daemon.console_verbosity)
    paths = state.paths_for(config)
    console.print(f"[cyan]Configuration loaded from: {paths.config_path}[/cyan]")

    engine = TriggerEngine(config, paths, console)
    _install_graceful_sigterm_handler(engine)
    try:
        engine.start()
    except AlreadyRunningError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    engine.run()


@app.command()
def stop(
    ctx: typer.Context,
    timeout: Annotated[float, TIMEOUT_OPTION] = 10.0,
) -> None:
    """Send SIGTERM to the running daemon and wait for it to release the lock."""
    paths = _paths_tolerant(_state(ctx))
    guard = SingleInstanceGuard(paths.lock_path)
    status = guard.status()
    if not status.running or status.record is None:
        console.print("[yellow]Workflow triggers are not running[/yellow]")
        return

    pid = status.record.pid
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        console.print("[yellow]Daemon already exited[/yellow]")
        return
    except PermissionError as e:
        console.print(f"[red]Cannot signal pid {pid}: {e}[/red]")
        sys.exit(1)

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        record = guard.read_record()
        if record is None or record.pid != pid:
            console.print(f"[green]Stopped workflow triggers (pid {pid})[/green]")
            return
        time.sleep(0.2)

    console.print(f"[red]Daemon (pid {pid}) did not stop within {timeout:g}s[/red]")
    sys.exit(1)


@app.command()
def status(ctx: typer.Context) -> None:
    """Show whether a daemon is running for this project."""
    paths = _paths_tolerant(_state(ctx))
    info = SingleInstanceGuard(paths.lock_path).status()

    if not info.running or info.record is None:
        if info.detail == "stale_lock_removed":
            console.print("[dim]Removed stale lock file[/dim]")
        console.print("[yellow]Workflow triggers: not running[/yellow]")
        sys.exit(1)

    started = info.record.started_at.isoformat() if info.record.started_at else "unknown"
    table = Table(title="Workflow triggers")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("status", "[green]running[/green]")
    table.add_row("pid", str(info.record.pid))
    table.add_row("since", started)
    table.add_row("lock", str(paths.lock_path))
    table.add_row("log", str(paths.log_path))
    console.print(table)


@app.command()
def logs(
    ctx: typer.Context,
    lines: Annotated[int, LINES_ARGUMENT] = 50,
) -> None:
    """Print the last lines of the event log."""
    paths = _paths_tolerant(_state(ctx))
    try:
        tail = tail_lines(paths.log_path, lines)
    except FileNotFoundError:
        console.print(f"[yellow]No log file yet: {paths.log_path}[/yellow]")
        return
    for line in tail:
        print(line)


@app.command()
def test(ctx: typer.Context) -> None:
    """Run the smoke-test actions once each and report pass/fail."""
    state = _state(ctx)
    config = _config_or_exit(state.base_paths())
    paths = state.paths_for(config)

    engine = TriggerEngine(config, paths, console)
    try:
        results = engine.smoke_test()
    finally:
        engine.stop()

    table = Table(title="Smoke test")
    table.add_column("Action", style="cyan")
    table.add_column("Result")
    table.add_column("Attempts", justify="right")
    table.add_column("Detail")
    for result in results:
        verdict = "[green]pass[/green]" if result.ok else "[red]fail[/red]"
        table.add_row(result.name, verdict, str(result.attempts), result.detail)
    console.print(table)

    passed = sum(1 for r in results if r.ok)
    console.print(f"{passed}/{len(results)} actions passed")
    if passed != len(results):
        sys.exit(1)


@app.command("run-hook")
def run_hook(
    ctx: typer.Context,
    stage: Annotated[str, STAGE_ARGUMENT],
) -> None:
    """Run the commit-hook action list for a stage; non-zero exit blocks git."""
    if stage not in HOOK_STAGES:
        console.print(f"[red]Unknown hook stage '{stage}' (expected {', '.join(HOOK_STAGES)})[/red]")
        sys.exit(2)

    state = _state(ctx)
    config = _config_or_exit(state.base_paths())
    engine = TriggerEngine(config, state.paths_for(config), console)
    try:
        ok = engine.run_hook(stage)
    finally:
        engine.stop()

    if ok:
        console.print(f"[green]✓ {stage} checks passed[/green]")
        return
    console.print(f"[red]✗ {stage} checks failed[/red]")
    sys.exit(1)


def _hook_script(stage: str) -> str:
    return f"#!/bin/sh\n{HOOK_MARKER}\nexec wftrig run-hook {stage}\n"


@app.command("install-hooks")
def install_hooks(ctx: typer.Context) -> None:
    """Install git pre-commit/pre-push hooks that call ``wftrig run-hook``."""
    paths = _state(ctx).base_paths()
    hooks_dir = paths.project_dir / ".git" / "hooks"
    if not hooks_dir.parent.is_dir():
        console.print(f"[red]Not a git repository: {paths.project_dir}[/red]")
        sys.exit(1)
    hooks_dir.mkdir(exist_ok=True)

    for stage in HOOK_STAGES:
        hook_path = hooks_dir / stage
        if hook_path.exists() and HOOK_MARKER not in hook_path.read_text(encoding="utf-8", errors="replace"):
            console.print(f"[yellow]Skipping {stage}: existing hook not managed by wftrig[/yellow]")
            continue
        hook_path.write_text(_hook_script(stage), encoding="utf-8")
        mode = hook_path.stat().st_mode
        hook_path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        console.print(f"[green]Installed {stage} hook[/green]")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
