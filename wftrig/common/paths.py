"""Project-relative path helpers for wftrig."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_CONFIG_NAME = ".workflow-triggers.json"
DEFAULT_LOCK_NAME = ".workflow-triggers.lock"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_NAME = "workflow-triggers.log"


def _env_path(name: str) -> Path | None:
    """Read and normalize a non-empty path env var."""
    raw = os.getenv(name)
    if raw is None:
        return None
    text = raw.strip()
    if not text:
        return None
    return Path(text).expanduser()


def get_project_dir() -> Path:
    """Return the project directory the daemon acts on.

    WFTRIG_PROJECT_DIR wins; otherwise the current working directory.
    """
    override = _env_path("WFTRIG_PROJECT_DIR")
    if override is not None:
        return override
    return Path.cwd()


def resolve_in_project(project_dir: Path, value: str | Path) -> Path:
    """Resolve a possibly relative path against the project directory."""
    path = Path(value).expanduser()
    if path.is_absolute():
        return path
    return project_dir / path


@dataclass(frozen=True)
class ProjectPaths:
    """Locations of the three plain-text state files for one project."""

    project_dir: Path
    config_path: Path
    lock_path: Path
    log_path: Path

    @classmethod
    def for_project(
        cls,
        project_dir: Path | None = None,
        config_path: Path | None = None,
        log_dir: str = DEFAULT_LOG_DIR,
        log_file: str = DEFAULT_LOG_NAME,
        lock_file: str = DEFAULT_LOCK_NAME,
    ) -> ProjectPaths:
        root = Path(project_dir) if project_dir is not None else get_project_dir()
        config = (
            resolve_in_project(root, config_path)
            if config_path is not None
            else root / DEFAULT_CONFIG_NAME
        )
        return cls(
            project_dir=root,
            config_path=config,
            lock_path=resolve_in_project(root, lock_file),
            log_path=resolve_in_project(root, log_dir) / log_file,
        )
