"""Shared utilities for wftrig."""

from wftrig.common.paths import ProjectPaths, get_project_dir, resolve_in_project

__all__ = ["ProjectPaths", "get_project_dir", "resolve_in_project"]
