"""Version-control queries used by the bulk-change trigger."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Protocol

from wftrig.core.errors import VcsError


class ChangeSource(Protocol):
    """Anything that can list files changed versus a baseline."""

    def changed_files(self) -> list[str]: ...


class GitChangeSource:
    """Lists files changed between the working tree and a git revision."""

    def __init__(self, project_dir: Path, baseline: str = "HEAD~1", timeout_s: float = 30.0) -> None:
        self.project_dir = Path(project_dir)
        self.baseline = baseline
        self.timeout_s = timeout_s

    def changed_files(self) -> list[str]:
        """Run ``git diff --name-only <baseline>``.

        Raises:
            VcsError: If git is missing, times out or exits non-zero.
        """
        argv = ["git", "diff", "--name-only", self.baseline]
        try:
            completed = subprocess.run(
                argv,
                cwd=self.project_dir,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
            )
        except subprocess.TimeoutExpired as e:
            raise VcsError(f"git diff timed out after {self.timeout_s:g}s") from e
        except OSError as e:
            raise VcsError(f"Cannot run git: {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.strip()
            raise VcsError(f"git diff {self.baseline} failed ({completed.returncode}): {stderr}")

        return [line.strip() for line in completed.stdout.splitlines() if line.strip()]
