"""Single-instance guard for the trigger daemon.

The lock is a plain JSON file ``{"pid": ..., "startedAt": ...}``. It is
written to a temporary file first and hard-linked into place, so the lock
never exists without its record and two starters cannot both win. A record
whose pid is no longer alive is stale and is removed automatically by
``acquire`` and ``status``. A file without a readable record only counts as
stale once it is older than ``STARTUP_GRACE_S``.
"""

from __future__ import annotations

import json
import os
import tempfile
import time
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from wftrig.core.logging_setup import get_logger

logger = get_logger(__name__)

STARTUP_GRACE_S = 5.0


@dataclass(frozen=True)
class LockRecord:
    """Contents of the lock file."""

    pid: int
    started_at: datetime | None = None

    def to_json(self) -> str:
        payload = {
            "pid": self.pid,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
        }
        return json.dumps(payload, separators=(",", ":"))


@dataclass(frozen=True)
class LockStatus:
    """Result of attempting to acquire/release the instance lock."""

    acquired: bool
    detail: str
    existing_pid: int | None = None


@dataclass(frozen=True)
class InstanceStatus:
    """What ``status`` observed without acquiring the lock."""

    running: bool
    detail: str
    record: LockRecord | None = None


def is_pid_running(pid: int) -> bool:
    """Signal-0 liveness probe."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


def parse_record(raw_text: str | None) -> LockRecord | None:
    """Decode a lock payload; None when empty or malformed."""
    if not raw_text:
        return None
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    pid_raw = payload.get("pid")
    if not isinstance(pid_raw, int):
        return None
    started_at: datetime | None = None
    started_raw = payload.get("startedAt")
    if isinstance(started_raw, str):
        try:
            started_at = datetime.fromisoformat(started_raw)
        except ValueError:
            started_at = None
    return LockRecord(pid=pid_raw, started_at=started_at)


class SingleInstanceGuard:
    """Cross-platform singleton lock based on an atomically linked file."""

    def __init__(self, lock_path: Path) -> None:
        self.lock_path = Path(lock_path)
        self._pid = os.getpid()
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def _is_pid_running(self, pid: int) -> bool:
        return is_pid_running(pid)

    def _read_raw(self) -> str | None:
        try:
            return self.lock_path.read_text(encoding="utf-8")
        except OSError:
            return None

    def read_record(self) -> LockRecord | None:
        """Parse the lock file; None when missing or unreadable."""
        return parse_record(self._read_raw())

    def _create(self) -> None:
        """Publish our record as the lock file; FileExistsError if present."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        record = LockRecord(pid=self._pid, started_at=datetime.now(UTC))
        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self.lock_path.name}.", suffix=".tmp", dir=self.lock_path.parent
        )
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.to_json())
            os.link(tmp_path, self.lock_path)
        finally:
            tmp_path.unlink(missing_ok=True)
        self._held = True

    def _is_stale(self, record: LockRecord | None) -> bool:
        if record is not None:
            return not self._is_pid_running(record.pid)
        try:
            age_s = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return True
        return age_s >= STARTUP_GRACE_S

    def _remove_if_unchanged(self, expected: str | None) -> bool:
        """Delete the lock only if it still holds ``expected``.

        The file is renamed aside first, so a lock another starter published
        after we read ``expected`` is put back instead of being deleted.

        Returns:
            True when the lock is gone, False when a newer lock was restored.
        """
        aside = self.lock_path.with_name(f"{self.lock_path.name}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(self.lock_path, aside)
        except FileNotFoundError:
            return True
        try:
            moved = aside.read_text(encoding="utf-8")
        except OSError:
            moved = None
        if moved == expected:
            aside.unlink(missing_ok=True)
            return True
        try:
            os.link(aside, self.lock_path)
        except FileExistsError:
            logger.warning(f"Lock {self.lock_path} replaced while restoring a newer record")
        finally:
            aside.unlink(missing_ok=True)
        return False

    def _blocked(self) -> LockStatus:
        record = self.read_record()
        return LockStatus(
            acquired=False,
            detail="already_running",
            existing_pid=record.pid if record else None,
        )

    def acquire(self) -> LockStatus:
        """Acquire lock if no other live daemon process holds it."""
        if self._held:
            return LockStatus(acquired=True, detail="already_held")
        try:
            self._create()
            return LockStatus(acquired=True, detail="acquired")
        except FileExistsError:
            pass

        raw = self._read_raw()
        if not self._is_stale(parse_record(raw)):
            return self._blocked()
        try:
            if not self._remove_if_unchanged(raw):
                return self._blocked()
        except OSError as e:
            logger.warning(f"Could not clear stale lock {self.lock_path}: {e}")
            return self._blocked()
        try:
            self._create()
        except FileExistsError:
            return self._blocked()
        return LockStatus(acquired=True, detail="acquired_after_stale_cleanup")

    def release(self) -> LockStatus:
        """Release lock if current process owns it."""
        if not self._held:
            return LockStatus(acquired=False, detail="not_held")
        record = self.read_record()
        if record is not None and record.pid != self._pid:
            self._held = False
            return LockStatus(
                acquired=False,
                detail="ownership_mismatch",
                existing_pid=record.pid,
            )
        try:
            self.lock_path.unlink(missing_ok=True)
        except OSError:
            self._held = False
            return LockStatus(acquired=False, detail="release_failed")
        self._held = False
        return LockStatus(acquired=True, detail="released")

    def status(self) -> InstanceStatus:
        """Report on whichever process holds the lock, cleaning a stale record."""
        raw = self._read_raw()
        if raw is None and not self.lock_path.exists():
            return InstanceStatus(running=False, detail="not_running")
        record = parse_record(raw)
        if not self._is_stale(record):
            return InstanceStatus(running=True, detail="running", record=record)
        try:
            removed = self._remove_if_unchanged(raw)
        except OSError as e:
            logger.warning(f"Could not clear stale lock {self.lock_path}: {e}")
            removed = False
        if not removed:
            current = self.read_record()
            return InstanceStatus(running=current is not None, detail="running", record=current)
        return InstanceStatus(running=False, detail="stale_lock_removed", record=record)
