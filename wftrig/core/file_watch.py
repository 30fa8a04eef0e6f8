"""File-change trigger: watchdog observer feeding a debounced batcher.

Paths are matched relative to the project root with glob patterns where
``**`` spans any number of directories (including none) and ``{a,b}``
expands to alternatives.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from wftrig.core.actions import ActionContext, ActionResult
from wftrig.core.batcher import ChangeBatcher
from wftrig.core.config import FileChangeTrigger
from wftrig.core.detector import DetectorSpec, ErrorRecorder, PollingDetector
from wftrig.core.logging_setup import get_logger

if TYPE_CHECKING:
    from wftrig.core.actions import ActionExecutor
    from wftrig.core.sink import EventLog

logger = get_logger(__name__)

_MAX_TICK_S = 0.1


def expand_braces(pattern: str) -> list[str]:
    """Expand the first ``{a,b}`` group recursively; unbalanced braces are literal."""
    start = pattern.find("{")
    if start < 0:
        return [pattern]
    end = pattern.find("}", start)
    if end < 0:
        return [pattern]
    head, body, tail = pattern[:start], pattern[start + 1 : end], pattern[end + 1 :]
    expanded: list[str] = []
    for option in body.split(","):
        expanded.extend(expand_braces(head + option + tail))
    return expanded


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate one brace-free glob into an anchored regex."""
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif c == "*":
            out.append("[^/]*")
            i += 1
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            close = pattern.find("]", i + 1)
            if close < 0:
                out.append(re.escape(c))
                i += 1
            else:
                body = pattern[i + 1 : close]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = close + 1
        else:
            out.append(re.escape(c))
            i += 1
    return re.compile("".join(out))


class PathMatcher:
    """Include/ignore glob filter over project-relative posix paths."""

    def __init__(self, patterns: list[str], ignore_patterns: list[str]) -> None:
        self._include = [glob_to_regex(p) for raw in patterns for p in expand_braces(raw)]
        self._ignore = [glob_to_regex(p) for raw in ignore_patterns for p in expand_braces(raw)]

    def matches(self, rel_path: str) -> bool:
        if any(rx.fullmatch(rel_path) for rx in self._ignore):
            return False
        return any(rx.fullmatch(rel_path) for rx in self._include)


class _WatchHandler(FileSystemEventHandler):
    """Translates watchdog callbacks into batcher changes/deletions."""

    def __init__(self, detector: FileChangeDetector) -> None:
        super().__init__()
        self.detector = detector

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.detector.record_change(os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.detector.record_change(os.fsdecode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.detector.record_delete(os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.detector.record_delete(os.fsdecode(event.src_path))
            self.detector.record_change(os.fsdecode(event.dest_path))


class FileChangeDetector(PollingDetector):
    """Dispatches FileChange actions once per debounced batch of edits."""

    def __init__(
        self,
        trigger: FileChangeTrigger,
        project_dir: Path,
        executor: ActionExecutor,
        event_log: EventLog,
        record_error: ErrorRecorder | None = None,
        observer_factory: Callable[[], Any] = Observer,
    ) -> None:
        super().__init__(executor, event_log, record_error)
        self.trigger = trigger
        self.project_dir = Path(project_dir).resolve()
        self.batcher = ChangeBatcher(trigger.debounce_ms)
        self.matcher = PathMatcher(trigger.patterns, trigger.ignore_patterns)
        self.spec = DetectorSpec(
            label="file_change",
            poll_interval_s=min(_MAX_TICK_S, self.batcher.debounce_s / 4),
        )
        self._observer_factory = observer_factory
        self._observer: Any = None

    def relative(self, path: str) -> str | None:
        """Project-relative posix path, or None for paths outside the project."""
        try:
            return Path(path).resolve().relative_to(self.project_dir).as_posix()
        except (ValueError, OSError):
            return None

    def record_change(self, path: str, timestamp: datetime | None = None) -> bool:
        """Feed one created/modified path; returns whether it was buffered."""
        rel = self.relative(path)
        if rel is None or not self.matcher.matches(rel):
            return False
        self.batcher.on_change(rel, timestamp or self.now())
        return True

    def record_delete(self, path: str) -> None:
        rel = self.relative(path)
        if rel is not None:
            self.batcher.on_delete(rel)

    def poll(self, now: datetime) -> list[ActionResult] | None:
        batch = self.batcher.check_expiration(now)
        if not batch:
            return None
        return self.handle_batch(batch)

    def handle_batch(self, files: list[str]) -> list[ActionResult]:
        """Run the FileChange actions once for a closed batch."""
        preview = ", ".join(files[:3]) + (f" and {len(files) - 3} more" if len(files) > 3 else "")
        logger.info(f"📝 Files changed: {len(files)} ({preview})")
        self.event_log.emit(self.label, "file_batch", count=len(files), files=files)

        context = ActionContext(trigger="fileChange", files=tuple(files))
        results = self.executor.run_sequence(self.trigger.actions, context)
        if any(not r.ok for r in results):
            self.record_error(self.trigger.error_category)
        return results

    def start(self) -> None:
        if self._observer is None:
            observer = self._observer_factory()
            observer.schedule(_WatchHandler(self), str(self.project_dir), recursive=True)
            observer.start()
            self._observer = observer
            logger.info(
                f"[{self.label}] watching {self.project_dir} "
                f"({len(self.trigger.patterns)} patterns, debounce {self.trigger.debounce_ms}ms)"
            )
        super().start()

    def stop(self, timeout: float = 5.0) -> None:
        super().stop(timeout)
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
        dropped = self.batcher.pending
        if dropped:
            logger.info(f"Discarding {len(dropped)} pending change(s) on stop")
        self.batcher.reset()

    @property
    def active(self) -> bool:
        observer_alive = self._observer is not None and self._observer.is_alive()
        return observer_alive and super().active
