"""Append-only structured event log.

One JSON object per line, in a single file under the project's log directory.
Writes are serialized so detector threads and the executor can share one log.
"""

from __future__ import annotations

import threading
from collections import deque
from pathlib import Path
from typing import IO, Any

from wftrig.core.errors import SinkError
from wftrig.core.event import Event
from wftrig.core.logging_setup import get_logger

logger = get_logger(__name__)


class EventLog:
    """Thread-safe JSONL event log."""

    def __init__(self, log_path: Path, echo: bool = True) -> None:
        """Initialize event log.

        Args:
            log_path: File to append to. Parent directories are created.
            echo: Also mirror each event to the diagnostic logger at debug level.
        """
        self.log_path = Path(log_path)
        self.echo = echo
        self._lock = threading.Lock()
        self._file_handle: IO[str] | None = None
        self._closed = False

        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SinkError(f"Failed to create log directory {self.log_path.parent}: {e}") from e

    def _ensure_file_open(self) -> IO[str]:
        if self._file_handle is None:
            try:
                self._file_handle = open(self.log_path, "a", encoding="utf-8")
            except OSError as e:
                raise SinkError(f"Failed to open log file {self.log_path}: {e}") from e
        return self._file_handle

    def write_event(self, event: Event) -> None:
        """Append one event as a JSONL record.

        Raises:
            SinkError: If the file cannot be written.
        """
        line = event.to_line()
        with self._lock:
            if self._closed:
                logger.debug(f"Event log closed, dropping {event.event}")
                return
            handle = self._ensure_file_open()
            try:
                handle.write(line)
                handle.write("\n")
                handle.flush()
            except OSError as e:
                raise SinkError(f"Failed to write event: {e}") from e
        if self.echo:
            logger.debug(f"[{event.label}] {event.event} {event.data or ''}")

    def emit(self, label: str, event: str, **data: Any) -> None:
        """Write an event stamped now; sink failures are logged, not raised."""
        try:
            self.write_event(Event.now(label, event, data or None))
        except SinkError as e:
            logger.warning(f"Event log unavailable: {e}")

    def flush(self) -> None:
        """Flush buffered data."""
        with self._lock:
            if self._file_handle is not None:
                self._file_handle.flush()

    def close(self) -> None:
        """Close the file. Events written afterwards are dropped."""
        with self._lock:
            self._closed = True
            if self._file_handle is not None:
                self._file_handle.close()
                self._file_handle = None


def tail_lines(path: Path, count: int = 50) -> list[str]:
    """Return the last ``count`` lines of a text file.

    Raises:
        FileNotFoundError: If the log does not exist yet.
    """
    if count <= 0:
        return []
    with open(path, encoding="utf-8", errors="replace") as f:
        return [line.rstrip("\n") for line in deque(f, maxlen=count)]
