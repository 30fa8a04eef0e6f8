"""Debounced change batching.

The batcher is a small state machine driven by explicit timestamps:

States:
- IDLE: buffer empty, no debounce window running
- PENDING: buffer non-empty, window restarted by every change

Transitions:
- IDLE + change → PENDING (open window)
- PENDING + change → PENDING (restart window, add path)
- PENDING + delete → PENDING or IDLE (drop path; window untouched)
- PENDING + window expired → IDLE (emit one deduplicated batch)

The watchdog thread feeds changes while the tick thread checks expiration, so
every transition happens under one lock.
"""

from __future__ import annotations

import threading
from datetime import datetime
from enum import Enum, auto


class BatcherState(Enum):
    """Batcher state machine states."""

    IDLE = auto()
    PENDING = auto()


class ChangeBatcher:
    """Coalesces bursts of file-change events into batches of unique paths."""

    def __init__(self, debounce_ms: int) -> None:
        """Initialize change batcher.

        Args:
            debounce_ms: Quiet period after the last change before a batch closes.
        """
        if debounce_ms <= 0:
            raise ValueError(f"debounce_ms must be positive: {debounce_ms}")

        self.debounce_ms = debounce_ms
        self._buffer: dict[str, None] = {}
        self._last_change: datetime | None = None
        self._lock = threading.Lock()

    @property
    def debounce_s(self) -> float:
        return self.debounce_ms / 1000.0

    @property
    def state(self) -> BatcherState:
        with self._lock:
            return BatcherState.PENDING if self._buffer else BatcherState.IDLE

    @property
    def pending(self) -> list[str]:
        """Snapshot of buffered paths, in first-seen order."""
        with self._lock:
            return list(self._buffer)

    def on_change(self, path: str, timestamp: datetime) -> None:
        """Record a created/modified path and restart the debounce window."""
        with self._lock:
            self._buffer[path] = None
            if self._last_change is None or timestamp > self._last_change:
                self._last_change = timestamp

    def on_delete(self, path: str) -> None:
        """Drop a path from the pending buffer. Never starts a window by itself."""
        with self._lock:
            self._buffer.pop(path, None)
            if not self._buffer:
                self._last_change = None

    def check_expiration(self, current_time: datetime) -> list[str] | None:
        """Close the batch if the debounce window has elapsed.

        Args:
            current_time: Current time to check against.

        Returns:
            The deduplicated paths when a batch closes, otherwise None.
        """
        with self._lock:
            if not self._buffer or self._last_change is None:
                return None
            elapsed = (current_time - self._last_change).total_seconds()
            if elapsed < self.debounce_s:
                return None
            batch = list(self._buffer)
            self._buffer.clear()
            self._last_change = None
            return batch

    def reset(self) -> None:
        """Drop everything pending (shutdown/testing)."""
        with self._lock:
            self._buffer.clear()
            self._last_change = None
