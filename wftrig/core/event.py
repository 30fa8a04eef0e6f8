"""Structured event primitive written to the daemon's event log."""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass(frozen=True, slots=True)
class Event:
    """One structured log entry emitted by a detector, the executor or the engine.

    Attributes:
        timestamp: UTC timestamp when the event occurred.
        label: Component that emitted the event (e.g., "bulk_change").
        event: Short event type identifier (e.g., "action_failed").
        data: Optional JSON-serializable payload.
    """

    timestamp: datetime
    label: str
    event: str
    data: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        """Validate event fields after initialization."""
        if not self.label:
            raise ValueError("Event label cannot be empty")
        if not self.event:
            raise ValueError("Event type cannot be empty")
        if self.timestamp.tzinfo is None:
            raise ValueError("Event timestamp must be timezone-aware (UTC)")

    @classmethod
    def now(cls, label: str, event: str, data: dict[str, Any] | None = None) -> Event:
        """Create an event stamped with the current UTC time."""
        return cls(timestamp=datetime.now(UTC), label=label, event=event, data=data)

    def to_dict(self) -> dict[str, Any]:
        """Convert event to dictionary representation."""
        result: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "label": self.label,
            "event": self.event,
        }
        if self.data is not None:
            result["data"] = self.data
        return result

    def to_line(self) -> str:
        """Serialize to one compact JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), separators=(",", ":"), default=str)
