"""Tests for event primitives."""

from datetime import UTC, datetime

import pytest

from wftrig.core.event import Event


def test_event_creation():
    """Test basic event creation."""
    now = datetime.now(UTC)
    event = Event(timestamp=now, label="bulk_change", event="bulk_change", data={"count": 7})
    assert event.timestamp == now
    assert event.label == "bulk_change"
    assert event.data == {"count": 7}


def test_event_validation():
    """Test event validation."""
    now = datetime.now(UTC)
    with pytest.raises(ValueError, match="label cannot be empty"):
        Event(timestamp=now, label="", event="x")
    with pytest.raises(ValueError, match="type cannot be empty"):
        Event(timestamp=now, label="engine", event="")
    with pytest.raises(ValueError, match="timezone-aware"):
        Event(timestamp=datetime(2025, 1, 1), label="engine", event="x")


def test_event_line_is_compact_json():
    event = Event(
        timestamp=datetime(2025, 1, 1, 12, 0, tzinfo=UTC),
        label="executor",
        event="action_failed",
        data={"action": "lint-fix"},
    )
    assert event.to_line() == (
        '{"timestamp":"2025-01-01T12:00:00+00:00","label":"executor",'
        '"event":"action_failed","data":{"action":"lint-fix"}}'
    )
