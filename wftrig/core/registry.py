"""Detector registry for managing detector lifecycle and metadata."""

from __future__ import annotations

from typing import Any

from wftrig.core.detector import Detector
from wftrig.core.errors import DetectorRegistrationError
from wftrig.core.logging_setup import get_logger

logger = get_logger(__name__)


class DetectorRegistry:
    """Registry of the detectors constructed for one daemon run.

    Maintains:
    - Mapping from label to detector instance, in registration order
    - Duplicate label protection
    - Bulk start/stop used by the engine lifecycle
    """

    def __init__(self) -> None:
        """Initialize empty registry."""
        self._detectors: dict[str, Detector] = {}

    def add(self, detector: Detector) -> None:
        """Register a detector.

        Raises:
            DetectorRegistrationError: If label is already registered or the
                instance is not a Detector.
        """
        if not isinstance(detector, Detector):
            raise DetectorRegistrationError(
                f"Detector instance must be a Detector, got {type(detector)}"
            )
        if detector.label in self._detectors:
            raise DetectorRegistrationError(
                f"Detector label '{detector.label}' is already registered"
            )
        self._detectors[detector.label] = detector

    def list_labels(self) -> list[str]:
        return list(self._detectors.keys())

    def list_active(self) -> list[str]:
        """Labels of detectors that are still observing."""
        return [label for label, d in self._detectors.items() if d.active]

    def start_all(self) -> None:
        """Start every detector; one failing to start does not block the others."""
        for label, detector in self._detectors.items():
            try:
                detector.start()
            except Exception as e:
                logger.error(f"Failed to start detector {label}: {e}")

    def stop_all(self, timeout: float = 5.0) -> None:
        """Stop detectors in reverse registration order."""
        for label, detector in reversed(list(self._detectors.items())):
            try:
                detector.stop(timeout)
            except Exception as e:
                logger.error(f"Failed to stop detector {label}: {e}")

    def clear(self) -> None:
        self._detectors.clear()

    def __len__(self) -> int:
        return len(self._detectors)

    def to_dict(self) -> dict[str, Any]:
        """Export registry metadata to dictionary."""
        return {
            label: {
                "label": detector.spec.label,
                "poll_interval_s": detector.spec.poll_interval_s,
                "active": detector.active,
            }
            for label, detector in self._detectors.items()
        }
