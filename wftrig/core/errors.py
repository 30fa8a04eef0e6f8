"""Error taxonomy for the workflow trigger daemon."""

from __future__ import annotations


class WorkflowTriggerError(Exception):
    """Base exception for all wftrig errors."""

    pass


class ConfigError(WorkflowTriggerError):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


class ScheduleError(ConfigError):
    """Raised when a task schedule is outside the supported cron subset."""

    pass


class AlreadyRunningError(WorkflowTriggerError):
    """Raised when another live daemon holds the instance lock."""

    def __init__(self, pid: int | None) -> None:
        """Initialize instance conflict error.

        Args:
            pid: Process id recorded in the lock file, if readable.
        """
        self.pid = pid
        owner = f"pid {pid}" if pid is not None else "unknown pid"
        super().__init__(f"Another daemon instance is already running ({owner})")


class DetectorRegistrationError(WorkflowTriggerError):
    """Raised when detector registration fails (e.g., duplicate label)."""

    pass


class DetectorError(WorkflowTriggerError):
    """Raised when a detector cannot observe its source on a tick."""

    pass


class VcsError(DetectorError):
    """Raised when the version-control query fails."""

    pass


class ActionError(WorkflowTriggerError):
    """Raised when a single action attempt fails."""

    def __init__(self, action_name: str, message: str) -> None:
        self.action_name = action_name
        super().__init__(f"Action '{action_name}' failed: {message}")


class UnknownActionError(ActionError):
    """Raised when an action name has no entry in the actions table."""

    def __init__(self, action_name: str) -> None:
        super().__init__(action_name, "unknown action")


class ActionTimeoutError(ActionError):
    """Raised when a command exceeds its timeout and is killed."""

    def __init__(self, action_name: str, timeout_s: float) -> None:
        self.timeout_s = timeout_s
        super().__init__(action_name, f"timed out after {timeout_s:g}s")


class ActionExitError(ActionError):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, action_name: str, returncode: int, output: str = "") -> None:
        self.returncode = returncode
        self.output = output
        super().__init__(action_name, f"exit status {returncode}")


class ActionSpawnError(ActionError):
    """Raised when a command cannot be started at all."""

    pass


class NotificationError(WorkflowTriggerError):
    """Raised when a notification transport rejects a message."""

    def __init__(self, channel: str, original_error: Exception | str) -> None:
        """Initialize notification error.

        Args:
            channel: Channel name the message was sent to.
            original_error: Underlying transport failure.
        """
        self.channel = channel
        self.original_error = original_error
        super().__init__(f"Channel '{channel}' failed to deliver: {original_error}")


class SinkError(WorkflowTriggerError):
    """Raised when the event log cannot be written."""

    pass
