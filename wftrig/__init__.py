"""wftrig - workflow automation trigger daemon.

Watches a project's working tree and build output and reacts to edits, bulk
changes, build failures, schedules and error-rate breaches by running
configured remediation and notification actions.
"""

__version__ = "0.1.0"

from wftrig.core import (
    ActionExecutor,
    Config,
    Event,
    EventLog,
    TriggerEngine,
    initialize_project,
)

__all__ = [
    "__version__",
    "ActionExecutor",
    "Config",
    "Event",
    "EventLog",
    "TriggerEngine",
    "initialize_project",
]
