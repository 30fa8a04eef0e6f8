"""Core trigger daemon modules."""

from wftrig.core.actions import ActionContext, ActionExecutor, ActionResult
from wftrig.core.batcher import BatcherState, ChangeBatcher
from wftrig.core.build_health import BuildHealthMonitor, BuildOutcome
from wftrig.core.bulk_change import BulkChangeDetector
from wftrig.core.config import Config, load_config, load_config_or_default
from wftrig.core.cron import ScheduleRule, parse_schedule
from wftrig.core.detector import Detector, DetectorSpec, PollingDetector
from wftrig.core.engine import EngineState, HealthReport, TriggerEngine, initialize_project
from wftrig.core.errors import (
    ActionError,
    AlreadyRunningError,
    ConfigError,
    DetectorError,
    NotificationError,
    ScheduleError,
    SinkError,
    WorkflowTriggerError,
)
from wftrig.core.event import Event
from wftrig.core.file_watch import FileChangeDetector, PathMatcher
from wftrig.core.instance_lock import SingleInstanceGuard
from wftrig.core.notify import NotificationDispatcher, Notifier
from wftrig.core.registry import DetectorRegistry
from wftrig.core.scheduler import TaskScheduler
from wftrig.core.sink import EventLog
from wftrig.core.thresholds import ThresholdMonitor

__all__ = [
    # Errors
    "WorkflowTriggerError",
    "ConfigError",
    "ScheduleError",
    "AlreadyRunningError",
    "DetectorError",
    "ActionError",
    "NotificationError",
    "SinkError",
    # Config
    "Config",
    "load_config",
    "load_config_or_default",
    # Events
    "Event",
    "EventLog",
    # Actions
    "ActionContext",
    "ActionExecutor",
    "ActionResult",
    "Notifier",
    "NotificationDispatcher",
    # Detectors
    "Detector",
    "DetectorSpec",
    "PollingDetector",
    "DetectorRegistry",
    "ChangeBatcher",
    "BatcherState",
    "PathMatcher",
    "FileChangeDetector",
    "BulkChangeDetector",
    "BuildHealthMonitor",
    "BuildOutcome",
    "ThresholdMonitor",
    "ScheduleRule",
    "parse_schedule",
    "TaskScheduler",
    # Engine
    "SingleInstanceGuard",
    "EngineState",
    "HealthReport",
    "TriggerEngine",
    "initialize_project",
]
