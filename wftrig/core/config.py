"""Configuration management with validation.

The configuration document lives in the project root (JSON by default; TOML
and YAML are accepted by extension). Keys are camelCase on disk and
snake_case on the models.
"""

from __future__ import annotations

import json
import tomllib
from pathlib import Path
from typing import Any, Literal

import tomlkit
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from wftrig.core.errors import ConfigError, ScheduleError
from wftrig.core.cron import parse_schedule

Urgency = Literal["low", "medium", "high", "critical"]
URGENCY_LEVELS: tuple[str, ...] = ("low", "medium", "high", "critical")


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DaemonConfig(_Model):
    """Daemon runtime configuration."""

    log_dir: str = "logs"
    log_file: str = "workflow-triggers.log"
    lock_file: str = ".workflow-triggers.lock"
    console_verbosity: Literal["debug", "info", "warning", "error"] = "info"
    health_check_interval_s: float = Field(default=5.0, gt=0)
    memory_ceiling_mb: float = Field(default=100.0, gt=0)
    retry_backoff_s: float = Field(default=5.0, ge=0)


class FileChangeTrigger(_Model):
    """Watch the working tree and validate edited files in debounced batches."""

    enabled: bool = True
    patterns: list[str] = Field(
        default_factory=lambda: ["src/**/*.{tsx,jsx,ts,js}"]
    )
    ignore_patterns: list[str] = Field(
        default_factory=lambda: ["**/node_modules/**", "**/.next/**", "**/dist/**"]
    )
    debounce_ms: int = Field(default=1000, gt=0)
    actions: list[str] = Field(
        default_factory=lambda: ["lint-validate", "type-check-incremental"]
    )
    error_category: str = "validation"


class BulkChangeTrigger(_Model):
    """Fire once per time window when too many files changed versus a baseline."""

    enabled: bool = True
    threshold_count: int = Field(default=5, gt=0)
    time_window_ms: int = Field(default=300_000, gt=0)
    poll_interval_s: float = Field(default=60.0, gt=0)
    baseline_revision: str = "HEAD~1"
    actions: list[str] = Field(
        default_factory=lambda: ["lint-fix", "comprehensive-validation", "team-notification"]
    )
    error_category: str = "validation"


class BuildFailureTrigger(_Model):
    """Poll build output and attempt automated recovery when it is missing."""

    enabled: bool = True
    auto_recovery: bool = True
    build_output: str = ".next"
    max_age_s: float | None = Field(default=None, gt=0)
    poll_interval_s: float = Field(default=300.0, gt=0)
    actions: list[str] = Field(
        default_factory=lambda: ["auto-fix", "dependency-check", "team-alert"]
    )
    recovery_actions: list[str] = Field(default_factory=lambda: ["auto-fix"])
    rebuild_action: str = "build-test"
    error_category: str = "build"


class CommitHookTrigger(_Model):
    """Action lists run synchronously from git hooks."""

    enabled: bool = True
    pre_commit: list[str] = Field(
        default_factory=lambda: ["lint-validate", "type-check", "lint-check"]
    )
    pre_push: list[str] = Field(
        default_factory=lambda: ["build-test", "comprehensive-validation"]
    )


class ScheduledTask(_Model):
    """One named scheduled task."""

    schedule: str
    actions: list[str] = Field(default_factory=list)

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        """Reject schedules outside the supported cron subset."""
        try:
            parse_schedule(v)
        except ScheduleError as e:
            raise ValueError(str(e)) from e
        return v


def _default_tasks() -> dict[str, ScheduledTask]:
    return {
        "healthCheck": ScheduledTask(
            schedule="0 */6 * * *",
            actions=["workflow-health-check", "metrics-update"],
        ),
        "cleanup": ScheduledTask(
            schedule="0 2 * * 0",
            actions=["clean-cache", "optimize-metrics", "generate-report"],
        ),
    }


class ScheduledTasksTrigger(_Model):
    """Calendar-like task rules evaluated on a fixed tick."""

    enabled: bool = True
    tick_s: float = Field(default=300.0, gt=0)
    tasks: dict[str, ScheduledTask] = Field(default_factory=_default_tasks)


class ThresholdCategory(_Model):
    """Limits for one error category; a missing limit is never breached."""

    daily_limit: int | None = Field(default=None, gt=0)
    hourly_limit: int | None = Field(default=None, gt=0)
    actions: list[str] = Field(default_factory=list)


def _default_categories() -> dict[str, ThresholdCategory]:
    return {
        "validation": ThresholdCategory(
            daily_limit=10, actions=["team-alert", "process-review"]
        ),
        "build": ThresholdCategory(
            hourly_limit=3, actions=["emergency-alert", "rollback-consideration"]
        ),
    }


class ErrorThresholdTrigger(_Model):
    """Rolling hourly/daily error counters per category."""

    enabled: bool = True
    evaluation_interval_s: float = Field(default=300.0, gt=0)
    categories: dict[str, ThresholdCategory] = Field(default_factory=_default_categories)


class TriggersConfig(_Model):
    """All trigger definitions."""

    file_change: FileChangeTrigger = Field(default_factory=FileChangeTrigger)
    bulk_change: BulkChangeTrigger = Field(default_factory=BulkChangeTrigger)
    build_failure: BuildFailureTrigger = Field(default_factory=BuildFailureTrigger)
    commit_hook: CommitHookTrigger = Field(default_factory=CommitHookTrigger)
    scheduled_tasks: ScheduledTasksTrigger = Field(default_factory=ScheduledTasksTrigger)
    error_threshold: ErrorThresholdTrigger = Field(default_factory=ErrorThresholdTrigger)


class ActionSpec(_Model):
    """One named action: an opaque command or a built-in notification."""

    kind: Literal["command", "notify"] = "command"
    command: str = ""
    timeout_ms: int = Field(default=30_000, gt=0)
    retries: int = Field(default=0, ge=0)
    urgency: Urgency | None = None

    @property
    def timeout_s(self) -> float:
        return self.timeout_ms / 1000.0


def _cmd(command: str, timeout_ms: int, retries: int = 1) -> ActionSpec:
    return ActionSpec(command=command, timeout_ms=timeout_ms, retries=retries)


def _notify(urgency: Urgency) -> ActionSpec:
    return ActionSpec(kind="notify", urgency=urgency, timeout_ms=15_000, retries=1)


def _default_actions() -> dict[str, ActionSpec]:
    return {
        "lint-validate": _cmd("npm run lint", 30_000),
        "lint-check": _cmd("npm run lint -- --max-warnings=0", 60_000),
        "lint-fix": _cmd("npm run lint -- --fix", 60_000, retries=2),
        "auto-fix": _cmd("npm run lint -- --fix", 60_000, retries=2),
        "type-check": _cmd("npm run type-check:full", 120_000),
        "type-check-incremental": _cmd("npm run type-check", 30_000),
        "build-test": _cmd("npm run build", 300_000),
        "comprehensive-validation": _cmd("npm run workflow:validate", 180_000),
        "dependency-check": _cmd("npm ls --depth=0", 60_000, retries=0),
        "workflow-health-check": _cmd("npm run workflow:health", 60_000, retries=0),
        "metrics-update": _cmd("npm run workflow:metrics", 60_000, retries=0),
        "clean-cache": _cmd("npm cache verify", 120_000, retries=0),
        "optimize-metrics": _cmd("npm run workflow:optimize", 120_000, retries=0),
        "generate-report": _cmd("npm run workflow:report", 120_000, retries=0),
        "process-review": _cmd("npm run workflow:review", 60_000, retries=0),
        "rollback-consideration": _cmd("git log --oneline -5", 10_000, retries=0),
        "team-notification": _notify("medium"),
        "team-alert": _notify("high"),
        "emergency-alert": _notify("critical"),
    }


class ChannelConfig(_Model):
    """One notification channel. Webhook channels without a URL are skipped."""

    type: Literal["log", "webhook"] = "webhook"
    url: str = ""
    enabled: bool = True
    timeout_s: float = Field(default=10.0, gt=0)


def _default_channels() -> dict[str, ChannelConfig]:
    return {
        "log": ChannelConfig(type="log"),
        "slack": ChannelConfig(type="webhook"),
        "teams": ChannelConfig(type="webhook"),
        "email": ChannelConfig(type="webhook"),
    }


def _default_urgency_levels() -> dict[str, list[str]]:
    return {
        "low": ["log"],
        "medium": ["log", "slack"],
        "high": ["log", "slack", "teams"],
        "critical": ["log", "slack", "teams", "email"],
    }


class NotificationPolicy(_Model):
    """Channel definitions plus the urgency to channel-list mapping."""

    channels: dict[str, ChannelConfig] = Field(default_factory=_default_channels)
    urgency_levels: dict[str, list[str]] = Field(default_factory=_default_urgency_levels)

    @field_validator("urgency_levels")
    @classmethod
    def validate_urgency_levels(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Only the four known urgency levels may be mapped."""
        unknown = sorted(set(v) - set(URGENCY_LEVELS))
        if unknown:
            raise ValueError(f"Unknown urgency levels: {unknown}")
        return v

    def channels_for(self, urgency: str) -> list[str]:
        return list(self.urgency_levels.get(urgency, []))


class Config(_Model):
    """Root configuration model."""

    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    triggers: TriggersConfig = Field(default_factory=TriggersConfig)
    actions: dict[str, ActionSpec] = Field(default_factory=_default_actions)
    notifications: NotificationPolicy = Field(default_factory=NotificationPolicy)
    smoke_test_actions: list[str] = Field(
        default_factory=lambda: ["lint-validate", "type-check-incremental", "team-notification"]
    )

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def referenced_actions(self) -> dict[str, list[str]]:
        """Map each trigger-level owner to the action names it references."""
        t = self.triggers
        refs: dict[str, list[str]] = {
            "fileChange": list(t.file_change.actions),
            "bulkChange": list(t.bulk_change.actions),
            "buildFailure": [*t.build_failure.actions, t.build_failure.rebuild_action],
            "commitHook": [*t.commit_hook.pre_commit, *t.commit_hook.pre_push],
            "smokeTest": list(self.smoke_test_actions),
        }
        for name, task in t.scheduled_tasks.tasks.items():
            refs[f"scheduledTasks.{name}"] = list(task.actions)
        for name, category in t.error_threshold.categories.items():
            refs[f"errorThreshold.{name}"] = list(category.actions)
        return refs

    def unknown_action_references(self) -> list[tuple[str, str]]:
        """Return (owner, action) pairs that name no configured action."""
        return [
            (owner, action)
            for owner, actions in self.referenced_actions().items()
            for action in actions
            if action not in self.actions
        ]


def _read_document(path: Path) -> Any:
    if path.suffix == ".json":
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    if path.suffix == ".toml":
        with open(path, "rb") as f:
            return tomllib.load(f)
    if path.suffix in (".yaml", ".yml"):
        with open(path, encoding="utf-8") as f:
            return yaml.safe_load(f)
    raise ConfigError(f"Unsupported config file extension: {path.suffix}")


def load_config(path: Path | str) -> Config:
    """Load and validate configuration from file.

    Args:
        path: Path to configuration file (.json, .toml, .yaml, .yml).

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If file cannot be read, parsed, or validated.
    """
    path = Path(path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = _read_document(path)
    except ConfigError:
        raise
    except (OSError, ValueError, yaml.YAMLError) as e:
        # json.JSONDecodeError and tomllib.TOMLDecodeError are ValueErrors
        raise ConfigError(f"Failed to parse configuration file {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {path}")

    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}") from e


def load_config_or_default(path: Path | str | None = None) -> Config:
    """Load config from file, or return default if file doesn't exist.

    Raises:
        ConfigError: If file exists but cannot be parsed or validated.
    """
    if path is None:
        return Config()

    path = Path(path)
    if not path.exists():
        return Config()

    return load_config(path)


def create_default_config(path: Path | str) -> None:
    """Create a default configuration file.

    Raises:
        ConfigError: If file already exists or cannot be written.
    """
    path = Path(path)

    if path.exists():
        raise ConfigError(f"Configuration file already exists: {path}")

    save_config(Config(), path)


def save_config(config: Config, path: Path | str) -> None:
    """Persist validated config to disk.

    Raises:
        ConfigError: If serialization or write fails.
    """
    path = Path(path)
    content = _serialize_config(config, path)
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        raise ConfigError(f"Failed to write configuration file {path}: {e}") from e


def _serialize_config(config: Config, path: Path) -> str:
    """Serialize config to text based on file extension."""
    data = config.model_dump(by_alias=True, exclude_none=True)
    if path.suffix == ".json":
        return json.dumps(data, indent=2) + "\n"
    if path.suffix == ".toml":
        return _config_to_toml(data)
    if path.suffix in (".yaml", ".yml"):
        return yaml.dump(data, default_flow_style=False, sort_keys=False)
    raise ConfigError(f"Unsupported config file extension: {path.suffix}")


def _config_to_toml(data: dict[str, Any]) -> str:
    """Convert a dumped config mapping to a TOML string with nested tables."""
    doc = tomlkit.document()
    _fill_toml_table(doc, data)
    return tomlkit.dumps(doc)


def _fill_toml_table(table: Any, data: dict[str, Any]) -> None:
    # Scalars first: TOML forbids plain keys after a sub-table header
    for key, value in data.items():
        if not isinstance(value, dict):
            table[key] = tomlkit.item(value)
    for key, value in data.items():
        if isinstance(value, dict):
            sub = tomlkit.table()
            _fill_toml_table(sub, value)
            table[key] = sub
