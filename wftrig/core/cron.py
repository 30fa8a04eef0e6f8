"""Cron-subset schedule rules.

Supported shapes (five fields, day-of-month and month always ``*``):

- ``M * * * *``    hourly at minute M
- ``M */N * * *``  every N hours (hours divisible by N) at minute M
- ``M H * * *``    daily at H:M
- ``M H * * D``    weekly on weekday D (0 = Sunday) at H:M

Rules are evaluated on a coarse tick, so a rule matches from its minute until
the end of the matching hour. Each match maps to an occurrence id that the
scheduler uses to fire at most once per occurrence.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from croniter import croniter

from wftrig.core.errors import ScheduleError


def _parse_int(field: str, name: str, low: int, high: int, expr: str) -> int:
    if not field.isdigit():
        raise ScheduleError(f"Invalid {name} field '{field}' in schedule '{expr}'")
    value = int(field)
    if not low <= value <= high:
        raise ScheduleError(f"{name} {value} out of range {low}-{high} in schedule '{expr}'")
    return value


@dataclass(frozen=True, slots=True)
class ScheduleRule:
    """Parsed schedule.

    Attributes:
        expression: Original cron text.
        minute: Minute within the hour (0-59).
        hour: Fixed hour for daily/weekly rules.
        every_hours: Hour step for interval rules.
        weekday: Cron weekday (0 = Sunday) for weekly rules.
    """

    expression: str
    minute: int
    hour: int | None = None
    every_hours: int | None = None
    weekday: int | None = None

    @property
    def kind(self) -> str:
        if self.weekday is not None:
            return "weekly"
        if self.hour is not None:
            return "daily"
        if self.every_hours is not None:
            return "interval"
        return "hourly"

    def last_run(self, now: datetime) -> datetime:
        """Most recent scheduled time at or before ``now`` (minute precision)."""
        base = now.replace(second=0, microsecond=0) + timedelta(minutes=1)
        return croniter(self.expression, base).get_prev(datetime)

    def matches(self, now: datetime) -> bool:
        last = self.last_run(now)
        return last.date() == now.date() and last.hour == now.hour

    def occurrence(self, now: datetime) -> str | None:
        """Occurrence id for ``now``, or None when the rule does not match."""
        if not self.matches(now):
            return None
        if self.kind in ("daily", "weekly"):
            return now.strftime("%Y-%m-%d")
        return now.strftime("%Y-%m-%dT%H")


def parse_schedule(expr: str) -> ScheduleRule:
    """Parse a cron-subset expression.

    Raises:
        ScheduleError: If the expression is outside the supported subset.
    """
    fields = expr.split()
    if len(fields) != 5:
        raise ScheduleError(f"Schedule must have 5 fields: '{expr}'")
    minute_f, hour_f, dom_f, month_f, dow_f = fields
    if dom_f != "*" or month_f != "*":
        raise ScheduleError(f"Day-of-month and month must be '*': '{expr}'")

    minute = _parse_int(minute_f, "minute", 0, 59, expr)

    if hour_f == "*":
        if dow_f != "*":
            raise ScheduleError(f"Weekday rules need a fixed hour: '{expr}'")
        return ScheduleRule(expression=expr, minute=minute)

    if hour_f.startswith("*/"):
        if dow_f != "*":
            raise ScheduleError(f"Interval rules cannot have a weekday: '{expr}'")
        step = _parse_int(hour_f[2:], "hour step", 1, 23, expr)
        return ScheduleRule(expression=expr, minute=minute, every_hours=step)

    hour = _parse_int(hour_f, "hour", 0, 23, expr)
    if dow_f == "*":
        return ScheduleRule(expression=expr, minute=minute, hour=hour)
    weekday = _parse_int(dow_f, "weekday", 0, 6, expr)
    return ScheduleRule(expression=expr, minute=minute, hour=hour, weekday=weekday)
