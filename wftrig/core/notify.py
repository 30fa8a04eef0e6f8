"""Notification transports and urgency fan-out.

Each channel is a ``Notifier`` with one capability: ``send(channel, message,
urgency)``. The dispatcher resolves the channel list for an urgency from the
notification policy and reports which channels delivered, failed or were
skipped. Delivery is best-effort and at-least-once.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx

from wftrig.core.errors import NotificationError
from wftrig.core.logging_setup import get_logger

if TYPE_CHECKING:
    from wftrig.core.config import ChannelConfig, NotificationPolicy

logger = get_logger(__name__)

_URGENCY_LOG_LEVEL = {"low": "info", "medium": "info", "high": "warning", "critical": "error"}
_URGENCY_BADGE = {"low": "ℹ️", "medium": "📢", "high": "⚠️", "critical": "🚨"}


class Notifier(ABC):
    """A transport able to deliver one message to one channel."""

    @abstractmethod
    def send(self, channel: str, message: str, urgency: str) -> None:
        """Deliver ``message``.

        Raises:
            NotificationError: If the transport rejected the message.
        """
        ...


class LogNotifier(Notifier):
    """Writes notifications to the diagnostic log. Never fails."""

    def send(self, channel: str, message: str, urgency: str) -> None:
        level = _URGENCY_LOG_LEVEL.get(urgency, "info")
        getattr(logger, level)(f"[notify:{channel}] [{urgency.upper()}] {message}")


class WebhookNotifier(Notifier):
    """Posts a JSON payload to an incoming-webhook URL (Slack/Teams style)."""

    def __init__(self, url: str, timeout_s: float = 10.0, client: httpx.Client | None = None) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._client = client

    def payload(self, message: str, urgency: str) -> dict[str, Any]:
        badge = _URGENCY_BADGE.get(urgency, "")
        return {"text": f"{badge} [{urgency.upper()}] {message}".strip(), "urgency": urgency}

    def send(self, channel: str, message: str, urgency: str) -> None:
        body = self.payload(message, urgency)
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=body, timeout=self.timeout_s)
            else:
                with httpx.Client(timeout=self.timeout_s) as client:
                    response = client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(channel, e) from e


@dataclass
class DeliveryReport:
    """Outcome of fanning one message out to the channels of an urgency."""

    urgency: str
    delivered: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Accepted by at least one transport and rejected by none."""
        return bool(self.delivered) and not self.failed


class NotificationDispatcher:
    """Routes messages to channels according to the urgency policy."""

    def __init__(self, policy: NotificationPolicy, notifiers: dict[str, Notifier]) -> None:
        """Initialize dispatcher.

        Args:
            policy: Urgency to channel-list mapping.
            notifiers: Transport per channel name; channels without one are skipped.
        """
        self.policy = policy
        self.notifiers = notifiers

    def dispatch(self, message: str, urgency: str) -> DeliveryReport:
        report = DeliveryReport(urgency=urgency)
        for channel in self.policy.channels_for(urgency):
            notifier = self.notifiers.get(channel)
            if notifier is None:
                report.skipped.append(channel)
                continue
            try:
                notifier.send(channel, message, urgency)
            except NotificationError as e:
                logger.warning(str(e))
                report.failed[channel] = str(e.original_error)
                continue
            report.delivered.append(channel)
        return report


def build_notifier(channel: ChannelConfig) -> Notifier | None:
    """Create the transport for one channel config, or None when unusable."""
    if not channel.enabled:
        return None
    if channel.type == "log":
        return LogNotifier()
    if not channel.url:
        return None
    return WebhookNotifier(channel.url, timeout_s=channel.timeout_s)


def build_notifiers(policy: NotificationPolicy) -> dict[str, Notifier]:
    """Create transports for every enabled, configured channel in the policy."""
    notifiers: dict[str, Notifier] = {}
    for name, channel in policy.channels.items():
        notifier = build_notifier(channel)
        if notifier is None:
            logger.debug(f"Notification channel '{name}' is disabled or has no URL")
            continue
        notifiers[name] = notifier
    return notifiers


def render_message(action_name: str, context: dict[str, Any]) -> str:
    """Build a human-readable message from an action context."""
    files = context.get("files") or []
    if context.get("threshold"):
        return f"Workflow alert: threshold breached ({context['threshold']})"
    if context.get("bulk"):
        return f"Bulk changes detected: {len(files)} files modified"
    if context.get("build_failure"):
        return "Build output missing: possible build failure"
    if context.get("task"):
        return f"Scheduled task '{context['task']}' ran {action_name}"
    if files:
        return f"File changes: {len(files)} files modified"
    if context.get("test"):
        return f"Test notification from {action_name}"
    return "Automated workflow event detected"
