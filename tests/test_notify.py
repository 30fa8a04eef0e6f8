from __future__ import annotations

import json

import httpx
import pytest

from tests.helpers.fakes import FakeNotifier
from wftrig.core.config import ChannelConfig, NotificationPolicy
from wftrig.core.errors import NotificationError
from wftrig.core.notify import (
    LogNotifier,
    NotificationDispatcher,
    WebhookNotifier,
    build_notifiers,
    render_message,
)


def test_dispatch_reports_delivered_failed_and_skipped() -> None:
    policy = NotificationPolicy()
    good = FakeNotifier()
    bad = FakeNotifier(fail=True)
    dispatcher = NotificationDispatcher(policy, {"log": good, "slack": bad})

    report = dispatcher.dispatch("hello", "critical")

    assert report.delivered == ["log"]
    assert list(report.failed) == ["slack"]
    assert report.skipped == ["teams", "email"]
    assert report.ok is False


def test_dispatch_ok_when_only_unconfigured_channels_skipped() -> None:
    good = FakeNotifier()
    report = NotificationDispatcher(NotificationPolicy(), {"log": good}).dispatch("hi", "medium")
    assert report.ok is True
    assert report.skipped == ["slack"]
    assert good.sent == [("log", "hi", "medium")]


def test_dispatch_with_no_transport_is_not_ok() -> None:
    report = NotificationDispatcher(NotificationPolicy(), {}).dispatch("hi", "low")
    assert report.ok is False
    assert report.skipped == ["log"]


def test_build_notifiers_skips_disabled_and_url_less() -> None:
    policy = NotificationPolicy(
        channels={
            "log": ChannelConfig(type="log"),
            "slack": ChannelConfig(url="https://hooks.example.test/slack"),
            "teams": ChannelConfig(),
            "email": ChannelConfig(url="https://hooks.example.test/mail", enabled=False),
        }
    )
    notifiers = build_notifiers(policy)
    assert set(notifiers) == {"log", "slack"}
    assert isinstance(notifiers["log"], LogNotifier)
    assert isinstance(notifiers["slack"], WebhookNotifier)


def test_webhook_posts_json_payload() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = WebhookNotifier("https://hooks.example.test/slack", client=client)
    notifier.send("slack", "Build broke", "high")

    assert len(seen) == 1
    body = json.loads(seen[0].content)
    assert body["urgency"] == "high"
    assert "[HIGH] Build broke" in body["text"]


def test_webhook_http_error_becomes_notification_error() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = WebhookNotifier("https://hooks.example.test/slack", client=client)
    with pytest.raises(NotificationError) as excinfo:
        notifier.send("slack", "x", "low")
    assert excinfo.value.channel == "slack"


def test_render_message_variants() -> None:
    assert render_message("a", {"threshold": "build-hourly"}) == "Workflow alert: threshold breached (build-hourly)"
    assert render_message("a", {"bulk": True, "files": ["x"] * 7}) == "Bulk changes detected: 7 files modified"
    assert render_message("a", {"build_failure": True}).startswith("Build output missing")
    assert render_message("clean-cache", {"task": "cleanup"}) == "Scheduled task 'cleanup' ran clean-cache"
    assert render_message("a", {"files": ["x", "y"]}) == "File changes: 2 files modified"
    assert render_message("ping", {"test": True}) == "Test notification from ping"
