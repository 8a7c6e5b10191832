from __future__ import annotations

import pytest
import requests

from cirrus_ops.config import NotifyConfig
from cirrus_ops.notify import (
    COLOR_ALERT,
    CompositeNotifier,
    EmailNotifier,
    LogNotifier,
    Notification,
    NotificationError,
    WebhookNotifier,
    notifier_from_config,
)


class FakeWebhookSession:
    def __init__(self, status_code: int = 204) -> None:
        self.status_code = status_code
        self.posts: list[dict] = []

    def post(self, url, json=None, timeout=None):
        self.posts.append({"url": url, "json": json})
        response = requests.Response()
        response.status_code = self.status_code
        response.url = url
        return response


class FailingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def send(self, notification) -> None:
        self.calls += 1
        raise NotificationError("down")


class CountingNotifier:
    def __init__(self) -> None:
        self.calls = 0

    def send(self, notification) -> None:
        self.calls += 1


def test_embed_shape() -> None:
    notification = Notification(
        title="Node down",
        description="Mainchain did not respond",
        fields=[("Height", "100")],
        color=COLOR_ALERT,
        image_url="https://img",
    )

    embed = notification.to_embed()

    assert embed["color"] == COLOR_ALERT
    assert embed["title"] == "Node down"
    assert embed["fields"] == [{"name": "Height", "value": "100", "inline": False}]
    assert embed["image"] == {"url": "https://img"}
    assert "image" not in Notification("t", "d").to_embed()


def test_webhook_posts_embeds() -> None:
    session = FakeWebhookSession()
    WebhookNotifier("https://hook", session=session).send(Notification("t", "d"))

    assert session.posts[0]["url"] == "https://hook"
    assert session.posts[0]["json"]["embeds"][0]["title"] == "t"


def test_webhook_http_error_raises_notification_error() -> None:
    with pytest.raises(NotificationError):
        WebhookNotifier("https://hook", session=FakeWebhookSession(500)).send(Notification("t", "d"))


def test_email_message_contents() -> None:
    notifier = EmailNotifier("smtp.example", 587, "node@example", "ops@example")
    message = notifier.build_message(Notification("Report", "All good", fields=[("Uptime", "6:00:00")]))

    assert message["Subject"] == "Report"
    assert message["To"] == "ops@example"
    assert "Uptime: 6:00:00" in message.get_content()


def test_email_delivery_failure(monkeypatch) -> None:
    def refuse(*_args, **_kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr("cirrus_ops.notify.smtplib.SMTP", refuse)
    notifier = EmailNotifier("smtp.example", 587, "node@example", "ops@example")

    with pytest.raises(NotificationError):
        notifier.send(Notification("t", "d"))


def test_composite_tries_every_sink() -> None:
    failing = FailingNotifier()
    counting = CountingNotifier()

    with pytest.raises(NotificationError):
        CompositeNotifier([failing, counting]).send(Notification("t", "d"))

    assert failing.calls == 1
    assert counting.calls == 1


def test_notifier_from_config() -> None:
    assert isinstance(notifier_from_config(NotifyConfig()), LogNotifier)
    assert isinstance(
        notifier_from_config(NotifyConfig(webhook_url="https://hook")), WebhookNotifier
    )
    both = notifier_from_config(
        NotifyConfig(smtp_host="smtp", mail_to="ops@example", webhook_url="https://hook")
    )
    assert isinstance(both, CompositeNotifier)
    assert isinstance(both.notifiers[0], EmailNotifier)
