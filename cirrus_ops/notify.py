"""Operator notifications over email and Discord-compatible webhooks."""

from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

import requests
from requests import RequestException

from .config import NotifyConfig

logger = logging.getLogger(__name__)

COLOR_OK = 0x2ECC71
COLOR_WARN = 0xF1C40F
COLOR_ALERT = 0xE74C3C


class NotificationError(RuntimeError):
    """Raised when a notification could not be delivered."""


@dataclass
class Notification:
    title: str
    description: str
    fields: List[Tuple[str, str]] = field(default_factory=list)
    color: int = COLOR_OK
    image_url: Optional[str] = None

    def to_embed(self) -> Dict[str, Any]:
        embed: Dict[str, Any] = {
            "color": self.color,
            "title": self.title,
            "description": self.description,
            "fields": [{"name": name, "value": value, "inline": False} for name, value in self.fields],
        }
        if self.image_url:
            embed["image"] = {"url": self.image_url}
        return embed

    def to_text(self) -> str:
        lines = [self.description]
        lines.extend(f"{name}: {value}" for name, value in self.fields)
        return "\n".join(lines)


class Notifier(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class EmailNotifier:
    def __init__(
        self,
        host: str,
        port: int,
        mail_from: str,
        mail_to: str,
        user: str | None = None,
        password: str | None = None,
        starttls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.mail_from = mail_from
        self.mail_to = mail_to
        self.user = user
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def build_message(self, notification: Notification) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = notification.title
        message["From"] = self.mail_from
        message["To"] = self.mail_to
        message.set_content(notification.to_text())
        return message

    def send(self, notification: Notification) -> None:
        message = self.build_message(notification)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                if self.starttls:
                    smtp.starttls()
                if self.user and self.password:
                    smtp.login(self.user, self.password)
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"Mail delivery to {self.mail_to} failed: {exc}") from exc
        logger.debug("Mailed %r to %s", notification.title, self.mail_to)


class WebhookNotifier:
    def __init__(self, url: str, session: requests.Session | None = None, timeout: float = 30.0) -> None:
        self.url = url
        self._session = session or requests.Session()
        self.timeout = timeout

    def send(self, notification: Notification) -> None:
        try:
            response = self._session.post(
                self.url, json={"embeds": [notification.to_embed()]}, timeout=self.timeout
            )
            response.raise_for_status()
        except RequestException as exc:
            raise NotificationError(f"Webhook delivery failed: {exc}") from exc
        logger.debug("Posted %r to webhook", notification.title)


class CompositeNotifier:
    """Deliver to every sink; re-raise the first failure after trying them all."""

    def __init__(self, notifiers: Sequence[Notifier]) -> None:
        self.notifiers = list(notifiers)

    def send(self, notification: Notification) -> None:
        first_error: NotificationError | None = None
        for notifier in self.notifiers:
            try:
                notifier.send(notification)
            except NotificationError as exc:
                logger.warning("%s", exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error


class LogNotifier:
    """Fallback sink used when no mail or webhook is configured."""

    def send(self, notification: Notification) -> None:
        logger.info("%s: %s", notification.title, notification.to_text())


def notifier_from_config(config: NotifyConfig) -> Notifier:
    notifiers: List[Notifier] = []
    if config.smtp_host and config.mail_to:
        notifiers.append(
            EmailNotifier(
                host=config.smtp_host,
                port=config.smtp_port,
                mail_from=config.mail_from or config.smtp_user or config.mail_to,
                mail_to=config.mail_to,
                user=config.smtp_user,
                password=config.smtp_password,
                starttls=config.smtp_starttls,
            )
        )
    if config.webhook_url:
        notifiers.append(WebhookNotifier(config.webhook_url))
    if not notifiers:
        logger.warning("No mail or webhook configured; notifications go to the log only")
        return LogNotifier()
    if len(notifiers) == 1:
        return notifiers[0]
    return CompositeNotifier(notifiers)
