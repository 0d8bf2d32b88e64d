# notify.py
from __future__ import annotations

import json
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import List, Optional

from .config import PipelineConfig
from .ui.console import Console, get_console


class NotificationError(Exception):
    """Raised by a notifier backend when a message could not be delivered."""


@dataclass(frozen=True)
class NotificationRecord:
    channel: str
    message: str
    delivered: bool
    error: str | None
    sent_at: float


class Notifier:
    """
    Fire-and-forget notifications.

    notify() never raises: backend errors are caught here, reported as a
    console warning and kept in `records`. Callers only get a bool back.
    Subclasses implement _deliver().
    """

    def __init__(self, console: Optional[Console] = None):
        self._lock = threading.Lock()
        self.console = console
        self.records: List[NotificationRecord] = []

    def _out(self) -> Console:
        return self.console or get_console()

    def _deliver(self, channel: str, message: str) -> None:
        raise NotImplementedError

    def notify(self, channel: str, message: str) -> bool:
        error: Optional[str] = None
        try:
            self._deliver(channel, message)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            self._out().print_warning(f"notification to '{channel}' not delivered ({error})")

        record = NotificationRecord(
            channel=channel,
            message=message,
            delivered=error is None,
            error=error,
            sent_at=time.time(),
        )
        with self._lock:
            self.records.append(record)
        return record.delivered


class ConsoleNotifier(Notifier):
    """Prints notifications. Used when no chat backend is configured."""

    def _deliver(self, channel: str, message: str) -> None:
        self._out().print_notification(channel, message)


class SlackNotifier(Notifier):
    """Posts messages with chat.postMessage using a bot token."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://slack.com/api",
        timeout: float = 10.0,
        console: Optional[Console] = None,
    ):
        super().__init__(console)
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def _deliver(self, channel: str, message: str) -> None:
        req = urllib.request.Request(
            f"{self.api_url}/chat.postMessage",
            data=json.dumps({"channel": channel, "text": message}).encode("utf-8"),
            headers={
                "Content-Type": "application/json; charset=utf-8",
                "Authorization": f"Bearer {self.token}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as response:
                body = response.read().decode("utf-8")
        except urllib.error.HTTPError as e:
            raise NotificationError(f"HTTP {e.code} {e.reason}") from e
        except urllib.error.URLError as e:
            raise NotificationError(f"Network error: {e.reason}") from e

        try:
            data = json.loads(body) if body else {}
        except json.JSONDecodeError as e:
            raise NotificationError(f"Invalid JSON response: {e}") from e
        if not data.get("ok", False):
            raise NotificationError(f"Slack API error: {data.get('error', 'unknown')}")


def notifier_from_config(config: PipelineConfig, console: Optional[Console] = None) -> Notifier:
    if config.slack_token:
        return SlackNotifier(config.slack_token, api_url=config.slack_api, console=console)
    return ConsoleNotifier(console)
