from __future__ import annotations

import logging
from typing import Protocol

import requests

from . import logging_bridge, render
from .config import Settings
from .http_client import HttpClient
from .models import Posting

log = logging.getLogger(__name__)

TELEGRAM_API = "https://api.telegram.org"


class NotifyError(RuntimeError):
    """A message could not be delivered."""


class Notifier(Protocol):
    def send_posting(self, posting: Posting) -> None: ...

    def send_status(self, text: str) -> None: ...

    def send_error(self, text: str) -> None: ...


class TelegramNotifier:
    """
    Bot API sender (sendMessage, HTML parse mode).
    """

    def __init__(self, token: str, chat_id: str, *, client: HttpClient | None = None) -> None:
        if not token or not chat_id:
            raise NotifyError("Telegram token and chat id are required.")
        self._token = token
        self.chat_id = str(chat_id)
        self.client = client or HttpClient()

    def send_posting(self, posting: Posting) -> None:
        self._send(render.posting_message(posting))

    def send_status(self, text: str) -> None:
        self._send(render.status_message(text))

    def send_error(self, text: str) -> None:
        self._send(render.error_message(text))

    def _send(self, html_text: str) -> None:
        url = f"{TELEGRAM_API}/bot{self._token}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": html_text,
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        try:
            body = self.client.post_json(url, payload)
        except (requests.RequestException, ValueError) as e:
            # never leak the token-bearing URL
            raise NotifyError(f"Telegram request failed: {type(e).__name__}") from None
        if not isinstance(body, dict) or not body.get("ok"):
            desc = body.get("description") if isinstance(body, dict) else body
            raise NotifyError(f"Telegram rejected message: {desc}")


class LogNotifier:
    """
    Writes would-be messages to the activity log. Used for dry runs and when
    Telegram credentials are missing.
    """

    def __init__(self) -> None:
        self.sent: list[str] = []

    def send_posting(self, posting: Posting) -> None:
        self._emit("posting", render.posting_message(posting))

    def send_status(self, text: str) -> None:
        self._emit("status", render.status_message(text))

    def send_error(self, text: str) -> None:
        self._emit("error", render.error_message(text))

    def _emit(self, kind: str, text: str) -> None:
        self.sent.append(text)
        logging_bridge.activity({
            "component": "job_scout.notifier",
            "op": "log_only",
            "kind": kind,
            "text": text,
        })


def from_settings(settings: Settings) -> Notifier:
    if settings.dry_run:
        return LogNotifier()
    if not settings.telegram_token or not settings.telegram_chat_id:
        log.warning("Telegram credentials missing; messages go to the activity log only.")
        return LogNotifier()
    return TelegramNotifier(settings.telegram_token, settings.telegram_chat_id)
