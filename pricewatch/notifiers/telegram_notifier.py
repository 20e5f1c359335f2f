# pricewatch/notifiers/telegram_notifier.py

"""Notification delivery to users via the Telegram Bot API."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from bs4 import BeautifulSoup
from curl_cffi import requests as curl_requests

from pricewatch.config.settings import Settings

logger = logging.getLogger("pricewatch.notifier")

# Telegram rejects messages longer than this
_MAX_MESSAGE_LENGTH = 4096


class NotificationError(Exception):
    """Raised when a message could not be delivered."""


class Notifier(ABC):
    """Base class for delivering messages to a user."""

    @abstractmethod
    def send(self, chat_id: int, message: str) -> None:
        """Deliver ``message`` to ``chat_id``.

        Raises:
            NotificationError: Delivery failed.
        """


class TelegramNotifier(Notifier):
    """Sends HTML-formatted messages through a Telegram bot."""

    def __init__(
        self,
        token: str | None = None,
        api_base: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self._token = (
            Settings.TELEGRAM_BOT_TOKEN if token is None else token
        )
        self._api_base = (api_base or Settings.TELEGRAM_API_BASE).rstrip("/")
        self._timeout = timeout or Settings.REQUEST_TIMEOUT
        self.session = curl_requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self._token)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    def send(self, chat_id: int, message: str) -> None:
        """Post a message via ``sendMessage``."""
        if not self.is_configured:
            raise NotificationError(
                "TELEGRAM_BOT_TOKEN is not configured"
            )

        url = f"{self._api_base}/bot{self._token}/sendMessage"
        payload: dict[str, Any] = {
            "chat_id": chat_id,
            "text": message,
            "parse_mode": "HTML",
            "disable_web_page_preview": False,
        }
        if len(message) > _MAX_MESSAGE_LENGTH:
            # Slicing HTML can leave an unclosed tag, so send plain text
            logger.warning(
                "Message for chat %s is %d chars, sending as plain text",
                chat_id,
                len(message),
            )
            plain = BeautifulSoup(message, "lxml").get_text()
            payload["text"] = plain[:_MAX_MESSAGE_LENGTH]
            del payload["parse_mode"]
        try:
            resp = self.session.post(
                url, json=payload, timeout=self._timeout,
            )
        except Exception as exc:
            raise NotificationError(
                f"Telegram request failed: {exc}"
            ) from exc

        if resp.status_code != 200:
            raise NotificationError(
                f"Telegram returned HTTP {resp.status_code}: "
                f"{resp.text[:200]}"
            )
        try:
            body: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise NotificationError(
                "Telegram returned a non-JSON response"
            ) from exc
        if not body.get("ok", False):
            raise NotificationError(
                f"Telegram rejected message: "
                f"{body.get('description', 'unknown error')}"
            )
        logger.info("Notification sent to chat %s", chat_id)
