"""Fire-and-forget operator notifications."""

from __future__ import annotations

from typing import Protocol

import httpx

from regime_trader.utils.logging import get_logger

TELEGRAM_API = "https://api.telegram.org"


class Notifier(Protocol):
    def notify(self, tag: str, message: str) -> None:
        """Deliver a message; never raises."""


class LogNotifier:
    """Writes notifications to the structured log only."""

    def __init__(self) -> None:
        self._logger = get_logger("regime_trader.notify")

    def notify(self, tag: str, message: str) -> None:
        self._logger.info("notification", tag=tag, message=message)


class TelegramNotifier:
    """Telegram Bot API ``sendMessage`` sink. Delivery errors are logged and dropped."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        timeout_s: float = 5.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = f"{TELEGRAM_API}/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._client = client or httpx.Client(timeout=timeout_s)
        self._logger = get_logger("regime_trader.notify.telegram")

    def notify(self, tag: str, message: str) -> None:
        payload = {"chat_id": self._chat_id, "text": f"[{tag}] {message}"}
        try:
            response = self._client.post(self._url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._logger.warning("telegram_send_failed", tag=tag, error=str(exc))
            return
        self._logger.debug("telegram_sent", tag=tag)

    def close(self) -> None:
        self._client.close()
