"""Delivery backends for member purchase notifications."""

from __future__ import annotations

from typing import List, Protocol

import httpx

from .templates import TransactionNotice, render_transaction_notice


class TransactionNotifier(Protocol):
    """Minimal protocol for telling a member about a committed purchase."""

    async def notify_transaction(self, notice: TransactionNotice) -> None:
        ...


class NotificationDeliveryError(RuntimeError):
    """Raised when a backend could not hand the message over."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def recipient_blocked(self) -> bool:
        return self.status_code == 403


class TelegramNotifier:
    """Sends notices through the Telegram Bot API ``sendMessage`` method."""

    def __init__(
        self,
        *,
        bot_token: str,
        base_url: str = "https://api.telegram.org",
        timeout_seconds: float = 10.0,
        points_name: str = "points",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token must be configured")
        self._endpoint = f"{base_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._timeout_seconds = timeout_seconds
        self._points_name = points_name
        self._transport = transport

    async def notify_transaction(self, notice: TransactionNotice) -> None:
        payload = {
            "chat_id": notice.telegram_user_id,
            "text": render_transaction_notice(notice, points_name=self._points_name),
        }
        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
            try:
                response = await client.post(self._endpoint, json=payload)
            except httpx.HTTPError as exc:
                raise NotificationDeliveryError(f"Telegram request failed: {exc}") from exc
        if response.status_code != 200:
            description = _describe(response)
            raise NotificationDeliveryError(
                f"Telegram responded with status {response.status_code}: {description}",
                status_code=response.status_code,
            )


class InMemoryTransactionNotifier:
    """Stores notices for inspection in tests and dry runs."""

    def __init__(self) -> None:
        self.sent_notices: List[TransactionNotice] = []

    async def notify_transaction(self, notice: TransactionNotice) -> None:
        self.sent_notices.append(notice)


def _describe(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("description") or body)
    return str(body)


__all__ = [
    "InMemoryTransactionNotifier",
    "NotificationDeliveryError",
    "TelegramNotifier",
    "TransactionNotifier",
]
