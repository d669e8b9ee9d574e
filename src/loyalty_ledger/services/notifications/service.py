"""Best-effort notification dispatch for ledger events."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from loguru import logger

from loyalty_ledger.core.settings import Settings, get_settings
from loyalty_ledger.services.retention import utcnow

from .backend import NotificationDeliveryError, TelegramNotifier, TransactionNotifier
from .templates import TransactionNotice


@dataclass
class NotificationEvent:
    """Representation of a notification that was handed to a backend."""

    recipient: int
    event_type: str
    sent_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationService:
    """Dispatches member notices; delivery failures never reach the caller."""

    def __init__(
        self,
        notifier: Optional[TransactionNotifier] = None,
        *,
        source: Settings | None = None,
    ) -> None:
        self._settings = source or get_settings()
        self._notifier = notifier if notifier is not None else self._build_default_notifier()
        self._events: list[NotificationEvent] = []

    @property
    def sent_events(self) -> list[NotificationEvent]:
        return self._events

    @property
    def enabled(self) -> bool:
        return self._notifier is not None

    async def dispatch_transaction(self, notice: TransactionNotice) -> bool:
        """Deliver ``notice``; returns whether the backend accepted it."""

        if self._notifier is None:
            return False
        try:
            await self._notifier.notify_transaction(notice)
        except NotificationDeliveryError as exc:
            if exc.recipient_blocked:
                logger.info("Member blocked notifications", telegram_user_id=notice.telegram_user_id)
            else:
                logger.warning(
                    "Transaction notification failed",
                    telegram_user_id=notice.telegram_user_id,
                    error=str(exc),
                )
            return False
        except Exception:  # pragma: no cover - unexpected backend bug
            logger.exception("Transaction notification crashed", telegram_user_id=notice.telegram_user_id)
            return False

        self._events.append(
            NotificationEvent(
                recipient=notice.telegram_user_id,
                event_type=f"transaction_{notice.kind}",
                sent_at=utcnow(),
                metadata={"new_balance": str(notice.new_balance)},
            )
        )
        return True

    def _build_default_notifier(self) -> Optional[TransactionNotifier]:
        cfg = self._settings
        if not cfg.loyalty_notifications_enabled:
            return None
        if not cfg.telegram_bot_token:
            logger.warning("Notifications enabled without a Telegram bot token; skipping delivery")
            return None
        return TelegramNotifier(
            bot_token=cfg.telegram_bot_token,
            base_url=cfg.telegram_api_base_url,
            timeout_seconds=cfg.telegram_timeout_seconds,
            points_name=cfg.loyalty_points_name,
        )


__all__ = ["NotificationEvent", "NotificationService"]
